"""Error types for Drainsurge.

Kubernetes API failures are translated into this small taxonomy so that callers
can decide whether to retry, re-read or give up on a single unit.
"""

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

# HTTP statuses that are worth retrying with backoff
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


class DrainsurgeError(Exception):
    """Base class for all Drainsurge errors."""


class TransientInfraError(DrainsurgeError):
    """Network failure, timeout or rate limit. Retry with backoff."""


class ConflictError(DrainsurgeError):
    """The object changed since it was read. Re-read and retry."""


class NotFoundError(DrainsurgeError):
    """The object disappeared. Abandon this item."""


class ConfigurationError(DrainsurgeError):
    """Malformed policy or marker data. Abandon this item and log loudly."""


def translate_api_exception(error: Exception, description: str = "") -> DrainsurgeError:
    """Map a Kubernetes client exception onto the Drainsurge error taxonomy.

    Args:
        error: The exception raised by the Kubernetes client.
        description: Short description of the operation, used in the message.

    Returns:
        The matching DrainsurgeError. The original exception should be chained by the caller.
    """
    prefix = f"{description}: " if description else ""

    if isinstance(error, DrainsurgeError):
        return error

    if isinstance(error, ApiException):
        status = error.status
        if status == 409:
            return ConflictError(f"{prefix}conflict ({error.reason})")
        if status == 404:
            return NotFoundError(f"{prefix}not found ({error.reason})")
        if status in TRANSIENT_STATUSES or status == 0 or status is None:
            return TransientInfraError(f"{prefix}HTTP {status} ({error.reason})")
        return DrainsurgeError(f"{prefix}HTTP {status} ({error.reason})")

    if isinstance(error, (HTTPError, ConnectionError, TimeoutError)):
        return TransientInfraError(f"{prefix}{error}")

    return DrainsurgeError(f"{prefix}{error}")

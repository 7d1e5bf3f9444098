"""Retry helpers for Kubernetes API calls.

Transient failures are retried with bounded exponential backoff. Everything
else is translated and raised immediately so the caller can decide.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from drainsurge.config import RetryPolicy
from drainsurge.errors import TransientInfraError, translate_api_exception

logger = logging.getLogger(__name__)

R = TypeVar("R")


def call_with_retries(
    func: Callable[[], R],
    policy: RetryPolicy,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> R:
    """Call a Kubernetes API function, retrying transient failures.

    Args:
        func: Zero-argument callable performing the API call.
        policy: Retry budget and backoff parameters.
        description: Short description of the call, used in logs and error messages.
        sleep: Function used to wait between attempts.

    Returns:
        Whatever func returns.

    Raises:
        TransientInfraError: When the retry budget is exhausted.
        DrainsurgeError: Any other translated API error, raised on first occurrence.
    """
    delays = policy.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            return func()
        except Exception as e:
            error = translate_api_exception(e, description)
            if not isinstance(error, TransientInfraError):
                if error is e:
                    raise
                raise error from e

            delay = next(delays, None)
            if delay is None:
                logger.error(f"Giving up on {description} after {attempt} attempts: {error}")
                raise error from e

            logger.warning(f"Transient failure on {description} (attempt {attempt}), retrying in {delay:.1f}s: {error}")
            sleep(delay)

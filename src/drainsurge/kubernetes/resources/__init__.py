"""Resources package for Kubernetes resource handlers.

This package contains specialized handlers for different Kubernetes resource types.
"""

from drainsurge.kubernetes.resources.events import (
    create_compensation_event,
    create_failure_event,
    create_restoration_event,
)

__all__ = [
    "create_compensation_event",
    "create_failure_event",
    "create_restoration_event",
]

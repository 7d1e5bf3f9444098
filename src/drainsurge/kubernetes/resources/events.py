"""Kubernetes events handling module.

This module provides functions for recording events on compensated resources,
so that operators can follow compensations with kubectl describe.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from kubernetes import client

from drainsurge.kubernetes.connection import KubernetesConnection

logger = logging.getLogger(__name__)

# Constants for event types
EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

# Constants for event reasons
EVENT_REASON_COMPENSATED = "Compensated"
EVENT_REASON_RESTORED = "Restored"
EVENT_REASON_FAILED = "CompensationFailed"

# Constants for event actions
EVENT_ACTION_COMPENSATION = "Compensation"
EVENT_ACTION_RESTORATION = "Restoration"

# Component name for events
EVENT_COMPONENT = "drainsurge"


def create_compensation_event(connection: KubernetesConnection, resource: Any, kind: str, message: str) -> None:
    """Create a Kubernetes event for a compensation scale-up.

    Args:
        connection: The Kubernetes connection to use
        resource: The resource object that was scaled up
        kind: Resource kind
        message: Detailed message for the event
    """
    _create_event(
        connection, resource, kind, EVENT_TYPE_NORMAL, EVENT_REASON_COMPENSATED, message, EVENT_ACTION_COMPENSATION
    )


def create_restoration_event(connection: KubernetesConnection, resource: Any, kind: str, message: str) -> None:
    """Create a Kubernetes event for a restoration to the original scale.

    Args:
        connection: The Kubernetes connection to use
        resource: The resource object that was restored
        kind: Resource kind
        message: Detailed message for the event
    """
    _create_event(
        connection, resource, kind, EVENT_TYPE_NORMAL, EVENT_REASON_RESTORED, message, EVENT_ACTION_RESTORATION
    )


def create_failure_event(
    connection: KubernetesConnection, resource: Any, kind: str, message: str, action: str
) -> None:
    """Create a warning event when a compensation or restoration step failed.

    Args:
        connection: The Kubernetes connection to use
        resource: The resource object concerned
        kind: Resource kind
        message: Detailed message for the event
        action: EVENT_ACTION_COMPENSATION or EVENT_ACTION_RESTORATION
    """
    _create_event(connection, resource, kind, EVENT_TYPE_WARNING, EVENT_REASON_FAILED, message, action)


def _create_event(
    connection: KubernetesConnection,
    resource: Any,
    kind: str,
    event_type: str,
    reason: str,
    message: str,
    action: str,
) -> None:
    """Create a Kubernetes event regarding a resource.

    Event creation is best effort: failures are logged and never raised.
    """
    metadata = getattr(resource, "metadata", None)
    name = getattr(metadata, "name", "") or ""
    namespace = getattr(metadata, "namespace", "") or ""

    if not name or not namespace:
        logger.warning(f"Cannot create event for {kind} without name and namespace")
        return

    try:
        body = client.EventsV1Event(
            metadata=client.V1ObjectMeta(generate_name=f"{name}-", namespace=namespace),
            reason=reason,
            note=message,
            type=event_type,
            reporting_controller=EVENT_COMPONENT,
            reporting_instance=connection.hostname,
            action=action,
            regarding=client.V1ObjectReference(
                api_version=getattr(resource, "api_version", None) or "apps/v1",
                kind=kind,
                name=name,
                namespace=namespace,
                uid=getattr(metadata, "uid", None),
            ),
            event_time=datetime.now(UTC),
        )
        connection.events_v1_api.create_namespaced_event(namespace=namespace, body=body)
        logger.debug(f"Created event for {kind} {namespace}/{name}: {reason}")
    except Exception as e:
        logger.warning(f"Failed to create event for {kind} {namespace}/{name}: {e}")

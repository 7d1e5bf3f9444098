"""Kubernetes controller module.

This module provides the controller that builds the Kubernetes connection once
and hands out the resource handlers every other component is constructed with.
"""

import logging
from typing import Any

from drainsurge.config import DrainsurgeConfig
from drainsurge.kubernetes.connection import KubernetesConnection
from drainsurge.kubernetes.resource_manager import PipelineManager
from drainsurge.kubernetes.resources.deployments import DeploymentResource
from drainsurge.kubernetes.resources.events import (
    create_compensation_event,
    create_failure_event,
    create_restoration_event,
)
from drainsurge.kubernetes.resources.managers import ArgoApplication
from drainsurge.kubernetes.resources.pods import PodResource

logger = logging.getLogger(__name__)


class KubernetesController:
    """Controller for the Kubernetes resources Drainsurge reads and writes.

    This class owns the connection and the resource handlers. It is built once at
    startup and passed to the watcher, locator, compensator and sweeper.
    """

    def __init__(self, config: DrainsurgeConfig, connection: KubernetesConnection | None = None):
        """Initialize the Kubernetes controller.

        Args:
            config: The Drainsurge configuration.
            connection: An existing connection. If None, a new one is established.
        """
        self.config = config
        self.connection = connection or KubernetesConnection()

        self.deployments = DeploymentResource(self.connection, config.retry)
        self.pods = PodResource(self.connection, config.retry)

        self.pipelines: PipelineManager | None = None
        if config.suppress_drift:
            self.pipelines = ArgoApplication(
                self.connection,
                annotation_key=config.suppression_annotation_key,
                annotation_value=config.suppression_annotation_value,
                retry_policy=config.retry,
                conflict_retries=config.conflict_retries,
            )
            logger.info("Enabled drift suppression on Argo CD Applications")

    @property
    def core_v1_api(self) -> Any:
        return self.connection.core_v1_api

    def record_compensation(self, resource: Any, message: str) -> None:
        """Record a Compensated event on a workload if events are enabled."""
        if self.config.emit_events:
            create_compensation_event(self.connection, resource, self.deployments.RESOURCE_KIND, message)

    def record_restoration(self, resource: Any, message: str) -> None:
        """Record a Restored event on a workload if events are enabled."""
        if self.config.emit_events:
            create_restoration_event(self.connection, resource, self.deployments.RESOURCE_KIND, message)

    def record_failure(self, resource: Any, message: str, action: str) -> None:
        """Record a CompensationFailed warning event on a workload if events are enabled."""
        if self.config.emit_events:
            create_failure_event(self.connection, resource, self.deployments.RESOURCE_KIND, message, action)

"""Restoration sweeper module for Drainsurge.

This module periodically restores every compensated Deployment to the replica
count recorded in its marker, independently of the event stream.
"""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from drainsurge.config import DrainsurgeConfig
from drainsurge.errors import ConfigurationError, ConflictError, DrainsurgeError, NotFoundError
from drainsurge.kubernetes.resource_manager import PipelineManager
from drainsurge.kubernetes.resources.deployments import DeploymentResource
from drainsurge.kubernetes.resources.events import EVENT_ACTION_RESTORATION
from drainsurge.kubernetes.resources.workloads import CompensationMarker

logger = logging.getLogger(__name__)


class UnitState(str, Enum):
    """Compensation state of a Deployment."""
    NORMAL = "normal"
    COMPENSATED = "compensated"
    RESTORING = "restoring"


class RestorationSweeper:
    """Restores compensated Deployments on a fixed interval."""

    def __init__(
        self,
        config: DrainsurgeConfig,
        deployments: DeploymentResource,
        pipelines: PipelineManager | None = None,
        reporter: Any = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the sweeper.

        Args:
            config: The Drainsurge configuration.
            deployments: Handler used to list, read and patch Deployments.
            pipelines: Pipeline manager used to release drift suppression.
            reporter: Object with record_restoration and record_failure methods, None to disable events.
            clock: Returns the current time, defaults to datetime.now(UTC).
        """
        self.config = config
        self.deployments = deployments
        self.pipelines = pipelines
        self.reporter = reporter
        self.clock = clock or (lambda: datetime.now(UTC))
        self.window = timedelta(seconds=config.compensation_window)

    def sweep(self) -> dict[str, UnitState]:
        """Run one restoration pass over every compensated Deployment.

        Returns:
            The state each compensated Deployment ended the pass in.
        """
        try:
            units = list(self.deployments.iter_compensated())
        except DrainsurgeError as e:
            logger.error(f"Failed to list compensated Deployments: {e}", extra={"unit": "*", "cause": str(e)})
            return {}

        logger.info(f"Found {len(units)} compensated Deployments")
        results = {}
        for unit in units:
            key = self.deployments.get_resource_key(unit)
            try:
                results[key] = self.restore(
                    self.deployments.get_resource_name(unit),
                    self.deployments.get_resource_namespace(unit),
                )
            except Exception as e:
                logger.exception(f"Unexpected error restoring Deployment {key}: {e}", extra={"unit": key, "cause": str(e)})
                results[key] = UnitState.COMPENSATED

        restored = sum(1 for state in results.values() if state == UnitState.NORMAL)
        logger.info(f"Completed sweep. Restored {restored} of {len(results)} Deployments.")
        return results

    def window_elapsed(self, marker: CompensationMarker) -> bool:
        """Check whether a marker is old enough to be restored."""
        if marker.set_at is None or not self.window:
            return True
        return self.clock() - marker.set_at >= self.window

    def restore(self, name: str, namespace: str) -> UnitState:
        """Restore one Deployment to its original replica count and clear its marker.

        Args:
            name: Name of the Deployment.
            namespace: Namespace of the Deployment.

        Returns:
            NORMAL once restored (or when there is nothing to restore),
            COMPENSATED when the restoration must be retried on a later sweep.
        """
        key = f"{namespace}/{name}"
        attempts = self.config.conflict_retries
        deployment = None
        released = False

        for attempt in range(1, attempts + 1):
            try:
                deployment = self.deployments.get_resource(name, namespace)
            except NotFoundError:
                logger.info(f"Deployment {key} no longer exists, nothing to restore")
                return UnitState.NORMAL
            except DrainsurgeError as e:
                logger.error(f"Failed to read Deployment {key}: {e}", extra={"unit": key, "cause": str(e)})
                return UnitState.COMPENSATED

            try:
                marker = self.deployments.read_marker(deployment)
            except ConfigurationError as e:
                logger.error(
                    f"Deployment {key} carries a malformed compensation marker and cannot be restored: {e}",
                    extra={"unit": key, "cause": str(e)},
                )
                self._report_failure(deployment, f"Restoration impossible: {e}")
                return UnitState.COMPENSATED

            if marker is None:
                logger.debug(f"Deployment {key} is no longer compensated")
                return UnitState.NORMAL

            if not self.window_elapsed(marker):
                logger.debug(f"Deployment {key} was compensated at {marker.set_at}, window not elapsed yet")
                return UnitState.COMPENSATED

            # The suppression is released before the marker, its only record, is cleared
            if marker.suppressed_pipeline and not released:
                if not self.release_drift(key, marker.suppressed_pipeline, deployment):
                    return UnitState.COMPENSATED
                released = True

            current = self.deployments.get_replicas(deployment)
            original = marker.original_replicas
            logger.debug(f"Deployment {key} is {UnitState.RESTORING.value} from {current} to {original} replicas")

            try:
                if current == original:
                    self.deployments.clear_marker(deployment)
                else:
                    self.deployments.clear_marker(deployment, replicas=original)
            except ConflictError:
                logger.debug(f"Conflict restoring Deployment {key} (attempt {attempt}/{attempts}), re-reading")
                continue
            except NotFoundError:
                logger.info(f"Deployment {key} disappeared during restoration")
                return UnitState.NORMAL
            except DrainsurgeError as e:
                logger.error(f"Failed to restore Deployment {key}: {e}", extra={"unit": key, "cause": str(e)})
                return UnitState.COMPENSATED

            if current == original:
                logger.info(f"Deployment {key} already runs {original} replicas, cleared its marker")
            else:
                logger.info(f"Restored Deployment {key} from {current} to {original} replicas")
            if self.reporter is not None:
                self.reporter.record_restoration(
                    deployment, f"Restored by Drainsurge to {original} replicas after compensation"
                )
            break
        else:
            logger.error(
                f"Gave up restoring Deployment {key} after {attempts} conflicting attempts, will retry next sweep",
                extra={"unit": key, "cause": "conflict retries exhausted"},
            )
            self._report_failure(deployment, f"Restoration postponed after {attempts} conflicting attempts")
            return UnitState.COMPENSATED

        return UnitState.NORMAL

    def release_drift(self, unit_key: str, pipeline_key: str, deployment: Any) -> bool:
        """Release the drift suppression a Deployment holds on its pipeline.

        Args:
            unit_key: <namespace>/<name> of the Deployment being restored.
            pipeline_key: <namespace>/<name> recorded in the Deployment's marker.
            deployment: The Deployment as last read, used for failure events.

        Returns:
            True if restoration may proceed, False if the release failed and the
            marker must be kept for the next sweep.
        """
        if self.pipelines is None:
            logger.warning(
                f"Deployment {unit_key} suppressed {pipeline_key} but drift suppression is disabled, "
                "leaving the pipeline untouched",
                extra={"unit": unit_key, "cause": "drift suppression disabled"},
            )
            return True

        namespace, name = pipeline_key.split("/", 1)
        try:
            self.pipelines.release(namespace, name, unit_key)
        except DrainsurgeError as e:
            logger.error(
                f"Failed to release drift suppression on {pipeline_key} for Deployment {unit_key}, "
                f"will retry next sweep: {e}",
                extra={"unit": unit_key, "cause": str(e)},
            )
            self._report_failure(deployment, f"Drift suppression on {pipeline_key} could not be released: {e}")
            return False
        return True

    def run(self, stop_event: threading.Event) -> None:
        """Sweep on a fixed interval until the stop event is set.

        Args:
            stop_event: Set to request shutdown.
        """
        logger.info(f"Starting restoration sweeps every {self.config.sweep_interval} seconds")
        while not stop_event.is_set():
            logger.info("Running restoration sweep")
            try:
                self.sweep()
            except Exception as e:
                logger.exception(f"Error in restoration sweep: {e}")
            stop_event.wait(self.config.sweep_interval)
        logger.info("Restoration sweeper stopped")

    def _report_failure(self, deployment: Any, message: str) -> None:
        if self.reporter is not None and deployment is not None:
            self.reporter.record_failure(deployment, message, EVENT_ACTION_RESTORATION)

"""Compensator module for Drainsurge.

This module scales up a Deployment whose disruption is blocked, records its
original replica count in a marker on the Deployment itself, and suppresses
drift correction on its delivery pipeline.

Every step re-reads the Deployment and writes conditionally on the version it
read, so duplicate signals and concurrent attempts compensate at most once.
"""

import logging
from enum import Enum
from typing import Any

from drainsurge.config import DrainsurgeConfig
from drainsurge.errors import ConfigurationError, ConflictError, DrainsurgeError, NotFoundError
from drainsurge.kubernetes.resource_manager import PipelineManager
from drainsurge.kubernetes.resources.deployments import DeploymentResource
from drainsurge.kubernetes.resources.events import EVENT_ACTION_COMPENSATION
from drainsurge.kubernetes.resources.managers.argocd import ArgoApplication
from drainsurge.locator import WorkloadRef

logger = logging.getLogger(__name__)


class CompensationResult(str, Enum):
    """Outcome of a compensation attempt on one Deployment."""
    COMPENSATED = "compensated"
    ALREADY_COMPENSATED = "already-compensated"
    NOT_NEEDED = "not-needed"
    NOT_FOUND = "not-found"
    FAILED = "failed"


class Compensator:
    """Applies and records compensation for Deployments."""

    def __init__(
        self,
        config: DrainsurgeConfig,
        deployments: DeploymentResource,
        pipelines: PipelineManager | None = None,
        reporter: Any = None,
    ):
        """Initialize the compensator.

        Args:
            config: The Drainsurge configuration.
            deployments: Handler used to read and patch Deployments.
            pipelines: Pipeline manager used for drift suppression, None to disable it.
            reporter: Object with record_compensation and record_failure methods, None to disable events.
        """
        self.config = config
        self.deployments = deployments
        self.pipelines = pipelines
        self.reporter = reporter

    def compensate_all(self, refs: list[WorkloadRef]) -> dict[WorkloadRef, CompensationResult]:
        """Compensate several Deployments. A failure on one never stops the others.

        Args:
            refs: The Deployments to compensate.

        Returns:
            The result for each Deployment.
        """
        results = {}
        for ref in refs:
            try:
                results[ref] = self.compensate(ref)
            except Exception as e:
                logger.exception(
                    f"Unexpected error compensating Deployment {ref.key}: {e}",
                    extra={"unit": ref.key, "cause": str(e)},
                )
                results[ref] = CompensationResult.FAILED
        return results

    def compensate(self, ref: WorkloadRef) -> CompensationResult:
        """Compensate one Deployment.

        Args:
            ref: The Deployment to compensate.

        Returns:
            The outcome of the attempt.
        """
        attempts = self.config.conflict_retries
        deployment = None

        for attempt in range(1, attempts + 1):
            try:
                deployment = self.deployments.get_resource(ref.name, ref.namespace)
            except NotFoundError as e:
                logger.warning(
                    f"Deployment {ref.key} disappeared before compensation",
                    extra={"unit": ref.key, "cause": str(e)},
                )
                return CompensationResult.NOT_FOUND
            except DrainsurgeError as e:
                logger.error(f"Failed to read Deployment {ref.key}: {e}", extra={"unit": ref.key, "cause": str(e)})
                return CompensationResult.FAILED

            try:
                marker = self.deployments.read_marker(deployment)
            except ConfigurationError as e:
                logger.error(
                    f"Deployment {ref.key} carries a malformed compensation marker: {e}",
                    extra={"unit": ref.key, "cause": str(e)},
                )
                return CompensationResult.FAILED

            if marker is not None:
                logger.info(
                    f"Deployment {ref.key} is already compensated "
                    f"(original replicas {marker.original_replicas}), skipping"
                )
                return CompensationResult.ALREADY_COMPENSATED

            current = self.deployments.get_replicas(deployment)
            target = self.config.compute_target(current)
            if target <= current:
                logger.info(f"Deployment {ref.key} already runs {current} replicas, no compensation needed")
                return CompensationResult.NOT_NEEDED

            try:
                deployment = self.deployments.apply_compensation(deployment, target)
            except ConflictError:
                logger.debug(f"Conflict compensating Deployment {ref.key} (attempt {attempt}/{attempts}), re-reading")
                continue
            except NotFoundError as e:
                logger.warning(
                    f"Deployment {ref.key} disappeared during compensation",
                    extra={"unit": ref.key, "cause": str(e)},
                )
                return CompensationResult.NOT_FOUND
            except DrainsurgeError as e:
                logger.error(f"Failed to compensate Deployment {ref.key}: {e}", extra={"unit": ref.key, "cause": str(e)})
                self._report_failure(deployment, f"Compensation failed: {e}")
                return CompensationResult.FAILED

            logger.info(f"Scaled Deployment {ref.key} from {current} to {target} replicas")
            if self.reporter is not None:
                self.reporter.record_compensation(
                    deployment,
                    f"Scaled from {current} to {target} replicas by Drainsurge because a disruption is blocked. "
                    f"Original replicas: {current}",
                )
            break
        else:
            logger.error(
                f"Gave up compensating Deployment {ref.key} after {attempts} conflicting attempts",
                extra={"unit": ref.key, "cause": "conflict retries exhausted"},
            )
            self._report_failure(deployment, f"Compensation abandoned after {attempts} conflicting attempts")
            return CompensationResult.FAILED

        if self.pipelines is not None:
            self.suppress_drift(ref, deployment)

        return CompensationResult.COMPENSATED

    def suppress_drift(self, ref: WorkloadRef, deployment: Any) -> bool:
        """Suppress drift correction on the pipeline delivering a compensated Deployment.

        Failures are logged and reported; they never undo the replica change.

        Args:
            ref: The compensated Deployment.
            deployment: The Deployment as last written.

        Returns:
            True if drift correction is suppressed on behalf of this Deployment.
        """
        namespace = self.config.pipeline_namespace or ref.namespace
        pipeline_namespace, app_id = ArgoApplication.derive_app_identity(
            self.deployments.get_labels(deployment), ref.app, namespace
        )

        try:
            pipeline = self.pipelines.find_pipeline_for_app(pipeline_namespace, app_id)
            if pipeline is None:
                logger.warning(
                    f"No {self.pipelines.RESOURCE_KIND} {pipeline_namespace}/{app_id} found for Deployment {ref.key}, "
                    "drift correction is not suppressed",
                    extra={"unit": ref.key, "cause": "pipeline not found"},
                )
                return False

            pipeline_name = pipeline["metadata"]["name"]
            pipeline_namespace = pipeline["metadata"]["namespace"]
            if not self.pipelines.suppress(pipeline_namespace, pipeline_name, ref.key):
                return True
        except DrainsurgeError as e:
            logger.error(
                f"Failed to suppress drift correction for Deployment {ref.key}: {e}",
                extra={"unit": ref.key, "cause": str(e)},
            )
            self._report_failure(deployment, f"Drift suppression failed: {e}")
            return False

        pipeline_key = f"{pipeline_namespace}/{pipeline_name}"
        try:
            self._record_pipeline(ref, pipeline_key)
        except DrainsurgeError as e:
            # Only suppressions recorded on the marker are released by the sweeper
            logger.error(
                f"Failed to record {pipeline_key} on Deployment {ref.key}, rolling back drift suppression: {e}",
                extra={"unit": ref.key, "cause": str(e)},
            )
            self._rollback_suppression(ref, pipeline_namespace, pipeline_name)
            self._report_failure(deployment, f"Drift suppression on {pipeline_key} rolled back: {e}")
            return False
        return True

    def _rollback_suppression(self, ref: WorkloadRef, namespace: str, name: str) -> None:
        try:
            self.pipelines.release(namespace, name, ref.key)
        except DrainsurgeError as e:
            logger.error(
                f"Failed to roll back drift suppression on {namespace}/{name} for Deployment {ref.key}: {e}",
                extra={"unit": ref.key, "cause": str(e)},
            )

    def _record_pipeline(self, ref: WorkloadRef, pipeline_key: str) -> None:
        """Record the suppressed pipeline in the Deployment's marker.

        If the marker vanished in the meantime (already restored), the suppression
        is released straight away.
        """
        attempts = self.config.conflict_retries
        for _ in range(attempts):
            deployment = self.deployments.get_resource(ref.name, ref.namespace)
            marker = self.deployments.read_marker(deployment)
            if marker is None:
                logger.info(f"Deployment {ref.key} was restored meanwhile, releasing {pipeline_key}")
                namespace, name = pipeline_key.split("/", 1)
                self.pipelines.release(namespace, name, ref.key)
                return
            if marker.suppressed_pipeline == pipeline_key:
                return
            try:
                self.deployments.record_suppressed_pipeline(deployment, pipeline_key)
                return
            except ConflictError:
                continue

        raise ConflictError(f"Deployment {ref.key} kept changing while recording {pipeline_key}")

    def _report_failure(self, deployment: Any, message: str) -> None:
        if self.reporter is not None and deployment is not None:
            self.reporter.record_failure(deployment, message, EVENT_ACTION_COMPENSATION)

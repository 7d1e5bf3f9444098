"""Delivery pipeline managers.

This module provides the PipelineManager base class for continuous-delivery
resources (such as Argo CD Applications) that would revert a compensation
unless drift correction is suppressed while it lasts.
"""

import abc
import logging
from collections.abc import Callable
from typing import Any, ClassVar

from drainsurge.config import RetryPolicy
from drainsurge.errors import ConflictError, NotFoundError
from drainsurge.kubernetes.connection import KubernetesConnection
from drainsurge.retry import call_with_retries

logger = logging.getLogger(__name__)

# Annotation listing the <namespace>/<name> workload keys a pipeline is suppressed for
SUPPRESSED_FOR_ANNOTATION = "drainsurge.io/suppressed-for"
# Annotation holding the suppression annotation's value before Drainsurge overwrote it
PREVIOUS_VALUE_ANNOTATION = "drainsurge.io/previous-value"


class PipelineManager(abc.ABC):
    """Base class for delivery pipelines whose drift correction can be suppressed.

    Suppression is reference counted through SUPPRESSED_FOR_ANNOTATION so that
    several compensated workloads can share one pipeline: the suppression
    annotation is only removed when the last of them is restored.
    """

    RESOURCE_API_VERSION: ClassVar[str]
    RESOURCE_KIND: ClassVar[str]

    def __init__(
        self,
        connection: KubernetesConnection,
        annotation_key: str,
        annotation_value: str,
        retry_policy: RetryPolicy | None = None,
        conflict_retries: int = 5,
    ):
        """Initialize the pipeline manager.

        Args:
            connection: The Kubernetes connection to use
            annotation_key: Annotation key that suppresses drift correction
            annotation_value: Annotation value that suppresses drift correction
            retry_policy: Retry policy for transient API failures
            conflict_retries: Re-read-and-retry attempts when an update conflicts
        """
        self.connection = connection
        self.annotation_key = annotation_key
        self.annotation_value = annotation_value
        self.retry_policy = retry_policy or RetryPolicy()
        self.conflict_retries = conflict_retries

    @abc.abstractmethod
    def get_resource(self, name: str, namespace: str) -> dict[str, Any]:
        """Get a pipeline resource by name."""
        pass

    @abc.abstractmethod
    def patch_resource(self, resource: dict[str, Any], body: dict) -> dict[str, Any]:
        """Patch a pipeline resource with the given body."""
        pass

    @abc.abstractmethod
    def find_pipeline_for_app(self, namespace: str, app_id: str) -> dict[str, Any] | None:
        """Find the pipeline delivering an application.

        Args:
            namespace: Namespace to look in.
            app_id: Application identity derived from the workload.

        Returns:
            The pipeline resource, or None if there is none.
        """
        pass

    def call_api(self, func: Callable[[], Any], description: str) -> Any:
        return call_with_retries(func, self.retry_policy, description)

    @staticmethod
    def get_resource_key(resource: dict[str, Any]) -> str:
        metadata = resource.get("metadata", {})
        return f"{metadata.get('namespace')}/{metadata.get('name')}"

    @staticmethod
    def get_annotations(resource: dict[str, Any]) -> dict[str, str]:
        return resource.get("metadata", {}).get("annotations") or {}

    @staticmethod
    def _parse_owners(annotations: dict[str, str]) -> list[str]:
        raw = annotations.get(SUPPRESSED_FOR_ANNOTATION, "")
        return sorted({owner.strip() for owner in raw.split(",") if owner.strip()})

    def suppress(self, namespace: str, name: str, unit_key: str) -> bool:
        """Suppress drift correction on a pipeline on behalf of a workload.

        Args:
            namespace: Namespace of the pipeline.
            name: Name of the pipeline.
            unit_key: <namespace>/<name> of the compensated workload.

        Returns:
            True if the workload is now recorded as an owner of the suppression,
            False if the suppression annotation was already set by someone else.
        """
        def mutate(annotations: dict[str, str]) -> dict[str, str | None] | None:
            owners = self._parse_owners(annotations)
            current = annotations.get(self.annotation_key)
            if unit_key in owners:
                return None
            if not owners and current == self.annotation_value:
                return None

            patch: dict[str, str | None] = {
                self.annotation_key: self.annotation_value,
                SUPPRESSED_FOR_ANNOTATION: ",".join(sorted(owners + [unit_key])),
            }
            if not owners and current is not None:
                patch[PREVIOUS_VALUE_ANNOTATION] = current
            return patch

        final = self._update_annotations(namespace, name, mutate)
        owned = unit_key in self._parse_owners(self.get_annotations(final))
        if owned:
            logger.info(f"Suppressed drift correction on {self.RESOURCE_KIND} {namespace}/{name} for {unit_key}")
        else:
            logger.info(
                f"{self.RESOURCE_KIND} {namespace}/{name} already carries {self.annotation_key}="
                f"{self.annotation_value}, leaving it untouched"
            )
        return owned

    def release(self, namespace: str, name: str, unit_key: str) -> None:
        """Release the suppression held by a workload on a pipeline.

        The suppression annotation is restored to its previous value (or removed)
        once no workload holds it anymore. A pipeline that disappeared is ignored.

        Args:
            namespace: Namespace of the pipeline.
            name: Name of the pipeline.
            unit_key: <namespace>/<name> of the restored workload.
        """
        def mutate(annotations: dict[str, str]) -> dict[str, str | None] | None:
            owners = self._parse_owners(annotations)
            if unit_key not in owners:
                return None
            remaining = [owner for owner in owners if owner != unit_key]
            if remaining:
                return {SUPPRESSED_FOR_ANNOTATION: ",".join(remaining)}
            return {
                self.annotation_key: annotations.get(PREVIOUS_VALUE_ANNOTATION),
                SUPPRESSED_FOR_ANNOTATION: None,
                PREVIOUS_VALUE_ANNOTATION: None,
            }

        try:
            self._update_annotations(namespace, name, mutate)
        except NotFoundError:
            logger.warning(f"{self.RESOURCE_KIND} {namespace}/{name} no longer exists, nothing to release")
            return
        logger.info(f"Released drift suppression on {self.RESOURCE_KIND} {namespace}/{name} for {unit_key}")

    def _update_annotations(
        self,
        namespace: str,
        name: str,
        mutate: Callable[[dict[str, str]], dict[str, str | None] | None],
    ) -> dict[str, Any]:
        """Read-modify-write the annotations of a pipeline under optimistic concurrency.

        Args:
            namespace: Namespace of the pipeline.
            name: Name of the pipeline.
            mutate: Called with the current annotations, returns the annotation patch
                or None when nothing needs to change.

        Returns:
            The pipeline resource as last read or written.

        Raises:
            ConflictError: When every attempt conflicted.
            NotFoundError: When the pipeline does not exist.
        """
        for attempt in range(1, self.conflict_retries + 1):
            resource = self.get_resource(name, namespace)
            patch = mutate(self.get_annotations(resource))
            if patch is None:
                return resource

            body = {
                "metadata": {
                    "resourceVersion": resource.get("metadata", {}).get("resourceVersion"),
                    "annotations": patch,
                }
            }
            try:
                return self.patch_resource(resource, body)
            except ConflictError:
                logger.debug(
                    f"Conflict updating {self.RESOURCE_KIND} {namespace}/{name} "
                    f"(attempt {attempt}/{self.conflict_retries}), re-reading"
                )

        raise ConflictError(
            f"{self.RESOURCE_KIND} {namespace}/{name} kept changing, gave up after {self.conflict_retries} attempts"
        )

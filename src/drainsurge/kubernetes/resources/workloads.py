"""Kubernetes Workload resources handling module.

This module provides common functionality for Kubernetes workload resources that
can be scaled via replicas, including reading and writing the compensation marker.

The marker lives on the workload itself so that it survives process restarts:
a label makes the state visible to operators, annotations hold the marker values.
"""

import abc
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from drainsurge.errors import ConfigurationError
from drainsurge.kubernetes.base import KubernetesResource

logger = logging.getLogger(__name__)

# Type variable for workload resource types
T = TypeVar("T")

# Label set on every workload under compensation
COMPENSATED_LABEL = "drainsurge.io/compensated"
# Annotation holding the replica count observed before compensation
ORIGINAL_REPLICAS_ANNOTATION = "drainsurge.io/original-replicas"
# Annotation holding the time the marker was written
COMPENSATED_AT_ANNOTATION = "drainsurge.io/compensated-at"
# Annotation holding the <namespace>/<name> of the suppressed delivery pipeline
SUPPRESSED_PIPELINE_ANNOTATION = "drainsurge.io/suppressed-pipeline"


@dataclass(frozen=True)
class CompensationMarker:
    """Compensation marker read from a workload.

    Attributes:
        original_replicas: Replica count observed before compensation.
        set_at: When the marker was written, None if the timestamp is missing.
        suppressed_pipeline: <namespace>/<name> of the suppressed pipeline, if any.
    """
    original_replicas: int
    set_at: datetime | None = None
    suppressed_pipeline: str | None = None


class ReplicatedWorkloadResource(KubernetesResource[T], Generic[T], abc.ABC):
    """Base class for Kubernetes resources that use replicas for scaling.

    All writes are conditional on the resourceVersion of the object passed in,
    so a stale object yields a ConflictError instead of a blind overwrite.
    """

    def get_replicas(self, resource: T) -> int:
        """Get the current replica count for a resource.

        Args:
            resource: The resource to get the replica count from.

        Returns:
            The current replica count, 0 when unset.
        """
        return resource.spec.replicas or 0

    def has_marker(self, resource: T) -> bool:
        """Check whether a resource carries any part of a compensation marker.

        Args:
            resource: The resource to check.

        Returns:
            True if the compensated label or the original replicas annotation is present.
        """
        return (
            self.get_labels(resource).get(COMPENSATED_LABEL) == "true"
            or self._get_annotation(resource, ORIGINAL_REPLICAS_ANNOTATION) is not None
        )

    def read_marker(self, resource: T) -> CompensationMarker | None:
        """Read the compensation marker of a resource.

        Args:
            resource: The resource to read the marker from.

        Returns:
            The marker, or None if the resource is not under compensation.

        Raises:
            ConfigurationError: If the marker is present but malformed.
        """
        if not self.has_marker(resource):
            return None

        key = self.get_resource_key(resource)
        raw_replicas = self._get_annotation(resource, ORIGINAL_REPLICAS_ANNOTATION)
        if raw_replicas is None:
            raise ConfigurationError(f"{self.RESOURCE_KIND} {key} is labelled compensated but has no original replicas")
        try:
            original_replicas = int(raw_replicas)
        except ValueError as e:
            raise ConfigurationError(
                f"{self.RESOURCE_KIND} {key} has a non-numeric original replicas value: {raw_replicas!r}"
            ) from e
        if original_replicas < 0:
            raise ConfigurationError(
                f"{self.RESOURCE_KIND} {key} has a negative original replicas value: {original_replicas}"
            )

        set_at = None
        raw_set_at = self._get_annotation(resource, COMPENSATED_AT_ANNOTATION)
        if raw_set_at is not None:
            try:
                set_at = datetime.fromisoformat(raw_set_at)
            except ValueError as e:
                raise ConfigurationError(
                    f"{self.RESOURCE_KIND} {key} has an invalid compensation timestamp: {raw_set_at!r}"
                ) from e
            if set_at.tzinfo is None:
                set_at = set_at.replace(tzinfo=UTC)

        return CompensationMarker(
            original_replicas=original_replicas,
            set_at=set_at,
            suppressed_pipeline=self._get_annotation(resource, SUPPRESSED_PIPELINE_ANNOTATION),
        )

    def _conditional_body(self, resource: T, metadata: dict[str, Any], spec: dict[str, Any] | None = None) -> dict:
        """Build a patch body that only applies at the resource's current version."""
        body: dict[str, Any] = {"metadata": dict(metadata, resourceVersion=self.get_resource_version(resource))}
        if spec:
            body["spec"] = spec
        return body

    def apply_compensation(self, resource: T, target_replicas: int, now: datetime | None = None) -> T:
        """Write the marker and scale the resource in a single conditional patch.

        Args:
            resource: The resource as last read.
            target_replicas: The compensated replica count.
            now: Marker timestamp, defaults to the current UTC time.

        Returns:
            The patched resource.
        """
        now = now or datetime.now(UTC)
        body = self._conditional_body(
            resource,
            {
                "labels": {COMPENSATED_LABEL: "true"},
                "annotations": {
                    ORIGINAL_REPLICAS_ANNOTATION: str(self.get_replicas(resource)),
                    COMPENSATED_AT_ANNOTATION: now.isoformat(),
                },
            },
            {"replicas": target_replicas},
        )
        return self.patch_resource(resource, body)

    def record_suppressed_pipeline(self, resource: T, pipeline_key: str) -> T:
        """Record on the marker which delivery pipeline was suppressed.

        Args:
            resource: The resource as last read.
            pipeline_key: <namespace>/<name> of the pipeline.

        Returns:
            The patched resource.
        """
        body = self._conditional_body(resource, {"annotations": {SUPPRESSED_PIPELINE_ANNOTATION: pipeline_key}})
        return self.patch_resource(resource, body)

    def clear_marker(self, resource: T, replicas: int | None = None) -> T:
        """Remove the marker, optionally restoring the replica count in the same patch.

        Args:
            resource: The resource as last read.
            replicas: Replica count to restore, None to leave spec.replicas untouched.

        Returns:
            The patched resource.
        """
        body = self._conditional_body(
            resource,
            {
                "labels": {COMPENSATED_LABEL: None},
                "annotations": {
                    ORIGINAL_REPLICAS_ANNOTATION: None,
                    COMPENSATED_AT_ANNOTATION: None,
                    SUPPRESSED_PIPELINE_ANNOTATION: None,
                },
            },
            {"replicas": replicas} if replicas is not None else None,
        )
        return self.patch_resource(resource, body)

    def iter_compensated(self, batch_size: int = 100) -> Iterator[T]:
        """Iterate over all resources carrying a compensation marker, across all namespaces.

        Annotations cannot be selected server-side, so every resource is listed and
        filtered with has_marker. A resource that lost its label but kept its
        original replicas annotation is still found and restored.
        """
        for resource in self.iter_resources(batch_size=batch_size):
            if self.has_marker(resource):
                yield resource

    @abc.abstractmethod
    def get_resource(self, name: str, namespace: str) -> T:
        """Get a specific resource by name.

        Args:
            name: Name of the resource.
            namespace: Namespace of the resource.

        Returns:
            The resource object.
        """
        pass

    @abc.abstractmethod
    def patch_resource(self, resource: T, body: dict) -> T:
        """Patch a specific resource with the given body.

        Args:
            resource: The resource to patch.
            body: The patch body to apply.

        Returns:
            The patched resource.
        """
        pass

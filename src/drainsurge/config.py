"""Configuration module for Drainsurge.

This module handles the configuration of Drainsurge through environment variables.
"""
import os
import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

# Kubernetes qualified name, optionally prefixed with a DNS subdomain
_QUALIFIED_NAME = re.compile(
    r"^([a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*/)?"
    r"[A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?$"
)


class ScaleMode(str, Enum):
    """How the compensation target replica count is computed.

    FIXED scales to a fixed replica count (never below the current count).
    INCREMENT adds a fixed number of replicas to the current count.
    """
    FIXED = "fixed"
    INCREMENT = "increment"


class RetryPolicy(BaseModel):
    """Retry budget and backoff parameters for calls to the Kubernetes API.

    Attributes:
        attempts: Maximum number of attempts for transient failures.
        initial_backoff: Delay in seconds before the first retry.
        max_backoff: Upper bound for the delay between two retries.
        backoff_multiplier: Factor applied to the delay after each retry.
    """
    attempts: int = Field(default=5, ge=1)
    initial_backoff: float = Field(default=0.5, ge=0)
    max_backoff: float = Field(default=30.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)

    def delays(self):
        """Yield the delays to wait between consecutive attempts."""
        delay = self.initial_backoff
        for _ in range(self.attempts - 1):
            yield min(delay, self.max_backoff)
            delay *= self.backoff_multiplier


class DrainsurgeConfig(BaseModel):
    """Configuration class for Drainsurge.

    Attributes:
        event_reason: Event reason that signals a blocked disruption.
        eligible_types: Values of the type label that make a pod eligible for compensation.
        app_label: Label key grouping pods and selecting their Deployment.
        type_label: Label key holding the workload type.
        scale_mode: How the compensation target is computed.
        target_replicas: Target replica count in fixed mode.
        replica_increment: Number of replicas added in increment mode.
        suppress_drift: Whether to annotate the Argo CD Application during compensation.
        suppression_annotation_key: Annotation key used to suppress drift correction.
        suppression_annotation_value: Annotation value used to suppress drift correction.
        pipeline_namespace: Namespace holding Argo CD Applications. None means the workload namespace.
        sweep_interval: Seconds between two restoration sweeps.
        compensation_window: Minimum age in seconds of a marker before it is restored.
        watch_timeout: Server-side timeout in seconds for a single event watch.
        conflict_retries: Re-read-and-retry attempts when a write conflicts.
        retry: Retry policy for transient API failures.
        emit_events: Whether to record Kubernetes Events on compensated Deployments.
    """
    event_reason: str = Field(default="DisruptionBlocked", min_length=1)
    eligible_types: list[str] = Field(default=["test"])
    app_label: str = Field(default="app")
    type_label: str = Field(default="type")
    scale_mode: ScaleMode = Field(default=ScaleMode.FIXED)
    target_replicas: int = Field(default=2, ge=1)
    replica_increment: int = Field(default=1, ge=1)
    suppress_drift: bool = Field(default=True)
    suppression_annotation_key: str = Field(default="argocd.argoproj.io/sync-options")
    suppression_annotation_value: str = Field(default="IgnoreExtraneous")
    pipeline_namespace: str | None = Field(default=None)
    sweep_interval: int = Field(default=300, gt=0)
    compensation_window: int = Field(default=300, ge=0)
    watch_timeout: int = Field(default=300, gt=0)
    conflict_retries: int = Field(default=5, ge=1)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    emit_events: bool = Field(default=True)

    @field_validator("eligible_types")
    def validate_eligible_types(cls, v):
        """Validate that at least one eligible type is configured"""
        types = [t.strip() for t in v if t and t.strip()]
        if not types:
            raise ValueError("At least one eligible type must be configured")
        return types

    @field_validator("app_label", "type_label", "suppression_annotation_key")
    def validate_qualified_name(cls, v):
        """Validate that label and annotation keys are Kubernetes qualified names"""
        if not _QUALIFIED_NAME.match(v):
            raise ValueError(f"Invalid label or annotation key: {v!r}")
        return v

    def compute_target(self, current: int) -> int:
        """Compute the compensated replica count for a unit.

        Args:
            current: The current replica count.

        Returns:
            The replica count to scale to.
        """
        if self.scale_mode == ScaleMode.INCREMENT:
            return current + self.replica_increment
        return max(self.target_replicas, current)

    @classmethod
    def from_env(cls):
        """Create a config instance from environment variables."""
        eligible_types = os.getenv("DRAINSURGE_ELIGIBLE_TYPES", "test").split(",")

        retry = RetryPolicy(
            attempts=int(os.getenv("DRAINSURGE_RETRY_ATTEMPTS", "5")),
            initial_backoff=float(os.getenv("DRAINSURGE_RETRY_INITIAL_BACKOFF", "0.5")),
            max_backoff=float(os.getenv("DRAINSURGE_RETRY_MAX_BACKOFF", "30")),
            backoff_multiplier=float(os.getenv("DRAINSURGE_RETRY_BACKOFF_MULTIPLIER", "2.0")),
        )

        return cls(
            event_reason=os.getenv("DRAINSURGE_EVENT_REASON", "DisruptionBlocked"),
            eligible_types=eligible_types,
            app_label=os.getenv("DRAINSURGE_APP_LABEL", "app"),
            type_label=os.getenv("DRAINSURGE_TYPE_LABEL", "type"),
            scale_mode=os.getenv("DRAINSURGE_SCALE_MODE", "fixed").lower(),
            target_replicas=int(os.getenv("DRAINSURGE_TARGET_REPLICAS", "2")),
            replica_increment=int(os.getenv("DRAINSURGE_REPLICA_INCREMENT", "1")),
            suppress_drift=_parse_bool(os.getenv("DRAINSURGE_SUPPRESS_DRIFT", "true")),
            suppression_annotation_key=os.getenv(
                "DRAINSURGE_SUPPRESSION_ANNOTATION_KEY", "argocd.argoproj.io/sync-options"),
            suppression_annotation_value=os.getenv(
                "DRAINSURGE_SUPPRESSION_ANNOTATION_VALUE", "IgnoreExtraneous"),
            pipeline_namespace=os.getenv("DRAINSURGE_PIPELINE_NAMESPACE") or None,
            sweep_interval=int(os.getenv("DRAINSURGE_SWEEP_INTERVAL", "300")),
            compensation_window=int(os.getenv("DRAINSURGE_COMPENSATION_WINDOW", "300")),
            watch_timeout=int(os.getenv("DRAINSURGE_WATCH_TIMEOUT", "300")),
            conflict_retries=int(os.getenv("DRAINSURGE_CONFLICT_RETRIES", "5")),
            retry=retry,
            emit_events=_parse_bool(os.getenv("DRAINSURGE_EMIT_EVENTS", "true")),
        )


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")

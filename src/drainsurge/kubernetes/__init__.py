"""Kubernetes client module for Drainsurge.

This module handles all interactions with the Kubernetes API.
"""

from drainsurge.kubernetes.controller import KubernetesController
from drainsurge.kubernetes.resources.workloads import (
    COMPENSATED_AT_ANNOTATION,
    COMPENSATED_LABEL,
    ORIGINAL_REPLICAS_ANNOTATION,
    SUPPRESSED_PIPELINE_ANNOTATION,
)

# Export KubernetesController as the main interface
__all__ = [
    "KubernetesController",
    "COMPENSATED_LABEL",
    "ORIGINAL_REPLICAS_ANNOTATION",
    "COMPENSATED_AT_ANNOTATION",
    "SUPPRESSED_PIPELINE_ANNOTATION",
]

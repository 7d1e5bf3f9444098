"""Pipeline managers package.

This package contains implementations of PipelineManager for continuous-delivery
resources whose drift correction can be suppressed during a compensation.
"""

from drainsurge.kubernetes.resources.managers.argocd import ArgoApplication

__all__ = [
    "ArgoApplication",
]

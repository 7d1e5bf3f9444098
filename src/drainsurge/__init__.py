__version__ = "0.1.0"
__description__ = (
    "Kubernetes reconciler that temporarily scales up workloads whose disruption budget blocks a node drain, "
    "and restores them afterwards"
)

"""Kubernetes Pods handling module.

Pods are only ever read: they tell which workloads run on a node.
"""

import logging

from kubernetes import client

from drainsurge.config import RetryPolicy
from drainsurge.kubernetes.base import KubernetesResource
from drainsurge.kubernetes.connection import KubernetesConnection

logger = logging.getLogger(__name__)


class PodResource(KubernetesResource[client.V1Pod]):
    """Read-only handler for Kubernetes Pod resources."""

    RESOURCE_API_VERSION = "v1"
    RESOURCE_KIND = "Pod"

    def __init__(self, connection: KubernetesConnection, retry_policy: RetryPolicy | None = None):
        super().__init__(connection, retry_policy)
        self.api = connection.core_v1_api

    def list_on_node(self, node_name: str) -> list[client.V1Pod]:
        """List the pods scheduled on a node, across all namespaces.

        Args:
            node_name: Name of the node.

        Returns:
            The pods bound to that node.
        """
        return list(self.iter_resources(field_selector=f"spec.nodeName={node_name}"))

    def list_namespaced_resources(self, namespace: str, **kwargs) -> any:
        return self.api.list_namespaced_pod(namespace, **kwargs)

    def list_all_namespaces_resources(self, **kwargs) -> any:
        return self.api.list_pod_for_all_namespaces(**kwargs)

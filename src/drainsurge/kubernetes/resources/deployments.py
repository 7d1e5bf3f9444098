"""Kubernetes Deployments handling module.

This module provides specific functionality for managing Kubernetes Deployments.
"""

import logging

from kubernetes import client

from drainsurge.config import RetryPolicy
from drainsurge.kubernetes.connection import KubernetesConnection
from drainsurge.kubernetes.resources.workloads import ReplicatedWorkloadResource

logger = logging.getLogger(__name__)


class DeploymentResource(ReplicatedWorkloadResource[client.V1Deployment]):
    """Handler for Kubernetes Deployment resources."""

    # Resource type specific constants
    RESOURCE_API_VERSION = "apps/v1"
    RESOURCE_KIND = "Deployment"

    def __init__(self, connection: KubernetesConnection, retry_policy: RetryPolicy | None = None):
        """Initialize the Deployment resource handler.

        Args:
            connection: The Kubernetes connection to use
            retry_policy: Retry policy for transient API failures.
        """
        super().__init__(connection, retry_policy)
        # API client for deployments
        self.api = connection.apps_v1_api

    def get_resource(self, name: str, namespace: str) -> client.V1Deployment:
        """Get a specific deployment by name.

        Args:
            name: Name of the deployment.
            namespace: Namespace of the deployment.

        Returns:
            The deployment object.
        """
        return self.call_api(
            lambda: self.api.read_namespaced_deployment(name, namespace),
            f"read Deployment {namespace}/{name}",
        )

    def patch_resource(self, resource: client.V1Deployment, body: dict) -> client.V1Deployment:
        """Patch a deployment with the given body.

        Args:
            resource: The deployment to patch.
            body: The patch body to apply.

        Returns:
            The patched deployment.
        """
        name = resource.metadata.name
        namespace = resource.metadata.namespace
        patched = self.call_api(
            lambda: self.api.patch_namespaced_deployment(name=name, namespace=namespace, body=body),
            f"patch Deployment {namespace}/{name}",
        )
        logger.debug(f"Patched Deployment {namespace}/{name}: {body}")
        return patched

    def find_by_selector(self, namespace: str, label_selector: str) -> list[client.V1Deployment]:
        """Find deployments matching a label selector in a namespace.

        Args:
            namespace: The namespace to search.
            label_selector: Kubernetes label selector, e.g. app=checkout.

        Returns:
            The matching deployments, sorted by name.
        """
        deployments = list(self.iter_resources(namespace=namespace, label_selector=label_selector))
        return sorted(deployments, key=lambda d: d.metadata.name)

    def list_namespaced_resources(self, namespace: str, **kwargs) -> any:
        """List deployments in a specific namespace.

        Args:
            namespace: The namespace to list deployments in.
            **kwargs: Additional arguments to pass to the API call.

        Returns:
            The API response containing the list of deployments.
        """
        return self.api.list_namespaced_deployment(namespace, **kwargs)

    def list_all_namespaces_resources(self, **kwargs) -> any:
        """List deployments across all namespaces.

        Args:
            **kwargs: Additional arguments to pass to the API call.

        Returns:
            The API response containing the list of deployments.
        """
        return self.api.list_deployment_for_all_namespaces(**kwargs)

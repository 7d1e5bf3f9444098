"""Base module for Kubernetes resources.

This module provides the base class for all Kubernetes resources handled by Drainsurge.
"""

import abc
import logging
from collections.abc import Callable, Iterator
from typing import Any, ClassVar, Generic, TypeVar

from drainsurge.config import RetryPolicy
from drainsurge.kubernetes.connection import KubernetesConnection
from drainsurge.retry import call_with_retries

logger = logging.getLogger(__name__)

# Type variable for resource types
T = TypeVar("T")


class KubernetesResource(Generic[T], abc.ABC):
    """Base class for all Kubernetes resources.

    This abstract base class defines the common read and write primitives shared by
    every resource type. Every API call goes through call_api so that transient
    failures are retried and errors are translated in one place.
    """

    # Resource type specific constants
    RESOURCE_API_VERSION: ClassVar[str]
    RESOURCE_KIND: ClassVar[str]

    def __init__(self, connection: KubernetesConnection, retry_policy: RetryPolicy | None = None):
        """Initialize the resource handler.

        Args:
            connection: The Kubernetes connection to use
            retry_policy: Retry policy for transient API failures. Defaults to RetryPolicy().
        """
        self.connection = connection
        self.retry_policy = retry_policy or RetryPolicy()

    def call_api(self, func: Callable[[], Any], description: str) -> Any:
        """Run an API call under the handler's retry policy.

        Args:
            func: Zero-argument callable performing the API call.
            description: Short description used in logs and error messages.

        Returns:
            The API response.
        """
        return call_with_retries(func, self.retry_policy, description)

    def iter_resources(self, namespace: str | None = None, batch_size: int = 100, **kwargs) -> Iterator[T]:
        """Iterate over resources in a namespace or across all namespaces.

        Uses pagination to fetch resources in batches and yield them one by one
        to limit memory usage. Errors propagate to the caller.

        Args:
            namespace: Namespace to get resources from. If None, list across all namespaces.
            batch_size: Number of resources to fetch per API call.
            **kwargs: Extra list options such as label_selector or field_selector.

        Yields:
            Resources, one at a time.
        """
        continue_token = None

        while True:
            # Fetch current page of resources
            if namespace:
                result = self.call_api(
                    lambda: self.list_namespaced_resources(
                        namespace, limit=batch_size, _continue=continue_token, **kwargs),
                    f"list {self.RESOURCE_KIND}s in {namespace}",
                )
            else:
                result = self.call_api(
                    lambda: self.list_all_namespaces_resources(
                        limit=batch_size, _continue=continue_token, **kwargs),
                    f"list {self.RESOURCE_KIND}s",
                )

            yield from self.get_items(result)

            # Check if there are more pages to process
            continue_token = self.get_continue_token(result)
            if not continue_token:
                break

    def get_items(self, result: Any) -> list[T]:
        """Extract the items of a list response."""
        return result.items

    def get_continue_token(self, result: Any) -> str | None:
        """Extract the pagination token of a list response."""
        return result.metadata._continue

    @abc.abstractmethod
    def list_namespaced_resources(self, namespace: str, **kwargs) -> Any:
        """List resources in a specific namespace.

        Args:
            namespace: The namespace to list resources in.
            **kwargs: Additional arguments to pass to the API call.

        Returns:
            The API response containing the list of resources.
        """
        pass

    @abc.abstractmethod
    def list_all_namespaces_resources(self, **kwargs) -> Any:
        """List resources across all namespaces.

        Args:
            **kwargs: Additional arguments to pass to the API call.

        Returns:
            The API response containing the list of resources.
        """
        pass

    def get_resource_key(self, resource: T) -> str:
        """Get a unique key for a resource.

        Args:
            resource: The resource to get the key for.

        Returns:
            A string that uniquely identifies the resource.
        """
        return f"{self.get_resource_namespace(resource)}/{self.get_resource_name(resource)}"

    def get_resource_name(self, resource: T) -> str:
        """Get the name of a resource."""
        return resource.metadata.name

    def get_resource_namespace(self, resource: T) -> str:
        """Get the namespace of a resource."""
        return resource.metadata.namespace

    def get_resource_version(self, resource: T) -> str | None:
        """Get the resourceVersion a resource was read at."""
        return resource.metadata.resource_version

    def get_labels(self, resource: T) -> dict[str, str]:
        """Get the labels of a resource, never None."""
        return resource.metadata.labels or {}

    def _get_annotation(self, resource: T, annotation_key: str) -> str | None:
        """Get an annotation from a resource.

        Args:
            resource: The resource to get the annotation from.
            annotation_key: The annotation key to get.

        Returns:
            The annotation value, or None if not found.
        """
        annotations = getattr(resource.metadata, "annotations", None)
        if annotations and annotation_key in annotations:
            return annotations[annotation_key]
        return None

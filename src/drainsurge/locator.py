"""Workload locator module for Drainsurge.

This module works out which Deployments run pods on a node and are eligible for
compensation.
"""

import logging
from dataclasses import dataclass

from drainsurge.config import DrainsurgeConfig
from drainsurge.errors import DrainsurgeError
from drainsurge.kubernetes.resources.deployments import DeploymentResource
from drainsurge.kubernetes.resources.pods import PodResource

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class WorkloadRef:
    """Identity of a Deployment to compensate.

    Attributes:
        namespace: Namespace of the Deployment.
        name: Name of the Deployment.
        app: Value of the app label the Deployment was found with.
    """
    namespace: str
    name: str
    app: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


class WorkloadLocator:
    """Locates the compensation candidates running on a node."""

    def __init__(self, config: DrainsurgeConfig, pods: PodResource, deployments: DeploymentResource):
        """Initialize the locator.

        Args:
            config: The Drainsurge configuration.
            pods: Handler used to list pods on a node.
            deployments: Handler used to resolve Deployments by label.
        """
        self.config = config
        self.pods = pods
        self.deployments = deployments

    def candidate_groups(self, node_name: str) -> list[tuple[str, str]]:
        """List the (namespace, app) groups of eligible pods on a node.

        A pod is eligible when its app label is non-empty and its type label is one
        of the configured eligible types.

        Args:
            node_name: Name of the node.

        Returns:
            Sorted, de-duplicated (namespace, app) pairs.
        """
        eligible_types = set(self.config.eligible_types)
        groups = set()

        for pod in self.pods.list_on_node(node_name):
            labels = pod.metadata.labels or {}
            app = labels.get(self.config.app_label, "")
            pod_type = labels.get(self.config.type_label, "")
            logger.debug(f"Pod {pod.metadata.namespace}/{pod.metadata.name} app={app!r} type={pod_type!r}")
            if app and pod_type in eligible_types:
                groups.add((pod.metadata.namespace, app))

        return sorted(groups)

    def locate(self, node_name: str) -> list[WorkloadRef]:
        """Find the Deployments to compensate for a node.

        Groups that resolve to no Deployment, or whose lookup fails, are skipped.
        When several Deployments match, the one with the smallest name is chosen.

        Args:
            node_name: Name of the node.

        Returns:
            The Deployments to compensate, sorted by namespace and name.
        """
        if not node_name:
            raise ValueError("Node name must not be empty")

        groups = self.candidate_groups(node_name)
        if not groups:
            logger.info(f"No eligible pods scheduled on node {node_name}")
            return []

        refs = set()
        for namespace, app in groups:
            selector = f"{self.config.app_label}={app}"
            try:
                matches = self.deployments.find_by_selector(namespace, selector)
            except DrainsurgeError as e:
                logger.error(
                    f"Failed to look up Deployments for {selector} in {namespace}: {e}",
                    extra={"unit": f"{namespace}/{app}", "cause": str(e)},
                )
                continue

            if not matches:
                logger.warning(
                    f"No Deployment matches {selector} in {namespace}, skipping",
                    extra={"unit": f"{namespace}/{app}", "cause": "no matching Deployment"},
                )
                continue

            chosen = matches[0]
            if len(matches) > 1:
                names = ", ".join(d.metadata.name for d in matches)
                logger.warning(
                    f"Several Deployments match {selector} in {namespace} ({names}), "
                    f"choosing {chosen.metadata.name}",
                    extra={"unit": f"{namespace}/{chosen.metadata.name}", "cause": "ambiguous selector"},
                )

            refs.add(WorkloadRef(namespace=namespace, name=chosen.metadata.name, app=app))

        return sorted(refs)

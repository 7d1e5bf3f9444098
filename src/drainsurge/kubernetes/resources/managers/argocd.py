"""Argo CD Application pipeline manager.

This module provides the PipelineManager implementation for Argo CD Application
resources, which would otherwise sync a compensated Deployment back to the
replica count declared in git.
"""

import logging
from typing import Any, ClassVar

from drainsurge.errors import NotFoundError
from drainsurge.kubernetes.resource_manager import PipelineManager

logger = logging.getLogger(__name__)

# Label Argo CD sets on every resource it manages
ARGOCD_INSTANCE_LABEL = "argocd.argoproj.io/instance"


class ArgoApplication(PipelineManager):
    """Manages Argo CD Application resources."""

    RESOURCE_API_VERSION: ClassVar[str] = "argoproj.io/v1alpha1"
    RESOURCE_KIND: ClassVar[str] = "Application"

    GROUP: ClassVar[str] = "argoproj.io"
    VERSION: ClassVar[str] = "v1alpha1"
    PLURAL: ClassVar[str] = "applications"

    def get_resource(self, name: str, namespace: str) -> dict[str, Any]:
        """Get a specific Application by name.

        Args:
            name: Name of the Application
            namespace: Namespace of the Application

        Returns:
            The Application resource object
        """
        return self.call_api(
            lambda: self.connection.custom_objects_api.get_namespaced_custom_object(
                group=self.GROUP,
                version=self.VERSION,
                namespace=namespace,
                plural=self.PLURAL,
                name=name,
            ),
            f"read Application {namespace}/{name}",
        )

    def patch_resource(self, resource: dict[str, Any], body: dict) -> dict[str, Any]:
        """Patch an Application resource with the given body.

        Args:
            resource: The Application resource to patch
            body: The patch body to apply

        Returns:
            The patched Application
        """
        metadata = resource.get("metadata", {})
        name = metadata.get("name")
        namespace = metadata.get("namespace")

        patched = self.call_api(
            lambda: self.connection.custom_objects_api.patch_namespaced_custom_object(
                group=self.GROUP,
                version=self.VERSION,
                namespace=namespace,
                plural=self.PLURAL,
                name=name,
                body=body,
            ),
            f"patch Application {namespace}/{name}",
        )
        logger.debug(f"Patched Application {namespace}/{name}: {body}")
        return patched

    def find_pipeline_for_app(self, namespace: str, app_id: str) -> dict[str, Any] | None:
        """Find the Application named after an application identity.

        Args:
            namespace: Namespace holding the Application
            app_id: Application name

        Returns:
            The Application resource, or None if it does not exist
        """
        try:
            return self.get_resource(app_id, namespace)
        except NotFoundError:
            logger.debug(f"No Application {namespace}/{app_id}")
            return None

    @staticmethod
    def derive_app_identity(labels: dict[str, str], app_label_value: str, namespace: str) -> tuple[str, str]:
        """Derive the Application identity of a workload.

        Argo CD's tracking label wins over the workload's app label. With
        applications in any namespace the tracking label reads <namespace>_<name>.

        Args:
            labels: Labels of the workload
            app_label_value: Value of the workload's app label
            namespace: Namespace to use when the tracking label does not carry one

        Returns:
            A (namespace, name) tuple
        """
        instance = labels.get(ARGOCD_INSTANCE_LABEL)
        if instance:
            if "_" in instance:
                app_namespace, app_name = instance.split("_", 1)
                return app_namespace, app_name
            return namespace, instance
        return namespace, app_label_value

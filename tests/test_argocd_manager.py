"""Tests for the Argo CD Application pipeline manager."""

import unittest

from kubernetes.client.exceptions import ApiException

from drainsurge.config import RetryPolicy
from drainsurge.errors import ConflictError, TransientInfraError
from drainsurge.kubernetes.resource_manager import PREVIOUS_VALUE_ANNOTATION, SUPPRESSED_FOR_ANNOTATION
from drainsurge.kubernetes.resources.managers import ArgoApplication
from fakes import make_connection

KEY = "argocd.argoproj.io/sync-options"
VALUE = "IgnoreExtraneous"


class TestArgoApplication(unittest.TestCase):
    """Unit tests for the ArgoApplication class."""

    def setUp(self):
        """Set up test environment before each test method."""
        self.connection = make_connection()
        self.api = self.connection.custom_objects_api
        self.api.add_object("applications", "argocd", "checkout")
        self.manager = ArgoApplication(
            self.connection,
            annotation_key=KEY,
            annotation_value=VALUE,
            retry_policy=RetryPolicy(attempts=2, initial_backoff=0),
            conflict_retries=3,
        )

    def annotations(self):
        return self.api.annotations("applications", "argocd", "checkout")

    def test_find_pipeline_for_app(self):
        """Test finding an Application by name."""
        app = self.manager.find_pipeline_for_app("argocd", "checkout")
        self.assertEqual(app["metadata"]["name"], "checkout")

    def test_find_pipeline_for_app_missing(self):
        """Test that a missing Application yields None."""
        self.assertIsNone(self.manager.find_pipeline_for_app("argocd", "billing"))

    def test_derive_app_identity(self):
        """Test deriving the Application identity from workload labels."""
        self.assertEqual(ArgoApplication.derive_app_identity({}, "checkout", "shop"), ("shop", "checkout"))
        self.assertEqual(
            ArgoApplication.derive_app_identity({"argocd.argoproj.io/instance": "shop-checkout"}, "checkout", "argocd"),
            ("argocd", "shop-checkout"),
        )
        self.assertEqual(
            ArgoApplication.derive_app_identity({"argocd.argoproj.io/instance": "apps_checkout"}, "checkout", "argocd"),
            ("apps", "checkout"),
        )

    def test_suppress_adds_annotation_and_owner(self):
        """Test that suppression writes the annotation and records the owner."""
        self.assertTrue(self.manager.suppress("argocd", "checkout", "shop/checkout"))

        self.assertEqual(self.annotations(), {KEY: VALUE, SUPPRESSED_FOR_ANNOTATION: "shop/checkout"})

    def test_suppress_is_idempotent(self):
        """Test that suppressing twice for the same workload writes once."""
        self.manager.suppress("argocd", "checkout", "shop/checkout")
        self.manager.suppress("argocd", "checkout", "shop/checkout")

        self.assertEqual(len(self.api.patches), 1)

    def test_suppress_keeps_previous_value(self):
        """Test that an existing different value is saved and restored on release."""
        self.api.add_object("applications", "argocd", "checkout", annotations={KEY: "Prune=false"})

        self.manager.suppress("argocd", "checkout", "shop/checkout")
        self.assertEqual(self.annotations()[PREVIOUS_VALUE_ANNOTATION], "Prune=false")

        self.manager.release("argocd", "checkout", "shop/checkout")
        self.assertEqual(self.annotations(), {KEY: "Prune=false"})

    def test_suppress_not_owned_when_already_set(self):
        """Test that a suppression set by someone else is left alone."""
        self.api.add_object("applications", "argocd", "checkout", annotations={KEY: VALUE})

        self.assertFalse(self.manager.suppress("argocd", "checkout", "shop/checkout"))
        self.assertEqual(self.api.patches, [])

    def test_release_is_reference_counted(self):
        """Test that the annotation stays until the last owner releases it."""
        self.manager.suppress("argocd", "checkout", "shop/checkout")
        self.manager.suppress("argocd", "checkout", "shop/checkout-worker")

        self.manager.release("argocd", "checkout", "shop/checkout")
        self.assertEqual(self.annotations(), {KEY: VALUE, SUPPRESSED_FOR_ANNOTATION: "shop/checkout-worker"})

        self.manager.release("argocd", "checkout", "shop/checkout-worker")
        self.assertEqual(self.annotations(), {})

    def test_release_unknown_owner_is_noop(self):
        """Test that releasing for a workload that holds nothing writes nothing."""
        self.manager.release("argocd", "checkout", "shop/checkout")
        self.assertEqual(self.api.patches, [])

    def test_release_missing_application(self):
        """Test that releasing on a deleted Application does not raise."""
        self.manager.release("argocd", "gone", "shop/checkout")

    def test_suppress_retries_conflicts(self):
        """Test that conflicts are retried from a fresh read."""
        self.api.conflicts = 2

        self.assertTrue(self.manager.suppress("argocd", "checkout", "shop/checkout"))
        self.assertEqual(len(self.api.patches), 1)

    def test_suppress_gives_up_after_conflicts(self):
        """Test that persistent conflicts raise ConflictError."""
        self.api.conflicts = 10

        with self.assertRaises(ConflictError):
            self.manager.suppress("argocd", "checkout", "shop/checkout")

    def test_transient_failure_exhausts_budget(self):
        """Test that transient read failures surface once the retry budget is spent."""
        self.api.fail_with = ApiException(status=503)

        with self.assertRaises(TransientInfraError):
            self.manager.suppress("argocd", "checkout", "shop/checkout")


if __name__ == "__main__":
    unittest.main()

"""End-to-end tests of the compensate and restore cycle against in-memory APIs."""

import unittest
from datetime import UTC, datetime

from drainsurge.compensator import CompensationResult
from drainsurge.config import DrainsurgeConfig, RetryPolicy
from drainsurge.kubernetes.controller import KubernetesController
from drainsurge.kubernetes.resources.workloads import COMPENSATED_LABEL, ORIGINAL_REPLICAS_ANNOTATION
from drainsurge.locator import WorkloadRef
from drainsurge.supervisor import Supervisor
from drainsurge.sweeper import UnitState
from drainsurge.watcher import DisruptionSignal, InvolvedObjectKind
from fakes import make_connection

CHECKOUT = WorkloadRef(namespace="shop", name="checkout", app="checkout")


def blocked(node):
    return DisruptionSignal(
        reason="DisruptionBlocked",
        involved_object_kind=InvolvedObjectKind.NODE,
        involved_object_name=node,
        observed_at=datetime.now(UTC),
    )


class TestDrainCycle(unittest.TestCase):
    """A test pod and a prod pod share a node whose drain is blocked."""

    def setUp(self):
        """Set up test fixtures."""
        self.connection = make_connection()
        self.apps = self.connection.apps_v1_api
        self.core = self.connection.core_v1_api
        self.custom = self.connection.custom_objects_api

        self.core.add_pod("shop", "checkout-1", "n1", {"app": "checkout", "type": "test"})
        self.core.add_pod("shop", "billing-1", "n1", {"app": "billing", "type": "prod"})
        self.apps.add_deployment("shop", "checkout", 1, labels={"app": "checkout"})
        self.apps.add_deployment("shop", "billing", 1, labels={"app": "billing"})

    def make_supervisor(self, **overrides):
        settings = {"compensation_window": 0, "suppress_drift": False, "retry": RetryPolicy(attempts=1)}
        settings.update(overrides)
        config = DrainsurgeConfig(**settings)
        return Supervisor(config, KubernetesController(config, connection=self.connection))

    def test_compensate_then_restore(self):
        """Test that only the test workload is scaled up and later restored."""
        supervisor = self.make_supervisor()

        results = supervisor.compensate_node("n1")

        self.assertEqual(results, {CHECKOUT: CompensationResult.COMPENSATED})
        self.assertEqual(self.apps.replicas("shop", "checkout"), 2)
        self.assertEqual(self.apps.annotations("shop", "checkout")[ORIGINAL_REPLICAS_ANNOTATION], "1")
        self.assertEqual(self.apps.replicas("shop", "billing"), 1)

        self.assertEqual(supervisor.sweeper.sweep(), {"shop/checkout": UnitState.NORMAL})

        self.assertEqual(self.apps.replicas("shop", "checkout"), 1)
        self.assertEqual(self.apps.annotations("shop", "checkout"), {})
        self.assertNotIn(COMPENSATED_LABEL, self.apps.labels("shop", "checkout"))
        self.assertEqual(self.apps.replicas("shop", "billing"), 1)
        self.assertEqual(self.apps.patches[-1][1], "checkout")

    def test_repeated_signal_compensates_once(self):
        """Test that the same blocked drain reported twice causes a single scale-up."""
        supervisor = self.make_supervisor()

        supervisor.handle_signal(blocked("n1"))
        supervisor.handle_signal(blocked("n1"))

        self.assertEqual(len(self.apps.patches), 1)
        self.assertEqual(self.apps.replicas("shop", "checkout"), 2)
        self.assertEqual(self.apps.annotations("shop", "checkout")[ORIGINAL_REPLICAS_ANNOTATION], "1")

    def test_signal_for_empty_node(self):
        """Test that a node without eligible workloads changes nothing."""
        supervisor = self.make_supervisor()

        self.assertEqual(supervisor.compensate_node("n2"), {})
        self.assertEqual(self.apps.patches, [])

    def test_window_delays_restoration(self):
        """Test that a fresh compensation survives a sweep inside the window."""
        supervisor = self.make_supervisor(compensation_window=3600)
        supervisor.compensate_node("n1")

        self.assertEqual(supervisor.sweeper.sweep(), {"shop/checkout": UnitState.COMPENSATED})
        self.assertEqual(self.apps.replicas("shop", "checkout"), 2)

    def test_cycle_with_drift_suppression(self):
        """Test that the Application is annotated while compensated and cleaned up afterwards."""
        self.custom.add_object("applications", "argocd", "checkout")
        supervisor = self.make_supervisor(suppress_drift=True, pipeline_namespace="argocd")

        supervisor.compensate_node("n1")
        annotations = self.custom.annotations("applications", "argocd", "checkout")
        self.assertEqual(annotations["argocd.argoproj.io/sync-options"], "IgnoreExtraneous")

        supervisor.sweeper.sweep()

        self.assertEqual(self.custom.annotations("applications", "argocd", "checkout"), {})
        self.assertEqual(self.apps.replicas("shop", "checkout"), 1)

    def test_events_are_recorded(self):
        """Test that compensation and restoration are recorded as Kubernetes Events."""
        supervisor = self.make_supervisor()

        supervisor.compensate_node("n1")
        supervisor.sweeper.sweep()

        bodies = [
            call.kwargs["body"] for call in self.connection.events_v1_api.create_namespaced_event.call_args_list
        ]
        self.assertEqual([body.reason for body in bodies], ["Compensated", "Restored"])
        self.assertEqual({body.reporting_instance for body in bodies}, {"drainsurge-test"})


if __name__ == "__main__":
    unittest.main()

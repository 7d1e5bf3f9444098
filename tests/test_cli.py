"""Tests for the command-line interface."""

import os
import unittest
from unittest import mock

from drainsurge.cli import build_config, main, parse_args
from drainsurge.config import ScaleMode


class TestCLI(unittest.TestCase):
    """Test cases for the CLI module."""

    def setUp(self):
        """Set up test fixtures."""
        self.env = mock.patch.dict(os.environ, {}, clear=True)
        self.env.start()
        self.addCleanup(self.env.stop)

    def test_parse_args_defaults(self):
        """Test parsing with no arguments."""
        args = parse_args([])

        self.assertFalse(args.verbose)
        self.assertFalse(args.sweep_once)
        self.assertIsNone(args.compensate_node)
        self.assertIsNone(args.target_replicas)

    def test_parse_args_modes_are_exclusive(self):
        """Test that one-shot modes cannot be combined."""
        with self.assertRaises(SystemExit):
            parse_args(["--sweep-once", "--compensate-node", "n1"])

    def test_build_config_from_environment(self):
        """Test that the environment is used when no flag overrides it."""
        os.environ["DRAINSURGE_TARGET_REPLICAS"] = "4"

        config = build_config(parse_args([]))

        self.assertEqual(config.target_replicas, 4)

    def test_build_config_overrides(self):
        """Test that command-line flags take precedence over the environment."""
        os.environ["DRAINSURGE_TARGET_REPLICAS"] = "4"
        args = parse_args([
            "--target-replicas", "3",
            "--eligible-types", "test,staging",
            "--scale-mode", "increment",
            "--sweep-interval", "60",
            "--compensation-window", "0",
            "--no-drift-suppression",
        ])

        config = build_config(args)

        self.assertEqual(config.target_replicas, 3)
        self.assertEqual(config.eligible_types, ["test", "staging"])
        self.assertEqual(config.scale_mode, ScaleMode.INCREMENT)
        self.assertEqual(config.sweep_interval, 60)
        self.assertEqual(config.compensation_window, 0)
        self.assertFalse(config.suppress_drift)

    @mock.patch("drainsurge.cli.Supervisor")
    @mock.patch("drainsurge.cli.KubernetesController")
    def test_main_rejects_invalid_config(self, mock_controller, mock_supervisor):
        """Test that an invalid configuration exits with 1 before touching the cluster."""
        self.assertEqual(main(["--target-replicas", "0"]), 1)
        mock_controller.assert_not_called()

    @mock.patch("drainsurge.cli.Supervisor")
    @mock.patch("drainsurge.cli.KubernetesController")
    def test_main_rejects_invalid_environment(self, mock_controller, mock_supervisor):
        """Test that a malformed environment variable exits with 1."""
        os.environ["DRAINSURGE_SUPPRESS_DRIFT"] = "maybe"

        self.assertEqual(main([]), 1)
        mock_controller.assert_not_called()

    @mock.patch("drainsurge.cli.Supervisor")
    @mock.patch("drainsurge.cli.KubernetesController")
    def test_main_sweep_once(self, mock_controller, mock_supervisor):
        """Test running a single restoration sweep."""
        self.assertEqual(main(["--sweep-once"]), 0)

        supervisor = mock_supervisor.return_value
        supervisor.sweeper.sweep.assert_called_once()
        supervisor.run.assert_not_called()

    @mock.patch("drainsurge.cli.Supervisor")
    @mock.patch("drainsurge.cli.KubernetesController")
    def test_main_compensate_node(self, mock_controller, mock_supervisor):
        """Test compensating a single node."""
        self.assertEqual(main(["--compensate-node", "n1"]), 0)

        mock_supervisor.return_value.compensate_node.assert_called_once_with("n1")

    @mock.patch("drainsurge.cli.Supervisor")
    @mock.patch("drainsurge.cli.KubernetesController")
    def test_main_continuous(self, mock_controller, mock_supervisor):
        """Test that continuous mode installs signal handlers and runs the supervisor."""
        supervisor = mock_supervisor.return_value
        supervisor.run.return_value = 0

        self.assertEqual(main([]), 0)

        supervisor.install_signal_handlers.assert_called_once()
        supervisor.run.assert_called_once()

    @mock.patch("drainsurge.cli.Supervisor")
    @mock.patch("drainsurge.cli.KubernetesController")
    def test_main_continuous_failure(self, mock_controller, mock_supervisor):
        """Test that a fatal supervisor failure exits with 1."""
        mock_supervisor.return_value.run.return_value = 1

        self.assertEqual(main([]), 1)

    @mock.patch("drainsurge.cli.KubernetesController")
    def test_main_connection_failure(self, mock_controller):
        """Test that failing to reach the cluster exits with 1."""
        mock_controller.side_effect = RuntimeError("Could not configure Kubernetes client")

        self.assertEqual(main(["--sweep-once"]), 1)


if __name__ == "__main__":
    unittest.main()

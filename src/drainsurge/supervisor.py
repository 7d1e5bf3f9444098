"""Supervisor module for Drainsurge.

This module wires the watcher, locator, compensator and sweeper together and
runs the event watch and the restoration sweep as two independent threads that
share one stop event.
"""

import logging
import signal
import threading
from collections.abc import Callable

from drainsurge.compensator import CompensationResult, Compensator
from drainsurge.config import DrainsurgeConfig
from drainsurge.errors import DrainsurgeError
from drainsurge.kubernetes.controller import KubernetesController
from drainsurge.locator import WorkloadLocator, WorkloadRef
from drainsurge.sweeper import RestorationSweeper
from drainsurge.watcher import DisruptionSignal, EventWatcher

logger = logging.getLogger(__name__)

# Seconds to wait for each thread to finish on shutdown
SHUTDOWN_TIMEOUT = 10


class Supervisor:
    """Runs the reactive compensation path and the periodic restoration sweep."""

    def __init__(self, config: DrainsurgeConfig, controller: KubernetesController):
        """Initialize the supervisor.

        Args:
            config: The Drainsurge configuration.
            controller: The controller holding the Kubernetes resource handlers.
        """
        self.config = config
        self.stop_event = threading.Event()

        self.locator = WorkloadLocator(config, controller.pods, controller.deployments)
        self.compensator = Compensator(config, controller.deployments, controller.pipelines, controller)
        self.sweeper = RestorationSweeper(config, controller.deployments, controller.pipelines, controller)
        self.watcher = EventWatcher(
            controller.core_v1_api,
            self.handle_signal,
            self.stop_event,
            reason=config.event_reason,
            watch_timeout=config.watch_timeout,
            retry_policy=config.retry,
        )

        self.errors: list[BaseException] = []
        self._threads: list[threading.Thread] = []

    def handle_signal(self, disruption: DisruptionSignal) -> None:
        """Compensate the workloads on the node a disruption signal is about."""
        self.compensate_node(disruption.involved_object_name)

    def compensate_node(self, node_name: str) -> dict[WorkloadRef, CompensationResult]:
        """Locate and compensate the eligible workloads running on a node.

        Args:
            node_name: Name of the node.

        Returns:
            The compensation result for each located workload.
        """
        try:
            refs = self.locator.locate(node_name)
        except DrainsurgeError as e:
            logger.error(f"Failed to list workloads on node {node_name}: {e}", extra={"unit": node_name, "cause": str(e)})
            return {}

        results = self.compensator.compensate_all(refs)
        for ref, result in results.items():
            logger.debug(f"Deployment {ref.key}: {result.value}")
        return results

    def _run_guarded(self, name: str, target: Callable[[], None]) -> Callable[[], None]:
        def run() -> None:
            try:
                target()
            except BaseException as e:
                logger.error(f"{name} failed, shutting down: {e}")
                self.errors.append(e)
                self.stop_event.set()

        return run

    def start(self) -> None:
        """Start the watch and sweep threads."""
        self._threads = [
            threading.Thread(
                target=self._run_guarded("Event watcher", self.watcher.run), name="event-watcher", daemon=True
            ),
            threading.Thread(
                target=self._run_guarded("Restoration sweeper", lambda: self.sweeper.run(self.stop_event)),
                name="restoration-sweeper",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, *_args) -> None:
        """Request shutdown. Usable as a signal handler."""
        logger.info("Stop requested, shutting down")
        self.watcher.stop()

    def install_signal_handlers(self) -> None:
        """Stop on SIGTERM and SIGINT."""
        signal.signal(signal.SIGTERM, self.stop)
        signal.signal(signal.SIGINT, self.stop)

    def run(self) -> int:
        """Run until stopped.

        Returns:
            0 on a requested shutdown, 1 if a thread failed fatally.
        """
        self.start()
        self.stop_event.wait()

        for thread in self._threads:
            thread.join(timeout=SHUTDOWN_TIMEOUT)
            if thread.is_alive():
                logger.warning(f"Thread {thread.name} did not stop within {SHUTDOWN_TIMEOUT}s")

        return 1 if self.errors else 0

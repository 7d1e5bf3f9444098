"""Tests for the event watcher module."""

import threading
import time
import unittest
from datetime import UTC, datetime
from unittest import mock

from kubernetes.client import CoreV1Event, V1ObjectMeta, V1ObjectReference
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import ReadTimeoutError

from drainsurge.config import RetryPolicy
from drainsurge.errors import DrainsurgeError
from drainsurge.watcher import DisruptionSignal, EventWatcher, InvolvedObjectKind, parse_event

SEEN_AT = datetime(2024, 5, 1, 10, 0, tzinfo=UTC)


def make_event(reason="DisruptionBlocked", kind="Node", name="n1", resource_version="10"):
    return CoreV1Event(
        metadata=V1ObjectMeta(name=f"{name}.1", namespace="default", resource_version=resource_version),
        involved_object=V1ObjectReference(kind=kind, name=name),
        reason=reason,
        last_timestamp=SEEN_AT,
    )


class FakeWatch:
    """Replays scripted batches of notifications, one batch per stream() call."""

    def __init__(self, batches):
        self.batches = batches
        self.calls = []
        self.stopped = False

    def __call__(self):
        return self

    def stream(self, func, **kwargs):
        self.calls.append(kwargs)
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        yield from batch

    def stop(self):
        self.stopped = True


class IdleWatch(FakeWatch):
    """A watch on a quiet cluster: every read blocks until the client read timeout."""

    def __init__(self):
        super().__init__([])

    def stream(self, func, **kwargs):
        self.calls.append(kwargs)
        _, read_timeout = kwargs["_request_timeout"]
        return iter(lambda: self._read_line(read_timeout), None)

    @staticmethod
    def _read_line(read_timeout):
        time.sleep(read_timeout)
        raise ReadTimeoutError(None, None, "Read timed out.")


class TestParseEvent(unittest.TestCase):
    """Test cases for parse_event."""

    def test_added_and_modified_are_equivalent(self):
        """Test that initial-state and change notifications give the same signal."""
        event = make_event()
        added = parse_event({"type": "ADDED", "object": event}, "DisruptionBlocked")
        modified = parse_event({"type": "MODIFIED", "object": event}, "DisruptionBlocked")

        expected = DisruptionSignal(
            reason="DisruptionBlocked",
            involved_object_kind=InvolvedObjectKind.NODE,
            involved_object_name="n1",
            observed_at=SEEN_AT,
        )
        self.assertEqual(added, expected)
        self.assertEqual(modified, expected)

    def test_deleted_is_ignored(self):
        """Test that deletions are not signals."""
        self.assertIsNone(parse_event({"type": "DELETED", "object": make_event()}, "DisruptionBlocked"))

    def test_other_reason_is_ignored(self):
        """Test that other reasons are filtered out."""
        self.assertIsNone(parse_event({"type": "ADDED", "object": make_event(reason="Evicted")}, "DisruptionBlocked"))

    def test_other_kind_is_ignored(self):
        """Test that events about other objects are filtered out."""
        self.assertIsNone(parse_event({"type": "ADDED", "object": make_event(kind="Pod")}, "DisruptionBlocked"))


class TestEventWatcher(unittest.TestCase):
    """Test cases for the EventWatcher class."""

    def setUp(self):
        """Set up test fixtures."""
        self.api = mock.Mock()
        self.handler = mock.Mock()
        self.stop_event = threading.Event()

    def make_watcher(self, batches, attempts=2):
        self.watch = FakeWatch(batches)
        return EventWatcher(
            self.api,
            self.handler,
            self.stop_event,
            watch_timeout=5,
            retry_policy=RetryPolicy(attempts=attempts, initial_backoff=0),
            watch_factory=self.watch,
            idle_timeout=0.05,
        )

    def test_watch_once_dispatches_signals(self):
        """Test that matching events reach the handler and the resume point advances."""
        watcher = self.make_watcher([[
            {"type": "ADDED", "object": make_event(name="n1", resource_version="10")},
            {"type": "ADDED", "object": make_event(kind="Pod", name="p1", resource_version="11")},
            {"type": "MODIFIED", "object": make_event(name="n1", resource_version="12")},
        ]])

        watcher.watch_once()

        self.assertEqual(self.handler.call_count, 2)
        self.assertEqual(self.handler.call_args.args[0].involved_object_name, "n1")
        self.assertEqual(watcher.resource_version, "12")
        self.assertEqual(
            self.watch.calls[0],
            {
                "field_selector": "reason=DisruptionBlocked,involvedObject.kind=Node",
                "timeout_seconds": 5,
                "_request_timeout": (0.05, 0.05),
            },
        )

    def test_watch_resumes_from_last_version(self):
        """Test that a re-established watch resumes where the last one stopped."""
        watcher = self.make_watcher([[{"type": "ADDED", "object": make_event(resource_version="10")}], []])

        watcher.watch_once()
        watcher.watch_once()

        self.assertEqual(self.watch.calls[1]["resource_version"], "10")

    def test_gone_error_resets_version(self):
        """Test that an expired resource version restarts the watch from scratch."""
        watcher = self.make_watcher([[{"type": "ERROR", "raw_object": {"code": 410, "message": "too old"}}]])
        watcher.resource_version = "5"

        watcher.watch_once()

        self.assertIsNone(watcher.resource_version)

    def test_handler_errors_do_not_stop_the_watch(self):
        """Test that a failing handler is logged and the next event still handled."""
        self.handler.side_effect = [RuntimeError("boom"), None]
        watcher = self.make_watcher([[
            {"type": "ADDED", "object": make_event(name="n1")},
            {"type": "ADDED", "object": make_event(name="n2")},
        ]])

        with self.assertLogs("drainsurge.watcher", level="ERROR"):
            watcher.watch_once()

        self.assertEqual(self.handler.call_count, 2)

    def test_first_watch_failure_is_fatal(self):
        """Test that failing to establish the watch at all raises."""
        watcher = self.make_watcher([ApiException(status=403, reason="Forbidden")])

        with self.assertRaises(DrainsurgeError):
            watcher.run()

    def test_transient_failure_after_establishment_is_retried(self):
        """Test that an established watch survives transient failures and stops on request."""
        def stop_after_event(signal):
            self.stop_event.set()

        self.handler.side_effect = stop_after_event
        watcher = self.make_watcher([
            [],
            ApiException(status=503),
            ApiException(status=410),
            [{"type": "ADDED", "object": make_event()}],
        ])

        watcher.run()

        self.handler.assert_called_once()
        self.assertEqual(len(self.watch.calls), 4)

    def test_stop_closes_watch(self):
        """Test that stop sets the stop event and stops the current watch."""
        watcher = self.make_watcher([[]])
        watcher.watch_once()

        watcher.stop()

        self.assertTrue(self.stop_event.is_set())
        self.assertTrue(self.watch.stopped)

    def test_idle_watch_notices_stop_promptly(self):
        """Test that a silent watch is re-established and run returns soon after stop."""
        idle = IdleWatch()
        watcher = EventWatcher(
            self.api,
            self.handler,
            self.stop_event,
            retry_policy=RetryPolicy(attempts=1),
            watch_factory=idle,
            idle_timeout=0.05,
        )
        thread = threading.Thread(target=watcher.run, daemon=True)
        thread.start()
        time.sleep(0.2)

        watcher.stop()
        thread.join(timeout=2)

        self.assertFalse(thread.is_alive())
        self.assertTrue(watcher.established)
        self.assertGreater(len(idle.calls), 1)
        self.handler.assert_not_called()

    def test_run_returns_when_stopped(self):
        """Test that run returns immediately once stopped."""
        watcher = self.make_watcher([])
        self.stop_event.set()

        watcher.run()

        self.assertEqual(self.watch.calls, [])


if __name__ == "__main__":
    unittest.main()

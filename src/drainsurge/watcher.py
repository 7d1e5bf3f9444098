"""Event watcher module for Drainsurge.

This module streams cluster events, keeps those reporting a blocked disruption on
a node and hands them to a handler as typed DisruptionSignal values.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from kubernetes import watch
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import ReadTimeoutError

from drainsurge.config import RetryPolicy
from drainsurge.errors import TransientInfraError, translate_api_exception

logger = logging.getLogger(__name__)

# Watch notification types that carry a live event
_LIVE_TYPES = frozenset({"ADDED", "MODIFIED"})

# Seconds a watch may stay silent before it is re-established, bounding how long a stop request waits
WATCH_IDLE_TIMEOUT = 5.0


class InvolvedObjectKind(str, Enum):
    """Kind of the object an event is about, as far as Drainsurge cares."""
    NODE = "Node"
    OTHER = "Other"


@dataclass(frozen=True)
class DisruptionSignal:
    """A blocked disruption reported by the cluster.

    Attributes:
        reason: Event reason.
        involved_object_kind: Kind of the object the event is about.
        involved_object_name: Name of the object the event is about.
        observed_at: When the event was last seen.
    """
    reason: str
    involved_object_kind: InvolvedObjectKind
    involved_object_name: str
    observed_at: datetime


def parse_event(watch_event: dict[str, Any], reason: str) -> DisruptionSignal | None:
    """Convert a raw watch notification into a DisruptionSignal.

    Initial-state (ADDED) and change (MODIFIED) notifications are treated the same.

    Args:
        watch_event: A notification yielded by kubernetes.watch.Watch.stream.
        reason: The event reason to keep.

    Returns:
        The signal for a matching event on a node, None for anything else.
    """
    if watch_event.get("type") not in _LIVE_TYPES:
        return None

    event = watch_event.get("object")
    if event is None or getattr(event, "reason", None) != reason:
        return None

    involved = getattr(event, "involved_object", None)
    kind = getattr(involved, "kind", None)
    name = getattr(involved, "name", None)
    if kind != InvolvedObjectKind.NODE.value or not name:
        return None

    observed_at = (
        getattr(event, "last_timestamp", None)
        or getattr(event, "event_time", None)
        or datetime.now(UTC)
    )
    return DisruptionSignal(
        reason=reason,
        involved_object_kind=InvolvedObjectKind.NODE,
        involved_object_name=name,
        observed_at=observed_at,
    )


class EventWatcher:
    """Watches cluster events and dispatches disruption signals.

    The watch is re-established whenever the server closes it, resuming from the
    last seen resourceVersion. Failures to establish the very first watch are fatal.
    """

    def __init__(
        self,
        core_v1_api: Any,
        handler: Callable[[DisruptionSignal], None],
        stop_event: threading.Event,
        reason: str = "DisruptionBlocked",
        watch_timeout: int = 300,
        retry_policy: RetryPolicy | None = None,
        watch_factory: Callable[[], Any] = watch.Watch,
        idle_timeout: float = WATCH_IDLE_TIMEOUT,
    ):
        """Initialize the event watcher.

        Args:
            core_v1_api: CoreV1Api client used to list events.
            handler: Called with each disruption signal, in order.
            stop_event: Set to request shutdown.
            reason: Event reason to react to.
            watch_timeout: Server-side timeout in seconds of a single watch.
            retry_policy: Backoff used when the watch fails.
            watch_factory: Builds the Watch object, replaceable in tests.
            idle_timeout: Client-side read timeout in seconds. A silent watch is
                re-established after it, so a stop request is noticed within it.
        """
        self.api = core_v1_api
        self.handler = handler
        self.stop_event = stop_event
        self.reason = reason
        self.watch_timeout = watch_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.watch_factory = watch_factory
        self.idle_timeout = idle_timeout

        self.resource_version: str | None = None
        self.established = False
        self._watch = None

    @property
    def field_selector(self) -> str:
        return f"reason={self.reason},involvedObject.kind={InvolvedObjectKind.NODE.value}"

    def run(self) -> None:
        """Watch events until the stop event is set.

        Raises:
            DrainsurgeError: If the first watch cannot be established.
        """
        logger.info(f"Watching events with reason {self.reason} on nodes")
        delays = None

        while not self.stop_event.is_set():
            try:
                self.watch_once()
                delays = None
            except ApiException as e:
                if e.status == 410:
                    logger.info("Event watch resource version expired, restarting from scratch")
                    self.resource_version = None
                    continue
                delays = self._backoff_or_raise(e, delays)
            except Exception as e:
                delays = self._backoff_or_raise(e, delays)

        logger.info("Event watcher stopped")

    def _backoff_or_raise(self, error: Exception, delays):
        """Wait before the next watch attempt, or raise if the watch never worked."""
        translated = translate_api_exception(error, "watch events")
        if delays is None:
            delays = self.retry_policy.delays()
        delay = next(delays, None)

        if not self.established and (delay is None or not isinstance(translated, TransientInfraError)):
            logger.error(f"Unable to establish the event watch: {translated}")
            raise translated from error

        if delay is None:
            # Once established, keep trying at the maximum backoff
            delay = self.retry_policy.max_backoff
        logger.warning(f"Event watch failed, retrying in {delay:.1f}s: {translated}")
        self.stop_event.wait(delay)
        return delays

    def watch_once(self) -> None:
        """Run a single watch until the server closes it or a stop is requested."""
        w = self.watch_factory()
        self._watch = w

        kwargs: dict[str, Any] = {
            "field_selector": self.field_selector,
            "timeout_seconds": self.watch_timeout,
            "_request_timeout": (self.idle_timeout, self.idle_timeout),
        }
        if self.resource_version:
            kwargs["resource_version"] = self.resource_version

        try:
            for watch_event in w.stream(self.api.list_event_for_all_namespaces, **kwargs):
                self.established = True
                if self.stop_event.is_set():
                    w.stop()
                    break

                if watch_event.get("type") == "ERROR":
                    raw = watch_event.get("raw_object") or {}
                    if raw.get("code") == 410:
                        logger.info("Event watch resource version expired, restarting from scratch")
                        self.resource_version = None
                        w.stop()
                        break
                    logger.warning(f"Event watch returned an error: {raw.get('message', raw)}")
                    continue

                event = watch_event.get("object")
                resource_version = getattr(getattr(event, "metadata", None), "resource_version", None)
                if resource_version:
                    self.resource_version = resource_version

                signal = parse_event(watch_event, self.reason)
                if signal is not None:
                    self.dispatch(signal)
        except ReadTimeoutError:
            # Quiet cluster: resume from the last seen version after checking for a stop
            logger.debug(f"Event watch idle for {self.idle_timeout}s, re-establishing")

        self.established = True

    def dispatch(self, signal: DisruptionSignal) -> None:
        """Hand a signal to the handler. Handler failures never stop the watch."""
        logger.info(f"Disruption blocked on node {signal.involved_object_name}")
        try:
            self.handler(signal)
        except Exception as e:
            logger.exception(
                f"Error handling disruption on node {signal.involved_object_name}: {e}",
                extra={"unit": signal.involved_object_name, "cause": str(e)},
            )

    def stop(self) -> None:
        """Request the watcher to stop and close the current watch."""
        self.stop_event.set()
        if self._watch is not None:
            self._watch.stop()

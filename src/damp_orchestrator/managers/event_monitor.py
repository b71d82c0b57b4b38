"""Docker container event subscription with automatic reconnect."""

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from docker import DockerClient

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.metrics_collector import MetricsCollector

logger = get_logger(__name__)

EVENT_FILTERS = {
    "type": "container",
    "event": ["start", "stop", "die", "health_status", "kill", "pause", "unpause", "restart"],
}

RECENT_EVENTS_LIMIT = 100

_STREAM_END = object()


@dataclass(frozen=True)
class ContainerEvent:
    """One container lifecycle event relayed from the daemon."""

    container_id: str
    container_name: str
    action: str
    timestamp_ms: int

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "ContainerEvent":
        """
        Build from a decoded daemon event.

        Args:
            raw: Event as yielded by ``DockerClient.events(decode=True)``

        Returns:
            Container event
        """
        actor = raw.get("Actor") or {}
        attributes = actor.get("Attributes") or {}
        if raw.get("timeNano"):
            timestamp_ms = int(raw["timeNano"]) // 1_000_000
        elif raw.get("time"):
            timestamp_ms = int(raw["time"]) * 1000
        else:
            timestamp_ms = int(time.time() * 1000)
        return cls(
            container_id=actor.get("ID") or raw.get("id") or "",
            container_name=attributes.get("name", ""),
            action=raw.get("Action") or raw.get("status") or "",
            timestamp_ms=timestamp_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "container_name": self.container_name,
            "action": self.action,
            "timestamp_ms": self.timestamp_ms,
        }


@dataclass(frozen=True)
class EventMonitorStatus:
    connected: bool
    attempts: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }


EventSink = Callable[[ContainerEvent], None]
StatusSink = Callable[[EventMonitorStatus], None]


def backoff_delay(
    attempt: int,
    base_s: float,
    max_s: float,
    jitter: float,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay before reconnect attempt ``attempt`` (1-based).

    The delay doubles from ``base_s`` up to ``max_s`` and is then spread by
    up to ``jitter`` in either direction.

    Args:
        attempt: Attempt number, starting at 1
        base_s: Delay of the first attempt
        max_s: Upper bound before jitter
        jitter: Relative spread, e.g. 0.2 for +/-20%
        rand: Source of uniform values in [0, 1)

    Returns:
        Delay in seconds
    """
    delay = min(base_s * 2 ** (max(attempt, 1) - 1), max_s)
    return delay * (1 + jitter * (2 * rand() - 1))


class EventMonitor:
    """Relays container events and keeps the subscription alive.

    A single background task owns the subscription. When the stream fails,
    ends, or the periodic daemon ping fails, the task waits with exponential
    backoff and subscribes again. Every status transition is relayed to the
    status subscribers.
    """

    def __init__(
        self,
        docker_client: DockerClient,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        rand: Callable[[], float] = random.random,
    ) -> None:
        """
        Initialize event monitor.

        Args:
            docker_client: Docker client
            settings: Application settings with ping and backoff timings
            metrics: Metrics collector
            rand: Jitter source
        """
        self.docker_client = docker_client
        self.settings = settings or get_settings()
        self.metrics = metrics
        self._rand = rand
        self._event_sinks: list[EventSink] = []
        self._status_sinks: list[StatusSink] = []
        self._status = EventMonitorStatus(connected=False)
        self._recent: deque[ContainerEvent] = deque(maxlen=RECENT_EVENTS_LIMIT)
        self._running = False
        self._task: asyncio.Task | None = None
        self._stream: Any = None
        self._stop_event = asyncio.Event()
        self._ping_error: str | None = None

    @property
    def status(self) -> EventMonitorStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._running

    def recent_events(self, limit: int | None = None) -> list[ContainerEvent]:
        events = list(self._recent)
        return events[-limit:] if limit else events

    def on_event(self, sink: EventSink) -> Callable[[], None]:
        """
        Subscribe to container events.

        Returns:
            Function removing the subscription
        """
        self._event_sinks.append(sink)
        return lambda: self._event_sinks.remove(sink) if sink in self._event_sinks else None

    def on_status(self, sink: StatusSink) -> Callable[[], None]:
        self._status_sinks.append(sink)
        return lambda: self._status_sinks.remove(sink) if sink in self._status_sinks else None

    async def start(self) -> None:
        """Start the subscription in the background."""
        if self._running:
            logger.debug("Docker event monitor already running")
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Docker event monitor started")

    async def stop(self) -> None:
        """Stop the subscription. Safe to call repeatedly."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        self._close_stream()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                # Task cancellation is expected during shutdown
                pass
            self._task = None
        self._set_status(EventMonitorStatus(connected=False, attempts=0))
        logger.info("Docker event monitor stopped")

    async def _run(self) -> None:
        attempts = 0
        while self._running:
            error = await self._subscribe_once()
            if not self._running:
                break
            if error is None:
                # Connected and then lost: the next failure starts a fresh backoff.
                attempts = 0
                error = self._ping_error or "Docker event stream ended"
            attempts += 1
            self._set_status(EventMonitorStatus(connected=False, attempts=attempts, last_error=error))
            if self.metrics:
                self.metrics.record_reconnect()

            delay = backoff_delay(
                attempts,
                self.settings.event_backoff_base_s,
                self.settings.event_backoff_max_s,
                self.settings.event_backoff_jitter,
                self._rand,
            )
            logger.warning(
                "Docker event stream disconnected, reconnecting",
                extra={"attempt": attempts, "delay_s": round(delay, 2), "error": error},
            )
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def _subscribe_once(self) -> str | None:
        """
        Subscribe and pump events until the stream stops.

        Returns:
            None if the subscription was established, otherwise the error
        """
        self._ping_error = None
        try:
            stream = await asyncio.to_thread(
                self.docker_client.events, decode=True, filters=EVENT_FILTERS
            )
        except Exception as e:
            return str(e)

        self._stream = stream
        self._set_status(EventMonitorStatus(connected=True, attempts=0))
        logger.info("Subscribed to Docker events")

        ping_task = asyncio.create_task(self._ping_loop())
        try:
            await self._pump(stream)
        except Exception as e:
            if self._running and not self._ping_error:
                self._ping_error = str(e)
                logger.error("Docker event stream error", extra={"error": str(e)})
        finally:
            ping_task.cancel()
            self._close_stream()
        return None

    async def _pump(self, stream: Any) -> None:
        iterator = iter(stream)
        while self._running:
            raw = await asyncio.to_thread(next, iterator, _STREAM_END)
            if raw is _STREAM_END:
                logger.info("Docker event stream ended")
                return
            self._dispatch(raw)

    async def _ping_loop(self) -> None:
        timeout_s = self.settings.docker_ping_timeout_ms / 1000
        while True:
            await asyncio.sleep(self.settings.event_ping_interval_s)
            try:
                await asyncio.wait_for(asyncio.to_thread(self.docker_client.ping), timeout=timeout_s)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._ping_error = f"Docker ping failed: {str(e) or 'timeout'}"
                logger.warning("Docker health ping failed", extra={"error": str(e)})
                self._close_stream()
                return

    def _dispatch(self, raw: Any) -> None:
        if not isinstance(raw, dict):
            logger.debug("Ignoring malformed Docker event")
            return
        event = ContainerEvent.from_raw(raw)
        self._recent.append(event)
        logger.debug("Docker event received", extra=event.to_dict())
        for sink in list(self._event_sinks):
            try:
                sink(event)
            except Exception as e:
                logger.error("Event subscriber failed", extra={"error": str(e)})

    def _set_status(self, status: EventMonitorStatus) -> None:
        self._status = status
        if self.metrics:
            self.metrics.set_event_stream_connected(status.connected)
        for sink in list(self._status_sinks):
            try:
                sink(status)
            except Exception as e:
                logger.error("Status subscriber failed", extra={"error": str(e)})

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except Exception as e:
            logger.debug("Closing Docker event stream failed", extra={"error": str(e)})

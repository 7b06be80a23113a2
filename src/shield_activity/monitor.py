"""Public monitoring controller.

Wraps a SamplingLoop with the consumer-facing surface: status, the last
published ranking, aggregate load text, and a publish/subscribe channel.
start/stop/set_interval are serialized by one lock so overlapping calls can
never leave two loop tasks running.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from shield_activity.config import Config
from shield_activity.sampler import MonitorStatus, SamplingLoop, TickResult, normalize_interval
from shield_activity.snapshot import SnapshotSource
from shield_activity.utilization import ProcessUtilization, format_load

log = structlog.get_logger()

STATUS_IDLE_TEXT = "Not monitoring"
STATUS_STARTING_TEXT = "Starting..."
STATUS_STOPPED_TEXT = "Monitoring stopped"


@dataclass(frozen=True)
class MonitorUpdate:
    """Immutable state delivered to subscribers."""

    processes: tuple[ProcessUtilization, ...]
    aggregate_load: float
    load_text: str
    status: MonitorStatus
    status_text: str
    interval: str
    error: str | None = None  # Set when this update reports a transport fault
    timestamp: datetime = field(default_factory=datetime.now)


Subscriber = Callable[[MonitorUpdate], None]


class MonitorController:
    """Idle/Monitoring state machine in front of the sampling loop."""

    def __init__(self, source: SnapshotSource, config: Config | None = None):
        config = config or Config()
        self._interval = normalize_interval(config.sampling.interval)
        self._sampler = SamplingLoop(
            source,
            on_tick=self._handle_tick,
            on_fault=self._handle_fault,
            warmup_delay=config.sampling.warmup_delay,
        )
        self._lock = asyncio.Lock()
        self._subscribers: list[Subscriber] = []

        self._status_text = STATUS_IDLE_TEXT
        self._processes: tuple[ProcessUtilization, ...] = ()
        self._aggregate_load = 0.0
        self._load_text = ""
        self._last_update: MonitorUpdate | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Read-only state
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def status(self) -> MonitorStatus:
        return self._sampler.status

    @property
    def is_monitoring(self) -> bool:
        """True while a sampling session is active (starting or monitoring)."""
        return self._sampler.is_running

    @property
    def status_text(self) -> str:
        return self._status_text

    @property
    def processes(self) -> tuple[ProcessUtilization, ...]:
        """Last published ranking, highest CPU first."""
        return self._processes

    @property
    def aggregate_load(self) -> float:
        return self._aggregate_load

    @property
    def load_text(self) -> str:
        return self._load_text

    @property
    def interval(self) -> str:
        return self._interval

    @property
    def last_update(self) -> MonitorUpdate | None:
        return self._last_update

    @property
    def sampler(self) -> SamplingLoop:
        return self._sampler

    # ─────────────────────────────────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for every published update.

        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, update: MonitorUpdate) -> None:
        self._last_update = update
        for callback in list(self._subscribers):
            try:
                callback(update)
            except Exception:
                # One broken consumer must not starve the others or the loop
                log.exception("subscriber_failed", callback=repr(callback))

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self, interval: str | None = None) -> None:
        """Begin monitoring. No-op if already monitoring."""
        async with self._lock:
            if self._sampler.is_running:
                return
            if interval is not None:
                self._interval = normalize_interval(interval)
            self._status_text = STATUS_STARTING_TEXT
            self._sampler.start(self._interval)
            log.info("monitor_started", interval=self._interval)

    async def stop(self) -> None:
        """Stop monitoring. The sampler keeps its baseline for the next start."""
        async with self._lock:
            if not self._sampler.is_running:
                return
            await self._sampler.stop()
            self._status_text = STATUS_STOPPED_TEXT
            log.info("monitor_stopped")

    async def set_interval(self, selection: str) -> None:
        """Change the tick interval; takes effect immediately when monitoring."""
        async with self._lock:
            old = self._interval
            self._interval = normalize_interval(selection)
            if self._sampler.is_running and self._interval != old:
                await self._sampler.reconfigure(self._interval)
                log.info("monitor_interval_changed", old=old, new=self._interval)

    # ─────────────────────────────────────────────────────────────────────────
    # Sampler callbacks (run inside the sampling task)
    # ─────────────────────────────────────────────────────────────────────────

    def _handle_tick(self, result: TickResult) -> None:
        self._processes = result.processes
        self._aggregate_load = result.aggregate_load
        self._load_text = format_load(result.aggregate_load)
        self._status_text = f"{len(result.processes)} processes"
        self._publish(self._make_update())

    def _handle_fault(self, error: Exception) -> None:
        self._status_text = f"Fetch failed: {error}"
        self._publish(self._make_update(error=str(error)))

    def _make_update(self, error: str | None = None) -> MonitorUpdate:
        return MonitorUpdate(
            processes=self._processes,
            aggregate_load=self._aggregate_load,
            load_text=self._load_text,
            status=self._sampler.status,
            status_text=self._status_text,
            interval=self._interval,
            error=error,
        )

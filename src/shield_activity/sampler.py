"""Interval-driven sampling loop.

The loop owns the baseline snapshot. Each tick fetches a new snapshot,
computes utilization against the baseline, publishes it, then makes the new
snapshot the baseline. Everything runs inside a single asyncio task, so the
baseline is only ever rebound from that task and needs no lock.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from shield_activity.config import DEFAULT_INTERVAL, INTERVALS
from shield_activity.snapshot import SnapshotSource, SystemSnapshot
from shield_activity.utilization import ProcessUtilization, aggregate_load, compute_utilization

log = structlog.get_logger()


class MonitorStatus(Enum):
    """Lifecycle of a monitoring session."""

    IDLE = "idle"
    STARTING = "starting"
    MONITORING = "monitoring"


@dataclass(frozen=True)
class TickResult:
    """What one successful tick publishes."""

    processes: tuple[ProcessUtilization, ...]
    aggregate_load: float
    snapshot_size: int  # Processes in the raw snapshot, hidden pids included
    elapsed_ms: int  # Fetch + compute time


def normalize_interval(selection: str | None) -> str:
    """Return selection if it is a known interval label, else the default."""
    if selection in INTERVALS:
        return selection  # type: ignore[return-value]
    log.warning("interval_unknown", selection=selection, fallback=DEFAULT_INTERVAL)
    return DEFAULT_INTERVAL


def parse_interval(selection: str | None) -> float:
    """Seconds for an interval label; unknown labels mean 5 seconds."""
    return INTERVALS[normalize_interval(selection)]


class SamplingLoop:
    """Cancellable fixed-rate poll loop over a SnapshotSource.

    stop() keeps the baseline, so a later start() (or a reconfigure) skips
    the warm-up read and its first tick already has real deltas.
    """

    def __init__(
        self,
        source: SnapshotSource,
        on_tick: Callable[[TickResult], None],
        on_fault: Callable[[Exception], None] | None = None,
        warmup_delay: float = 0.5,
    ):
        self.source = source
        self.warmup_delay = warmup_delay
        self._on_tick = on_tick
        self._on_fault = on_fault
        self._task: asyncio.Task | None = None
        self._baseline: SystemSnapshot | None = None
        self._status = MonitorStatus.IDLE
        self._interval = DEFAULT_INTERVAL
        self.tick_count = 0
        self.consecutive_faults = 0

    @property
    def is_running(self) -> bool:
        """Whether a loop task is alive."""
        return self._task is not None and not self._task.done()

    @property
    def status(self) -> MonitorStatus:
        return self._status

    @property
    def interval(self) -> str:
        """Current interval label."""
        return self._interval

    @property
    def baseline(self) -> SystemSnapshot | None:
        """Snapshot the next tick will be compared against."""
        return self._baseline

    def reset_baseline(self) -> None:
        """Forget the baseline; the next start() warms up again."""
        self._baseline = None

    def start(self, interval: str | None = None) -> bool:
        """Start the loop task. Returns False if it was already running.

        Must be called from within a running event loop.
        """
        if self.is_running:
            log.debug("sampling_already_running", interval=self._interval)
            return False

        self._interval = normalize_interval(interval or self._interval)
        self._status = MonitorStatus.STARTING
        self._task = asyncio.create_task(
            self._run(INTERVALS[self._interval]),
            name="SamplingLoop",
        )
        log.info("sampling_started", interval=self._interval, warm=self._baseline is not None)
        return True

    async def stop(self) -> None:
        """Cancel the loop task and wait for it to unwind.

        Cancellation lands at whichever await is pending (fetch or the
        inter-tick wait), so no fetch or publish happens after this returns.
        """
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._status = MonitorStatus.IDLE
        log.info("sampling_stopped", ticks=self.tick_count)

    async def reconfigure(self, interval: str) -> bool:
        """Switch interval. Restarts the loop if running; returns whether it did."""
        if not self.is_running:
            self._interval = normalize_interval(interval)
            return False
        await self.stop()
        return self.start(interval)

    # ─────────────────────────────────────────────────────────────────────────

    async def _run(self, period: float) -> None:
        """Task body: optional warm-up, immediate tick, then fixed-rate ticks."""
        loop = asyncio.get_running_loop()

        if self._baseline is None:
            await self._warm_up()

        self._status = MonitorStatus.MONITORING

        while True:
            tick_start = loop.time()
            await self._tick()

            # Sleep for remaining interval (maintains consistent tick rate)
            sleep_time = period - (loop.time() - tick_start)
            if sleep_time > 0:
                await asyncio.sleep(sleep_time)

    async def _warm_up(self) -> None:
        """Take a throwaway baseline so the first published tick has deltas."""
        try:
            snapshot = await self.source.fetch()
        except Exception as e:
            self._report_fault(e)
            return

        if snapshot.is_empty:
            log.debug("warmup_degraded_read")
            return

        self._baseline = snapshot
        log.debug("warmup_baseline", processes=len(snapshot.processes))
        await asyncio.sleep(self.warmup_delay)

    async def _tick(self) -> None:
        """Fetch, compute, publish, swap baseline. Degraded reads publish nothing."""
        start = time.monotonic()
        try:
            snapshot = await self.source.fetch()
        except Exception as e:
            self._report_fault(e)
            return

        if snapshot.is_empty:
            # Bad read: keep the old baseline and the old published results
            log.debug("degraded_read_skipped", baseline_kept=self._baseline is not None)
            return

        processes = tuple(compute_utilization(self._baseline, snapshot))
        result = TickResult(
            processes=processes,
            aggregate_load=aggregate_load(processes),
            snapshot_size=len(snapshot.processes),
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

        self.tick_count += 1
        self.consecutive_faults = 0
        try:
            self._on_tick(result)
        except Exception:
            log.exception("tick_publish_failed")
        self._baseline = snapshot

    def _report_fault(self, error: Exception) -> None:
        """Log a transport fault and hand it to the fault callback."""
        self.consecutive_faults += 1
        log.warning(
            "fetch_failed",
            error=str(error),
            error_type=type(error).__name__,
            consecutive=self.consecutive_faults,
        )
        if self._on_fault is not None:
            try:
                self._on_fault(error)
            except Exception:
                log.exception("fault_handler_failed")

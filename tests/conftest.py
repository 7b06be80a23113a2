"""Shared test fixtures for shield-activity."""

import asyncio
from collections import deque
from unittest.mock import patch

import pytest

from shield_activity.config import INTERVALS
from shield_activity.snapshot import ProcessSample, SystemSnapshot


def make_snapshot(total: int, procs: dict[int, int], names: dict[int, str] | None = None):
    """Create a SystemSnapshot from {pid: ticks}; names default to proc<pid>."""
    names = names or {}
    return SystemSnapshot(
        processes={
            pid: ProcessSample(pid=pid, name=names.get(pid, f"proc{pid}"), cpu_time_ticks=ticks)
            for pid, ticks in procs.items()
        },
        total_cpu_time_ticks=total,
    )


def stat_line(pid: int, name: str, utime: int, stime: int) -> str:
    """Build a /proc/<pid>/stat line with the given CPU times."""
    return (
        f"{pid} ({name}) S 1 {pid} 0 0 -1 4194624 1520 0 3 0 "
        f"{utime} {stime} 0 0 20 0 12 0 4521 1745489920 23041"
    )


class FakeSource:
    """Scripted SnapshotSource.

    Each fetch pops the next scripted item: a SystemSnapshot is returned, an
    exception is raised. Once the script is exhausted the last snapshot is
    repeated. Set `hang` to make every fetch block until cancelled.
    """

    def __init__(self, script=None):
        self.script = deque(script or [])
        self.fetch_count = 0
        self.hang = False
        self.cancelled = False
        self._last = SystemSnapshot.empty()

    async def fetch(self) -> SystemSnapshot:
        self.fetch_count += 1
        if self.hang:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        # Yield like a real source would
        await asyncio.sleep(0)
        if self.script:
            item = self.script.popleft()
            if isinstance(item, BaseException):
                raise item
            self._last = item
            return item
        return self._last


async def wait_until(condition, timeout=2.0, interval=0.005):
    """Wait until condition() returns True, or timeout."""
    deadline = asyncio.get_event_loop().time() + timeout
    while not condition():
        if asyncio.get_event_loop().time() > deadline:
            raise TimeoutError(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def fast_interval():
    """Register a 10ms interval label so multi-tick tests stay fast."""
    with patch.dict(INTERVALS, {"10ms": 0.01}):
        yield "10ms"

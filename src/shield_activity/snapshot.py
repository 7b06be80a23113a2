"""Point-in-time CPU accounting readings and the source contract."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol

import structlog

log = structlog.get_logger()

# Counters on the aggregate "cpu" line of /proc/stat that make up total time:
# user nice system idle iowait irq softirq steal. guest/guest_nice are
# already accounted inside user/nice.
PROC_STAT_TOTAL_FIELDS = 8


class ShieldActivityError(Exception):
    """Base error for shield-activity."""


class TransportError(ShieldActivityError):
    """A snapshot could not be read from the device."""


@dataclass(frozen=True, slots=True)
class ProcessSample:
    """One process' cumulative CPU time at the moment of a snapshot."""

    pid: int
    name: str
    cpu_time_ticks: int  # utime + stime, in jiffies


@dataclass(frozen=True, slots=True)
class SystemSnapshot:
    """Every visible process plus the system-wide CPU time counter.

    An empty process mapping marks a degraded read.
    """

    processes: Mapping[int, ProcessSample] = field(default_factory=dict)
    total_cpu_time_ticks: int = 0

    def __post_init__(self) -> None:
        # Freeze the mapping so a published snapshot can't be mutated by callers
        object.__setattr__(self, "processes", MappingProxyType(dict(self.processes)))

    @property
    def is_empty(self) -> bool:
        """True for a degraded read (no processes)."""
        return len(self.processes) == 0

    @classmethod
    def empty(cls) -> "SystemSnapshot":
        """Return a degraded snapshot."""
        return cls()

    @classmethod
    def from_samples(
        cls, samples: list[ProcessSample], total_cpu_time_ticks: int
    ) -> "SystemSnapshot":
        """Build a snapshot from a list of samples (later duplicates win)."""
        return cls(
            processes={s.pid: s for s in samples},
            total_cpu_time_ticks=total_cpu_time_ticks,
        )


class SnapshotSource(Protocol):
    """Anything that can take a SystemSnapshot.

    fetch() returns an empty snapshot for a transient bad read and raises
    TransportError when the read cannot complete at all.
    """

    async def fetch(self) -> SystemSnapshot: ...


def _parse_cpu_line(line: str) -> int | None:
    """Sum the total-time counters of the aggregate "cpu" line."""
    parts = line.split()
    try:
        return sum(int(v) for v in parts[1 : 1 + PROC_STAT_TOTAL_FIELDS])
    except ValueError:
        return None


def _parse_pid_stat_line(line: str) -> ProcessSample | None:
    """Parse one /proc/<pid>/stat line.

    comm sits between the first "(" and the LAST ")" because a process name
    may itself contain spaces and parentheses. utime and stime are fields
    14 and 15 (1-based), i.e. the 12th and 13th tokens after comm.
    """
    open_paren = line.find("(")
    close_paren = line.rfind(")")
    if open_paren <= 0 or close_paren < open_paren:
        return None

    try:
        pid = int(line[:open_paren].strip())
    except ValueError:
        return None

    name = line[open_paren + 1 : close_paren]
    rest = line[close_paren + 1 :].split()
    # rest[0] is state (field 3); utime is field 14 -> rest[11]
    if len(rest) < 13:
        return None
    try:
        utime = int(rest[11])
        stime = int(rest[12])
    except ValueError:
        return None

    return ProcessSample(pid=pid, name=name, cpu_time_ticks=utime + stime)


def parse_proc_stat(text: str) -> SystemSnapshot:
    """Parse `head -n 1 /proc/stat; cat /proc/[0-9]*/stat` output into a snapshot.

    Returns an empty snapshot when the aggregate cpu line or every process
    line is missing. Malformed lines are skipped.
    """
    total: int | None = None
    samples: list[ProcessSample] = []
    skipped = 0

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("cpu "):
            if total is None:
                total = _parse_cpu_line(line)
            continue
        if not line[0].isdigit():
            # Other /proc/stat lines (cpuN, intr, ctxt, btime, ...)
            continue
        sample = _parse_pid_stat_line(line)
        if sample is None:
            skipped += 1
            continue
        samples.append(sample)

    if skipped:
        log.debug("proc_stat_lines_skipped", count=skipped)

    if total is None or not samples:
        log.debug("proc_stat_degraded", has_total=total is not None, processes=len(samples))
        return SystemSnapshot.empty()

    return SystemSnapshot.from_samples(samples, total)

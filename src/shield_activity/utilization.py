"""CPU utilization from two consecutive snapshots."""

from dataclasses import dataclass

from shield_activity.snapshot import SystemSnapshot

# pid 0-2 are idle/init/kthreadd bookkeeping entries, never shown
MAX_HIDDEN_PID = 2


@dataclass(frozen=True, slots=True)
class ProcessUtilization:
    """CPU share of one process over the last tick window."""

    pid: int
    name: str
    cpu_percent: float  # 0.0 - 100.0, one decimal


def round_percent(value: float) -> float:
    """Round to one decimal, clamped to [0, 100].

    Uses the built-in round(), which rounds half to even on the binary
    value: 0.25 -> 0.2, 0.75 -> 0.8.
    """
    return round(min(100.0, max(0.0, value)), 1)


def compute_utilization(
    previous: SystemSnapshot | None, current: SystemSnapshot
) -> list[ProcessUtilization]:
    """Rank current processes by CPU share since the previous snapshot.

    Without a usable previous snapshot, or when the system counter did not
    advance, every process is reported at 0.0. Processes that are new since
    the previous snapshot also report 0.0; processes that vanished are
    omitted. Result is ordered by cpu_percent descending, then pid ascending.
    """
    delta_total = 0
    if previous is not None and not previous.is_empty:
        delta_total = current.total_cpu_time_ticks - previous.total_cpu_time_ticks
    has_prev = delta_total > 0

    result: list[ProcessUtilization] = []
    for pid, sample in current.processes.items():
        if pid <= MAX_HIDDEN_PID:
            continue

        cpu_percent = 0.0
        if has_prev:
            prev = previous.processes.get(pid)  # type: ignore[union-attr]
            if prev is not None:
                delta_proc = sample.cpu_time_ticks - prev.cpu_time_ticks
                if delta_proc > 0:
                    cpu_percent = delta_proc * 100.0 / delta_total

        result.append(
            ProcessUtilization(pid=pid, name=sample.name, cpu_percent=round_percent(cpu_percent))
        )

    result.sort(key=lambda p: (-p.cpu_percent, p.pid))
    return result


def aggregate_load(processes: list[ProcessUtilization] | tuple[ProcessUtilization, ...]) -> float:
    """Sum of per-process percentages, one decimal, not normalized by cores."""
    return round(sum(p.cpu_percent for p in processes), 1)


def format_load(load: float) -> str:
    """Human-readable aggregate load line."""
    return f"Total CPU: {load:.1f}%"

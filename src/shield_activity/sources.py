"""Snapshot sources: a remote device over adb, or the local host via psutil."""

import asyncio
import os

import psutil
import structlog

from shield_activity.config import Config
from shield_activity.snapshot import (
    ProcessSample,
    SystemSnapshot,
    TransportError,
    parse_proc_stat,
)

log = structlog.get_logger()

# Only the aggregate line of /proc/stat is needed; the glob reads every
# process' stat file in one round-trip. A process that exits between glob
# expansion and cat makes cat fail, so its stderr is dropped and the exit
# status forced to 0.
PROC_SNAPSHOT_COMMAND = "head -n 1 /proc/stat; cat /proc/[0-9]*/stat 2>/dev/null; true"

# Linux USER_HZ; psutil reports seconds, which we convert back to jiffies
LOCAL_TICKS_PER_SECOND = 100


class AdbSnapshotSource:
    """Reads /proc from a device through `adb shell`.

    One adb invocation per fetch. The child process is killed if the fetch
    times out or is cancelled, so stopping a monitor never waits on adb.
    """

    def __init__(self, adb_path: str = "adb", serial: str = "", timeout: float = 10.0):
        self.adb_path = adb_path
        self.serial = serial
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> "AdbSnapshotSource":
        """Build a source from the [device] and [sampling] config sections."""
        return cls(
            adb_path=config.device.adb_path,
            serial=config.device.serial,
            timeout=config.sampling.fetch_timeout,
        )

    def command(self) -> list[str]:
        """Return the argv used for one snapshot."""
        argv = [self.adb_path]
        if self.serial:
            argv += ["-s", self.serial]
        argv += ["shell", PROC_SNAPSHOT_COMMAND]
        return argv

    async def fetch(self) -> SystemSnapshot:
        """Run one adb read and parse it.

        Raises:
            TransportError: adb missing, failed, or did not answer in time
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise TransportError(f"adb not found: {self.adb_path}") from e
        except OSError as e:
            raise TransportError(f"Failed to run adb: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await _kill(proc)
            raise TransportError(f"adb timed out after {self.timeout}s") from e
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        snapshot = parse_proc_stat(stdout.decode("utf-8", errors="replace"))
        if proc.returncode != 0:
            if not snapshot.is_empty:
                # Valid output wins over a non-zero shell status
                log.debug("adb_nonzero_exit_ignored", returncode=proc.returncode)
                return snapshot
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise TransportError(f"adb exited with {proc.returncode}: {detail or 'no output'}")

        return snapshot


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill an adb child and reap it."""
    try:
        proc.kill()
    except ProcessLookupError:
        return  # Already exited
    try:
        await asyncio.wait_for(proc.wait(), timeout=2.0)
    except asyncio.TimeoutError:
        log.warning("adb_kill_timeout", pid=proc.pid)


class LocalSnapshotSource:
    """Reads the local host through psutil, in the same tick units as /proc."""

    def __init__(self, ticks_per_second: int = LOCAL_TICKS_PER_SECOND):
        self.ticks_per_second = ticks_per_second

    def _to_ticks(self, seconds: float) -> int:
        return int(seconds * self.ticks_per_second)

    def _fetch_sync(self) -> SystemSnapshot:
        """Synchronous collection - runs in executor."""
        cpu = psutil.cpu_times()
        # Same counters as the /proc/stat total; psutil omits fields a
        # platform lacks
        total_seconds = sum(
            getattr(cpu, name, 0.0)
            for name in ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")
        )

        samples: list[ProcessSample] = []
        for proc in psutil.process_iter(attrs=["pid", "name", "cpu_times"]):
            try:
                info = proc.info
                times = info.get("cpu_times")
                if times is None:
                    continue
                samples.append(
                    ProcessSample(
                        pid=info["pid"],
                        name=info.get("name") or f"pid_{info['pid']}",
                        cpu_time_ticks=self._to_ticks(times.user + times.system),
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                # Died mid-poll or not ours to inspect
                continue

        return SystemSnapshot.from_samples(samples, self._to_ticks(total_seconds))

    async def fetch(self) -> SystemSnapshot:
        """Run collection in executor (psutil calls are blocking)."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._fetch_sync)
        except psutil.Error as e:
            raise TransportError(f"psutil failed: {e}") from e


def build_source(
    config: Config, local: bool = False, serial: str | None = None
) -> AdbSnapshotSource | LocalSnapshotSource:
    """Pick the snapshot source for a CLI invocation."""
    if local:
        return LocalSnapshotSource()
    source = AdbSnapshotSource.from_config(config)
    if serial:
        source.serial = serial
    elif not source.serial:
        source.serial = os.environ.get("ANDROID_SERIAL", "")
    return source

"""Configuration system for shield-activity."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

# Refresh interval selections offered to the operator (label -> seconds)
INTERVALS: dict[str, float] = {
    "1s": 1.0,
    "2s": 2.0,
    "5s": 5.0,
    "10s": 10.0,
    "30s": 30.0,
}
DEFAULT_INTERVAL = "5s"


@dataclass
class SamplingConfig:
    """Sampling loop configuration."""

    interval: str = DEFAULT_INTERVAL  # One of INTERVALS
    warmup_delay: float = 0.5  # Seconds between warm-up baseline and first tick
    fetch_timeout: float = 10.0  # Max seconds for a single device read


@dataclass
class DeviceConfig:
    """Remote device (adb) configuration."""

    adb_path: str = "adb"
    serial: str = ""  # Empty = let adb pick the only attached device


@dataclass
class SystemConfig:
    """Process-level settings."""

    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "shield-activity"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "shield-activity"

    @property
    def log_path(self) -> Path:
        """JSON Lines log path."""
        return self.state_dir / "activity.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("sampling", "device", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        dev = defaults.device
        sys_defaults = defaults.system
        device_data = data.get("device", {})
        system_data = data.get("system", {})

        return cls(
            sampling=_load_sampling_config(data.get("sampling", {})),
            device=DeviceConfig(
                adb_path=device_data.get("adb_path", dev.adb_path),
                serial=device_data.get("serial", dev.serial),
            ),
            system=SystemConfig(
                log_max_bytes=system_data.get("log_max_bytes", sys_defaults.log_max_bytes),
                log_backup_count=system_data.get(
                    "log_backup_count", sys_defaults.log_backup_count
                ),
            ),
        )


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config from TOML data, validating each value."""
    defaults = SamplingConfig()

    interval = data.get("interval", defaults.interval)
    warmup_delay = data.get("warmup_delay", defaults.warmup_delay)
    fetch_timeout = data.get("fetch_timeout", defaults.fetch_timeout)

    if interval not in INTERVALS:
        raise ValueError(f"Invalid interval: {interval!r}. Must be one of {list(INTERVALS)}")
    if warmup_delay < 0:
        raise ValueError(f"warmup_delay must be >= 0, got {warmup_delay}")
    if fetch_timeout <= 0:
        raise ValueError(f"fetch_timeout must be > 0, got {fetch_timeout}")

    return SamplingConfig(
        interval=str(interval),
        warmup_delay=float(warmup_delay),
        fetch_timeout=float(fetch_timeout),
    )

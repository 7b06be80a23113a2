"""CLI commands for shield-activity."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from shield_activity.config import INTERVALS

if TYPE_CHECKING:
    from shield_activity.config import Config

INTERVAL_CHOICE = click.Choice(list(INTERVALS))


@click.group()
@click.version_option()
def main() -> None:
    """Watch live process CPU activity on an adb-connected device."""
    pass


@main.command()
@click.option(
    "--interval", "-i", type=INTERVAL_CHOICE, default=None, help="Refresh interval"
)
@click.option("--serial", "-s", default=None, help="adb device serial")
@click.option("--local", is_flag=True, help="Sample this machine instead of a device")
@click.option("--top", "-n", default=15, show_default=True, help="Processes shown per update")
@click.option("--count", "-c", default=0, help="Stop after N updates (0 = until interrupted)")
def watch(interval: str | None, serial: str | None, local: bool, top: int, count: int) -> None:
    """Continuously show the busiest processes."""
    import asyncio
    from importlib.metadata import version

    from shield_activity.config import Config
    from shield_activity.logging import configure, version_info

    config = Config.load()
    configure(config)
    version_info("shield-activity", version("shield-activity"))

    asyncio.run(run_watch(config, interval, serial, local, top, count))


async def run_watch(
    config: Config,
    interval: str | None,
    serial: str | None,
    local: bool,
    top: int,
    count: int,
) -> int:
    """Drive a MonitorController until interrupted or count updates arrive.

    Returns the number of updates received.
    """
    import asyncio
    import signal

    from shield_activity import logging as console
    from shield_activity.monitor import MonitorController, MonitorUpdate
    from shield_activity.sources import build_source

    source = build_source(config, local=local, serial=serial)
    controller = MonitorController(source, config)
    done = asyncio.Event()
    received = 0

    def on_update(update: MonitorUpdate) -> None:
        nonlocal received
        if update.error is not None:
            console.fetch_failed(update.error)
            return
        received += 1
        console.load_summary(update.aggregate_load, update.status_text)
        for proc in update.processes[:top]:
            click.echo(f"  {proc.pid:>7}  {proc.cpu_percent:5.1f}%  {proc.name}")
        if count and received >= count:
            done.set()

    def on_signal(sig: signal.Signals) -> None:
        console.signal_received(sig.name)
        done.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: on_signal(s))
        except (NotImplementedError, RuntimeError):
            pass  # Not in the main thread (e.g. under a test runner)

    console.device_target(getattr(source, "serial", ""), local)
    unsubscribe = controller.subscribe(on_update)
    await controller.start(interval or config.sampling.interval)
    console.monitor_started(controller.interval)
    try:
        await done.wait()
    finally:
        console.monitor_stopping()
        unsubscribe()
        await controller.stop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
        console.monitor_stopped(received)
    return received


@main.command()
@click.option("--serial", "-s", default=None, help="adb device serial")
@click.option("--local", is_flag=True, help="Read this machine instead of a device")
def snapshot(serial: str | None, local: bool) -> None:
    """Take a single raw snapshot and summarize it."""
    import asyncio

    from shield_activity.config import Config
    from shield_activity.snapshot import TransportError
    from shield_activity.sources import build_source

    config = Config.load()
    source = build_source(config, local=local, serial=serial)

    try:
        snap = asyncio.run(source.fetch())
    except TransportError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if snap.is_empty:
        click.echo("Degraded read: no processes returned.")
        return

    click.echo(f"Processes: {len(snap.processes)}")
    click.echo(f"Total CPU ticks: {snap.total_cpu_time_ticks}")


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from shield_activity.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  interval = {cfg.sampling.interval}")
    click.echo(f"  warmup_delay = {cfg.sampling.warmup_delay}")
    click.echo(f"  fetch_timeout = {cfg.sampling.fetch_timeout}")
    click.echo()
    click.echo("[device]")
    click.echo(f"  adb_path = {cfg.device.adb_path}")
    click.echo(f"  serial = {cfg.device.serial or '(default)'}")
    click.echo()
    click.echo("[system]")
    click.echo(f"  log_max_bytes = {cfg.system.log_max_bytes}")
    click.echo(f"  log_backup_count = {cfg.system.log_backup_count}")


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from shield_activity.config import Config
    from shield_activity.logging import config_created

    cfg = Config()
    cfg.save()
    config_created(str(cfg.config_path))


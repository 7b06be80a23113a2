"""Tests for CLI commands."""

import inspect
from pathlib import Path
from unittest.mock import PropertyMock, patch

import pytest
from click.testing import CliRunner

from conftest import FakeSource, make_snapshot
from shield_activity.cli import main, run_watch
from shield_activity.config import Config, DeviceConfig, SamplingConfig, SystemConfig
from shield_activity.snapshot import SystemSnapshot, TransportError


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


class TestMainGroup:
    """Tests for top-level CLI behavior."""

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for name in ("watch", "snapshot", "config"):
            assert name in result.output

    def test_watch_rejects_unknown_interval(self, runner: CliRunner) -> None:
        """Only the offered interval labels are accepted."""
        result = runner.invoke(main, ["watch", "--interval", "3s"])
        assert result.exit_code != 0
        assert "3s" in result.output


class TestSnapshotCommand:
    """Tests for the one-shot snapshot command."""

    def test_snapshot_summary(self, runner: CliRunner) -> None:
        source = FakeSource([make_snapshot(4200, {100: 5, 200: 9, 300: 1})])
        with (
            patch("shield_activity.config.Config.load", return_value=Config()),
            patch("shield_activity.sources.build_source", return_value=source) as build,
        ):
            result = runner.invoke(main, ["snapshot", "--serial", "dev1"])

        assert result.exit_code == 0
        assert "Processes: 3" in result.output
        assert "Total CPU ticks: 4200" in result.output
        assert build.call_args.kwargs == {"local": False, "serial": "dev1"}

    def test_snapshot_degraded(self, runner: CliRunner) -> None:
        source = FakeSource([SystemSnapshot.empty()])
        with (
            patch("shield_activity.config.Config.load", return_value=Config()),
            patch("shield_activity.sources.build_source", return_value=source),
        ):
            result = runner.invoke(main, ["snapshot"])

        assert result.exit_code == 0
        assert "Degraded read" in result.output

    def test_snapshot_transport_error_exits_nonzero(self, runner: CliRunner) -> None:
        source = FakeSource([TransportError("no devices/emulators found")])
        with (
            patch("shield_activity.config.Config.load", return_value=Config()),
            patch("shield_activity.sources.build_source", return_value=source),
        ):
            result = runner.invoke(main, ["snapshot"])

        assert result.exit_code == 1
        assert "no devices/emulators found" in result.output

    def test_snapshot_local(self, runner: CliRunner) -> None:
        """--local reads this machine through psutil."""
        with patch("shield_activity.config.Config.load", return_value=Config()):
            result = runner.invoke(main, ["snapshot", "--local"])

        assert result.exit_code == 0
        assert "Processes:" in result.output


class TestConfigCommands:
    """Tests for config show/reset."""

    def test_config_show(self, runner: CliRunner) -> None:
        cfg = Config(
            sampling=SamplingConfig(interval="10s"),
            device=DeviceConfig(serial="shield.lan:5555"),
        )
        with patch("shield_activity.config.Config.load", return_value=cfg):
            result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert "[sampling]" in result.output
        assert "interval = 10s" in result.output
        assert "serial = shield.lan:5555" in result.output

    def test_config_show_includes_system_section(self, runner: CliRunner) -> None:
        """Log rotation settings are shown alongside the other sections."""
        cfg = Config(system=SystemConfig(log_max_bytes=2048, log_backup_count=7))
        with patch("shield_activity.config.Config.load", return_value=cfg):
            result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert "[system]" in result.output
        assert "log_max_bytes = 2048" in result.output
        assert "log_backup_count = 7" in result.output

    def test_config_show_default_serial(self, runner: CliRunner) -> None:
        with patch("shield_activity.config.Config.load", return_value=Config()):
            result = runner.invoke(main, ["config", "show"])
        assert "serial = (default)" in result.output

    def test_config_reset_writes_defaults(self, runner: CliRunner, tmp_path: Path) -> None:
        config_path = tmp_path / "config.toml"
        with patch.object(
            Config, "config_path", new_callable=PropertyMock, return_value=config_path
        ):
            result = runner.invoke(main, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert config_path.exists()
        assert Config.load(config_path) == Config()

    def test_config_reset_requires_confirmation(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        config_path = tmp_path / "config.toml"
        with patch.object(
            Config, "config_path", new_callable=PropertyMock, return_value=config_path
        ):
            result = runner.invoke(main, ["config", "reset"], input="n\n")

        assert result.exit_code != 0
        assert not config_path.exists()


class TestRunWatch:
    """Tests for the watch loop driver."""

    @pytest.mark.asyncio
    async def test_run_watch_stops_after_count(self, fast_interval, capsys) -> None:
        source = FakeSource(
            [
                make_snapshot(1000, {10: 0, 11: 0}),
                make_snapshot(1100, {10: 30, 11: 10}),
                make_snapshot(1200, {10: 40, 11: 60}),
            ]
        )
        config = Config(sampling=SamplingConfig(warmup_delay=0.0))

        with patch("shield_activity.sources.build_source", return_value=source):
            received = await run_watch(
                config, fast_interval, serial=None, local=False, top=1, count=2
            )

        assert received == 2
        out = capsys.readouterr().out
        assert "30.0%" in out
        assert "50.0%" in out
        assert "Monitoring stopped" in out

    @pytest.mark.asyncio
    async def test_run_watch_reports_faults_without_counting(
        self, fast_interval, capsys
    ) -> None:
        source = FakeSource(
            [
                make_snapshot(1000, {10: 0}),
                make_snapshot(1100, {10: 10}),
                TransportError("device offline"),
                make_snapshot(1200, {10: 20}),
            ]
        )
        config = Config(sampling=SamplingConfig(warmup_delay=0.0))

        with patch("shield_activity.sources.build_source", return_value=source):
            received = await run_watch(
                config, fast_interval, serial=None, local=False, top=5, count=2
            )

        assert received == 2
        assert "Fetch failed: device offline" in capsys.readouterr().out

    def test_run_watch_config_annotation(self) -> None:
        """run_watch takes a Config as its first argument."""
        params = inspect.signature(run_watch).parameters
        assert params["config"].annotation == "Config"

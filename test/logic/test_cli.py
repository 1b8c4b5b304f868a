import asyncio
import io
from unittest.mock import patch

import click.testing
import pytest

from fixturetest.cli import cli
from fixturetest.cli.base import slow_mode_command, start_stdin_listener
from fixturetest.device import MockFixture
from fixturetest.system import ThresholdSettings, mock_system
from fixturetest.meas import WORKFLOW_STATE
from fixturetest.types import DebugSnapshot, Thresholds


@pytest.fixture
def cli_runner():
    return click.testing.CliRunner()


@pytest.fixture
def thresholds_file(tmp_path):
    """Settings file with short waits so a mock run completes quickly."""
    settings = ThresholdSettings(tmp_path / "thresholds.json")
    settings.thresholds = Thresholds(
        hardware_wait_ms=100,
        sensor_wait_ms=100,
        temp_sensor_wait_ms=100,
        flow_settle_ms=1,
        flow_read_ms=100,
        flow_gap_ms=1,
        slow_mode_delay_ms=0,
        confirm_retry_interval_ms=50,
    )
    settings.save()
    return str(settings.path)


def run_args(thresholds_file, *extra):
    return ["run", "--mock", "--no-log-to-file", "-t", thresholds_file, *extra]


def patched_fixture(fixture):
    return patch(
        "fixturetest.cli.base.mock_system",
        side_effect=lambda _fixture, settings, profile: mock_system(
            fixture, settings=settings, profile=profile
        ),
    )


class TestTree:
    def test_tree(self, cli_runner):
        result = cli_runner.invoke(cli, ["--tree"])
        assert result.exit_code == 0
        for name in ("ports", "run", "thresholds", "show"):
            assert name in result.output


class TestRunCommand:
    @pytest.mark.slow
    def test_mock_run_passes(self, cli_runner, thresholds_file):
        result = cli_runner.invoke(cli, run_args(thresholds_file))
        assert result.exit_code == 0, result.output
        assert "PASS" in result.output
        assert "All checks passed" in result.output

    @pytest.mark.slow
    def test_mock_run_fails(self, cli_runner, thresholds_file):
        fixture = MockFixture()
        fixture.set_channel(5, arduino_idle=1015, arduino_running=1020)
        with patched_fixture(fixture):
            result = cli_runner.invoke(cli, run_args(thresholds_file))
        assert result.exit_code == 1, result.output
        assert "FAIL" in result.output
        assert "SLOT6 (ID5)" in result.output

    def test_wrong_role_exit_code(self, cli_runner, thresholds_file):
        with patched_fixture(MockFixture(wrong_role_ports={"MOCK0"})):
            result = cli_runner.invoke(cli, run_args(thresholds_file))
        assert result.exit_code == 2
        assert "different fixture" in result.output

    def test_no_fixture_exit_code(self, cli_runner, thresholds_file):
        with patched_fixture(MockFixture(ports=[])):
            result = cli_runner.invoke(cli, run_args(thresholds_file))
        assert result.exit_code == 2
        assert "Could not connect" in result.output

    @pytest.mark.slow
    def test_bodydoor_mock_run_passes(self, cli_runner, thresholds_file):
        result = cli_runner.invoke(cli, run_args(thresholds_file, "--fixture", "bodydoor"))
        assert result.exit_code == 0, result.output
        assert "PASS" in result.output

    def test_bodydoor_profile_on_main_board(self, cli_runner, thresholds_file):
        with patched_fixture(MockFixture()):
            result = cli_runner.invoke(cli, run_args(thresholds_file, "-f", "bodydoor"))
        assert result.exit_code == 2
        assert "--fixture main" in result.output

    def test_unknown_fixture(self, cli_runner, thresholds_file):
        result = cli_runner.invoke(cli, run_args(thresholds_file, "--fixture", "door"))
        assert result.exit_code == 2
        assert "Invalid value" in result.output


class TestSlowModeCommands:
    @pytest.mark.asyncio
    async def test_commands_drive_running_workflow(self):
        system = mock_system(MockFixture())
        queue = asyncio.Queue()
        thresholds = Thresholds(
            hardware_wait_ms=20, slow_mode_delay_ms=60000, confirm_retry_interval_ms=20
        )
        task = asyncio.create_task(
            system.run_workflow(queue, slow_mode=True, thresholds=thresholds, poll_interval=0.002)
        )
        while True:
            notif = await asyncio.wait_for(queue.get(), 5)
            if isinstance(notif, DebugSnapshot):
                break

        assert slow_mode_command(system, "p\n") == "Paused"
        assert slow_mode_command(system, "P") == "Resumed"
        assert slow_mode_command(system, "b") is None
        assert isinstance(await asyncio.wait_for(queue.get(), 1), DebugSnapshot)
        assert slow_mode_command(system, "n") is None
        assert "Unknown command" in slow_mode_command(system, "x")
        assert slow_mode_command(system, "c") == "Cancelling"
        assert await asyncio.wait_for(task, 5) == WORKFLOW_STATE.CANCELLED

    def test_no_workflow(self):
        assert slow_mode_command(mock_system(MockFixture()), "p") is None

    @pytest.mark.asyncio
    async def test_stdin_lines_reach_the_loop(self):
        lines = []
        thread = start_stdin_listener(
            asyncio.get_running_loop(), lines.append, io.StringIO("p\nb\n")
        )
        thread.join(1)
        await asyncio.sleep(0.01)
        assert lines == ["p\n", "b\n"]


class TestThresholdsCommand:
    def test_set_show_reset(self, cli_runner, tmp_path):
        path = str(tmp_path / "th.json")
        result = cli_runner.invoke(cli, ["thresholds", "set", "adjacent_short", "150", "-t", path])
        assert result.exit_code == 0
        assert "adjacent_short = 150" in result.output
        assert ThresholdSettings(path).load().adjacent_short == 150

        result = cli_runner.invoke(cli, ["thresholds", "set", "arduino_idle.3", "760,840", "-t", path])
        assert result.exit_code == 0
        assert ThresholdSettings(path).load().arduino_idle[3].min == 760

        result = cli_runner.invoke(cli, ["thresholds", "show", "-t", path])
        assert result.exit_code == 0
        assert "adjacent_short" in result.output
        assert "150" in result.output

        result = cli_runner.invoke(cli, ["thresholds", "reset", "-t", path])
        assert result.exit_code == 0
        assert ThresholdSettings(path).load().adjacent_short == 100

    def test_bad_key(self, cli_runner, tmp_path):
        path = str(tmp_path / "th.json")
        result = cli_runner.invoke(cli, ["thresholds", "set", "bogus", "1", "-t", path])
        assert result.exit_code != 0
        assert "Unknown threshold setting" in result.output

    def test_path(self, cli_runner):
        result = cli_runner.invoke(cli, ["thresholds", "path"])
        assert result.exit_code == 0
        assert "thresholds.json" in result.output


class TestPortsCommand:
    @patch("fixturetest.cli.base.list_ports", return_value=["/dev/ttyUSB0"])
    @patch(
        "fixturetest.cli.base.get_hw_ports",
        return_value={
            "/dev/ttyUSB0": ("USB Serial", "USB VID:PID=1A86:7523"),
            "/dev/ttyACM0": ("STM32 STLink", "USB VID:PID=0483:374B"),
        },
    )
    def test_ports(self, mock_hw, mock_list, cli_runner):
        result = cli_runner.invoke(cli, ["ports"])
        assert result.exit_code == 0
        assert "/dev/ttyUSB0" in result.output
        assert "ST-Link" in result.output

    @patch("fixturetest.cli.base.list_ports", return_value=[])
    @patch("fixturetest.cli.base.get_hw_ports", return_value={})
    def test_no_ports(self, mock_hw, mock_list, cli_runner):
        result = cli_runner.invoke(cli, ["ports"])
        assert result.exit_code == 0
        assert "No serial ports found" in result.output

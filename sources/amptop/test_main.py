"""CLI parsing, daemon sub-commands against a fake controller, settings merge."""

import json
import time

import pandas as pd
import pytest

from amptop import main
from amptop.app_logger import log_buffer
from amptop.errors import AlreadyRunning, ForcedStop, NotRunning
from amptop.models import BatterySample, BatteryState, DaemonState, DaemonStatus, Unit
from amptop.settings import DEFAULT_CONFIG, Settings, load_settings
from amptop.timeseries_db import TimeSeriesStore


class FakeController:
    def __init__(self, state=None, error=None):
        self.state = state or DaemonState()
        self.error = error
        self.calls = []

    def _maybe_raise(self):
        if self.error is not None:
            raise self.error

    def start(self, interval):
        self.calls.append(("start", interval))
        self._maybe_raise()
        return DaemonState(status=DaemonStatus.Running, pid=77, interval_seconds=interval,
                           started_at=time.time())

    def run_foreground(self, interval):
        self.calls.append(("foreground", interval))
        return 0

    def stop(self):
        self.calls.append(("stop",))
        self._maybe_raise()
        return DaemonState()

    def status(self):
        self.calls.append(("status",))
        return self.state


def daemon_args(*argv):
    return main.build_parser().parse_args(["daemon", *argv])


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path)


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------
def test_interactive_defaults():
    args = main.build_parser().parse_args([])
    assert args.command is None
    assert args.delay == 1.0
    assert args.units is Unit.Human


def test_units_and_delay():
    args = main.build_parser().parse_args(["--delay", "0.5", "--units", "SI"])
    assert args.delay == 0.5
    assert args.units is Unit.Si


@pytest.mark.parametrize("argv", [
    ["--delay", "0"],
    ["--delay", "soon"],
    ["--units", "imperial"],
    ["daemon", "start", "--interval", "0"],
    ["daemon"],
])
def test_bad_arguments_exit_with_usage_error(argv, capsys):
    with pytest.raises(SystemExit) as exc:
        main.build_parser().parse_args(argv)
    assert exc.value.code == 2


def test_daemon_start_interval():
    args = daemon_args("start", "--interval", "120")
    assert (args.action, args.interval, args.foreground) == ("start", 120, False)
    assert daemon_args("start").interval == 60


# ----------------------------------------------------------------------
# daemon sub-commands
# ----------------------------------------------------------------------
def test_start_prints_pid(settings, capsys):
    controller = FakeController()
    assert main.daemon_command(daemon_args("start", "-i", "30"), settings, controller) == 0
    assert controller.calls == [("start", 30)]
    assert "pid 77" in capsys.readouterr().out


def test_start_when_running_fails(settings, capsys):
    controller = FakeController(error=AlreadyRunning(77))
    assert main.daemon_command(daemon_args("start"), settings, controller) == 1
    assert "already running (pid 77)" in capsys.readouterr().err


def test_foreground_start(settings):
    controller = FakeController()
    assert main.daemon_command(daemon_args("start", "-f", "-i", "5"), settings, controller) == 0
    assert controller.calls == [("foreground", 5)]


def test_stop_not_running(settings, capsys):
    controller = FakeController(error=NotRunning())
    assert main.daemon_command(daemon_args("stop"), settings, controller) == 1
    assert "not running" in capsys.readouterr().err


def test_forced_stop_is_a_warning(settings, capsys):
    controller = FakeController(error=ForcedStop(77, 5.0))
    assert main.daemon_command(daemon_args("stop"), settings, controller) == 0
    assert "warning" in capsys.readouterr().err


def test_status_exit_codes(settings, capsys):
    running = DaemonState(status=DaemonStatus.Running, pid=9, interval_seconds=60,
                          started_at=time.time() - 3700)
    assert main.daemon_command(daemon_args("status"), settings, FakeController(running)) == 0
    out = capsys.readouterr().out
    assert out.startswith("Running (pid 9, interval 60s, uptime 1:01:")

    assert main.daemon_command(daemon_args("status"), settings, FakeController()) == 1
    assert capsys.readouterr().out.strip() == "NotRunning"


def test_describe_stale():
    text = main.describe_status(DaemonState(status=DaemonStatus.Stale, pid=5), 0)
    assert text.startswith("Stale (pid 5")
    assert "daemon stop" in text


# ----------------------------------------------------------------------
# history
# ----------------------------------------------------------------------
def test_history_table_and_csv(settings, tmp_path, capsys):
    now = int(time.time())
    with TimeSeriesStore(settings.db_path) as store:
        for offset, charge in ((-600, 70.0), (-300, 69.0), (-60, 68.5)):
            store.append(BatterySample(timestamp=now + offset, charge_percent=charge,
                                       state=BatteryState.Discharging, power_watts=-7.0))

    csv_path = tmp_path / "out.csv"
    args = main.build_parser().parse_args(["history", "--hours", "1", "--csv", str(csv_path)])
    assert main.history_command(args, settings) == 0

    out = capsys.readouterr().out
    assert out.splitlines()[0].startswith("bucket start")
    frame = pd.read_csv(csv_path)
    assert list(frame["charge_percent"]) == [70.0, 69.0, 68.5]
    assert set(frame["state"]) == {"Discharging"}


def test_history_without_database_fails(settings, capsys):
    args = main.build_parser().parse_args(["history"])
    assert main.history_command(args, settings) == 1
    assert capsys.readouterr().err.startswith("amptop: ")


# ----------------------------------------------------------------------
# settings
# ----------------------------------------------------------------------
def test_settings_defaults(tmp_path):
    settings = load_settings(tmp_path)
    assert settings.db_path == tmp_path / "battery.db"
    assert settings.lock_path == tmp_path / "daemon.pid"
    assert settings.retention_seconds == DEFAULT_CONFIG["retention_days"] * 86400


def test_settings_merge_config(tmp_path):
    (tmp_path / "config.json").write_text(json.dumps({"retention_days": 7, "bogus": 1}))
    settings = load_settings(tmp_path)
    assert settings.retention_days == 7
    assert settings.stop_timeout == DEFAULT_CONFIG["stop_timeout"]
    assert any("unknown key 'bogus'" in line for line in log_buffer)


def test_settings_config_values_are_coerced(tmp_path):
    (tmp_path / "config.json").write_text(json.dumps(
        {"retention_days": "30", "stop_timeout": 2, "busy_timeout_ms": 1000.0}))
    settings = load_settings(tmp_path)
    assert settings.retention_days == 30
    assert isinstance(settings.retention_days, int)
    assert settings.stop_timeout == 2.0
    assert isinstance(settings.stop_timeout, float)
    assert settings.busy_timeout_ms == 1000
    assert isinstance(settings.busy_timeout_ms, int)
    assert settings.retention_seconds == 30 * 86400


@pytest.mark.parametrize("key,value", [
    ("retention_days", "abc"),
    ("retention_days", 1.5),
    ("max_consecutive_failures", True),
    ("stop_timeout", None),
    ("log_level", ["DEBUG"]),
])
def test_settings_bad_config_value_uses_default(tmp_path, key, value):
    (tmp_path / "config.json").write_text(json.dumps({key: value}))
    settings = load_settings(tmp_path)
    assert getattr(settings, key) == DEFAULT_CONFIG[key]
    assert any(f"bad value {value!r} for {key!r}" in line for line in log_buffer)


def test_settings_broken_config_falls_back(tmp_path):
    (tmp_path / "config.json").write_text("{ not json")
    assert load_settings(tmp_path) == Settings(data_dir=tmp_path)


def test_amptop_home(monkeypatch, tmp_path):
    monkeypatch.setenv("AMPTOP_HOME", str(tmp_path))
    assert load_settings().data_dir == tmp_path

import pytest

from amptop.errors import SourceReadError, SourceUnavailable
from amptop.live_monitor import (
    LiveMonitor,
    drain_rate,
    format_details,
    format_duration,
    format_readings,
)
from amptop.models import BatteryDetails, BatterySample, BatteryState, Unit
from amptop.rolling_window import RollingWindow
from amptop.timeseries_db import TimeSeriesStore


class FakeSource:
    def __init__(self, script):
        self.script = list(script)

    def sample(self, timeout=None):
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def sample(ts, charge=60.0, state=BatteryState.Discharging, power=-6.5, **kw):
    return BatterySample(timestamp=ts, charge_percent=charge, state=state,
                         power_watts=power, **kw)


@pytest.fixture
def store(tmp_path):
    db = TimeSeriesStore(tmp_path / "battery.db")
    yield db
    db.close()


def test_seed_from_store_then_live_ticks(store):
    for ts in range(100, 700, 60):
        store.append(sample(ts, charge=90 - ts / 60))
    monitor = LiveMonitor(FakeSource([sample(1000)]), RollingWindow(4), store=store,
                          clock=lambda: 1000)

    assert monitor.seed() == 4
    assert [s.timestamp for s in monitor.window] == [460, 520, 580, 640]

    vm = monitor.tick()
    assert [s.timestamp for s in vm.window] == [520, 580, 640, 1000]
    assert vm.current.timestamp == 1000
    assert vm.error is None


def test_read_error_keeps_window_and_reports():
    window = RollingWindow(3, items=[sample(1), sample(2)])
    monitor = LiveMonitor(FakeSource([SourceReadError("EIO on power_now")]), window)

    vm = monitor.tick()

    assert vm.error == "EIO on power_now"
    assert [s.timestamp for s in vm.window] == [1, 2]
    assert vm.current.timestamp == 2


def test_unavailable_battery_propagates():
    monitor = LiveMonitor(FakeSource([SourceUnavailable("no battery")]), RollingWindow(3))
    with pytest.raises(SourceUnavailable):
        monitor.tick()


def test_older_live_sample_is_not_pushed():
    window = RollingWindow(3, items=[sample(50)])
    monitor = LiveMonitor(FakeSource([sample(40)]), window)
    assert [s.timestamp for s in monitor.tick().window] == [50]


def test_history_is_bucketed_and_throttled(store):
    for ts in (3600, 3660, 3720, 7200):
        store.append(sample(ts))
    now = [7300]
    monitor = LiveMonitor(FakeSource([]), RollingWindow(2), store=store,
                          history_hours=2, history_bucket_seconds=3600,
                          history_refresh_seconds=60, clock=lambda: now[0])

    monitor.refresh_history()
    assert [b.bucket_start for b in monitor.history] == [3600, 7200]

    store.append(sample(7310, charge=40.0))
    now[0] = 7320
    monitor.refresh_history()
    assert monitor.history[-1].avg_charge == pytest.approx(60.0)

    monitor.refresh_history(force=True)
    assert monitor.history[-1].avg_charge == pytest.approx(50.0)


def test_human_readings():
    readings = format_readings(
        sample(0, charge=81.26, voltage_mv=11850, temperature_c=31.2), Unit.Human, -12.0
    )
    assert readings["Charge"] == "81.3 %"
    assert readings["State"] == "Discharging"
    assert readings["Discharging with"] == "6.50 W"
    assert readings["Voltage"] == "11.85 V"
    assert readings["Temperature"] == "31.2 °C"
    assert readings["Rate"] == "-12.00 %/h"


def test_si_readings():
    readings = format_readings(
        sample(0, charge=50.0, state=BatteryState.Charging, power=20.0,
               voltage_mv=12000, temperature_c=25.0),
        Unit.Si,
    )
    assert readings["Charge"] == "0.500"
    assert readings["Charging with"] == "20.00 W"
    assert readings["Voltage"] == "12.000 V"
    assert readings["Temperature"] == "298.15 K"
    assert readings["Rate"] == "N/A"


def test_empty_readings_are_placeholders():
    assert set(format_readings(None, Unit.Human).values()) == {"N/A"}


DETAILS = BatteryDetails(vendor="ACME", model="PowerCell 9", serial_number="1234",
                         technology="Li-ion", cycle_count=87, energy_wh=30.0,
                         energy_full_wh=60.0, energy_full_design_wh=75.0,
                         time_to_empty_s=5025.0)


def test_human_details():
    details = format_details(sample(0, details=DETAILS), Unit.Human)
    assert details["Vendor"] == "ACME"
    assert details["S/N"] == "1234"
    assert details["Cycles count"] == "87"
    assert details["Capacity"] == "80.00 %"
    assert details["Current"] == "30.00 Wh"
    assert details["Full design"] == "75.00 Wh"
    assert details["Time to full"] == "N/A"
    assert details["Time to empty"] == "1h 23m 45s"


def test_si_details():
    details = format_details(sample(0, details=DETAILS), Unit.Si)
    assert details["Capacity"] == "0.8000"
    assert details["Current"] == "108000.00 J"
    assert details["Last full"] == "216000.00 J"
    assert details["Time to empty"] == "5025 s"


def test_missing_details_are_placeholders():
    assert set(format_details(None, Unit.Human).values()) == {"N/A"}
    assert set(format_details(sample(0), Unit.Si).values()) == {"N/A"}


@pytest.mark.parametrize("seconds,text", [
    (None, "N/A"), (0, "0s"), (59.6, "1m"), (3600, "1h"), (3725, "1h 2m 5s"),
])
def test_format_duration(seconds, text):
    assert format_duration(seconds) == text


def test_view_model_carries_details():
    monitor = LiveMonitor(FakeSource([sample(1000, details=DETAILS)]), RollingWindow(4))
    assert monitor.tick().details["Model"] == "PowerCell 9"


def test_drain_rate():
    assert drain_rate([sample(0, charge=80), sample(1800, charge=79)]) == pytest.approx(-2.0)
    assert drain_rate([sample(0)]) is None
    assert drain_rate([sample(5), sample(5)]) is None

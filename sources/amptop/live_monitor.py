# live_monitor.py
"""
Glue between the battery source, the rolling window and the view.

Every tick samples the battery live (whether or not a daemon is running),
pushes into the window and returns a ``ViewModel`` the curses view can draw
without knowing where the numbers came from.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from amptop.app_logger import get_logger
from amptop.errors import SourceReadError, StoreReadError
from amptop.models import BatteryDetails, BatterySample, BatteryState, Bucket, Unit
from amptop.rolling_window import RollingWindow
from amptop.sample_source import SampleSource
from amptop.timeseries_db import TimeSeriesStore

log = get_logger(__name__)

NA = "N/A"


@dataclass(frozen=True)
class ViewModel:
    current: Optional[BatterySample]
    window: Tuple[BatterySample, ...]
    unit: Unit
    readings: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    history: Tuple[Bucket, ...] = ()
    drain_rate: Optional[float] = None       # percent per hour, negative = draining
    details: Dict[str, str] = field(default_factory=dict)


def format_readings(sample: Optional[BatterySample], unit: Unit,
                    drain_rate: Optional[float] = None) -> Dict[str, str]:
    """Label → display string for ``sample`` in the requested unit system."""
    if sample is None:
        return {"Charge": NA, "State": NA, "Power": NA, "Voltage": NA,
                "Temperature": NA, "Rate": NA}

    if unit is Unit.Si:
        charge = f"{sample.charge_percent / 100.0:.3f}"
    else:
        charge = f"{sample.charge_percent:.1f} %"

    if sample.state is BatteryState.Charging:
        power_label = "Charging with"
    elif sample.state is BatteryState.Discharging:
        power_label = "Discharging with"
    else:
        power_label = "Power"

    voltage = NA
    if sample.voltage_mv is not None:
        digits = 3 if unit is Unit.Si else 2
        voltage = f"{sample.voltage_mv / 1000.0:.{digits}f} V"

    temperature = NA
    if sample.temperature_c is not None:
        if unit is Unit.Si:
            temperature = f"{sample.temperature_c + 273.15:.2f} K"
        else:
            temperature = f"{sample.temperature_c:.1f} °C"

    rate = NA
    if drain_rate is not None:
        rate = f"{drain_rate:+.2f} %/h" if unit is Unit.Human else f"{drain_rate / 360000.0:+.3e} 1/s"

    return {
        "Charge": charge,
        "State": sample.state.name,
        power_label: f"{abs(sample.power_watts):.2f} W",
        "Voltage": voltage,
        "Temperature": temperature,
        "Rate": rate,
    }


def format_duration(seconds: Optional[float], unit: Unit = Unit.Human) -> str:
    if seconds is None:
        return NA
    if unit is Unit.Si:
        return f"{seconds:.0f} s"
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def _energy(wh: Optional[float], unit: Unit) -> str:
    if wh is None:
        return NA
    if unit is Unit.Si:
        return f"{wh * 3600.0:.2f} J"
    return f"{wh:.2f} Wh"


def format_details(sample: Optional[BatterySample], unit: Unit) -> Dict[str, str]:
    """Device, energy and timing labels; N/A for anything the provider did not report."""
    details = sample.details if sample is not None and sample.details else BatteryDetails()
    health = details.health_percent
    if health is None:
        capacity = NA
    elif unit is Unit.Si:
        capacity = f"{health / 100.0:.4f}"
    else:
        capacity = f"{health:.2f} %"
    return {
        "Vendor": details.vendor or NA,
        "Model": details.model or NA,
        "S/N": details.serial_number or NA,
        "Technology": details.technology or NA,
        "Cycles count": str(details.cycle_count) if details.cycle_count is not None else NA,
        "Capacity": capacity,
        "Current": _energy(details.energy_wh, unit),
        "Last full": _energy(details.energy_full_wh, unit),
        "Full design": _energy(details.energy_full_design_wh, unit),
        "Time to full": format_duration(details.time_to_full_s, unit),
        "Time to empty": format_duration(details.time_to_empty_s, unit),
    }


def drain_rate(window) -> Optional[float]:
    """Charge change in percent per hour between the oldest and newest samples."""
    if len(window) < 2:
        return None
    first, last = window[0], window[-1]
    span = last.timestamp - first.timestamp
    if span <= 0:
        return None
    return (last.charge_percent - first.charge_percent) * 3600.0 / span


class LiveMonitor:
    """
    Parameters
    ----------
    source : SampleSource
        Live battery readings.
    window : RollingWindow
        Owned exclusively by this monitor.
    store : TimeSeriesStore, optional
        Read-only history used to seed the window and fill the history strip.
    """

    def __init__(self, source: SampleSource, window: RollingWindow,
                 store: Optional[TimeSeriesStore] = None, unit: Unit = Unit.Human,
                 delay_seconds: float = 1.0, history_hours: int = 24,
                 history_bucket_seconds: int = 300, history_refresh_seconds: float = 60,
                 clock=time.time):
        self.source = source
        self.window = window
        self.store = store
        self.unit = unit
        self.delay_seconds = delay_seconds
        self.history_hours = history_hours
        self.history_bucket_seconds = history_bucket_seconds
        self.history_refresh_seconds = history_refresh_seconds
        self.clock = clock
        self.history: Tuple[Bucket, ...] = ()
        self._history_loaded_at: Optional[float] = None

    def seed(self) -> int:
        """Fill the window from the newest stored rows; returns how many."""
        if self.store is None:
            return 0
        try:
            rows = self.store.latest(self.window.capacity)
        except StoreReadError as exc:
            log.warning("cannot seed from history: %s", exc)
            return 0
        for sample in rows:
            self.window.push(sample)
        log.info("seeded live window with %d stored sample(s)", len(rows))
        return len(rows)

    def refresh_history(self, force: bool = False) -> None:
        if self.store is None:
            return
        now = self.clock()
        if (not force and self._history_loaded_at is not None
                and now - self._history_loaded_at < self.history_refresh_seconds):
            return
        self._history_loaded_at = now
        since = int(now) - self.history_hours * 3600
        try:
            self.history = tuple(self.store.aggregate(self.history_bucket_seconds, start=since))
        except StoreReadError as exc:
            log.warning("history unavailable: %s", exc)
            self.history = ()

    def tick(self) -> ViewModel:
        """
        Sample once and build the view model. ``SourceUnavailable`` is left
        to propagate: without a battery there is nothing to monitor.
        """
        error = None
        try:
            sample = self.source.sample(timeout=self.delay_seconds)
        except SourceReadError as exc:
            log.warning("battery read failed: %s", exc)
            error = str(exc)
        else:
            latest = self.window.latest()
            if latest is None or sample.timestamp >= latest.timestamp:
                self.window.push(sample)

        self.refresh_history()
        return self.view_model(error)

    def view_model(self, error: Optional[str] = None) -> ViewModel:
        samples = tuple(self.window.items())
        current = samples[-1] if samples else None
        rate = drain_rate(samples)
        return ViewModel(
            current=current,
            window=samples,
            unit=self.unit,
            readings=format_readings(current, self.unit, rate),
            error=error,
            history=self.history,
            drain_rate=rate,
            details=format_details(current, self.unit),
        )

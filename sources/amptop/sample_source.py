#!/usr/bin/env python3
"""sample_source.py
Battery readings for the daemon and the live view.

Contains the providers that know how to read the platform's battery
information (Linux sysfs, or psutil as the portable fallback) and the
:class:`SampleSource` that turns one provider reading into a validated
:class:`BatterySample`.

Only the reading / decoding logic lives here. Scheduling, persistence and
display are the callers' business.
"""
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import psutil

from amptop.app_logger import get_logger
from amptop.errors import SourceReadError, SourceUnavailable
from amptop.models import BatteryDetails, BatterySample, BatteryState

log = get_logger(__name__)

# ----------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------
SYSFS_ROOT = Path("/sys/class/power_supply")
FULL_THRESHOLD = 99.5          # percent at which "plugged" reads as Full

_SYSFS_STATES = {
    "charging": BatteryState.Charging,
    "discharging": BatteryState.Discharging,
    "full": BatteryState.Full,
    "unknown": BatteryState.Unknown,
}

Reading = Dict[str, Any]


class BatteryProvider(Protocol):
    def read(self) -> Optional[Reading]:
        """
        Return one raw reading, or None when the host has no battery.

        Keys: ``percent`` (float), ``state`` (BatteryState), ``power_w``
        (float, signed), ``voltage_mv`` (int | None), ``temperature_c``
        (float | None) and optionally ``details`` (BatteryDetails).
        Raises ``OSError`` / ``ValueError`` on a failed read.
        """
        ...


def estimate_times(state: BatteryState, energy_wh: Optional[float],
                   energy_full_wh: Optional[float],
                   power_w: float) -> Tuple[Optional[float], Optional[float]]:
    """``(time_to_full, time_to_empty)`` in seconds at the current power draw."""
    if energy_wh is None or not power_w:
        return None, None
    rate = abs(power_w)
    if state is BatteryState.Charging and energy_full_wh is not None:
        return max(0.0, energy_full_wh - energy_wh) / rate * 3600.0, None
    if state is BatteryState.Discharging:
        return None, energy_wh / rate * 3600.0
    return None, None


# ----------------------------------------------------------------------
# 1. Linux sysfs
# ----------------------------------------------------------------------
class SysfsBatteryProvider:
    """
    Reads the first battery under ``/sys/class/power_supply``.

    Parameters
    ----------
    root : Path, optional
        Directory holding the power supplies. Tests point it at a fake tree.
    """

    def __init__(self, root: Path = SYSFS_ROOT):
        self.root = Path(root)

    def find_battery(self) -> Optional[Path]:
        if not self.root.is_dir():
            return None
        for supply in sorted(self.root.iterdir()):
            if supply.name.startswith("BAT"):
                return supply
            if self._read(supply / "type") == "Battery":
                return supply
        return None

    @staticmethod
    def _read(path: Path) -> str:
        try:
            return path.read_text().strip()
        except FileNotFoundError:
            return ""

    def _read_int(self, path: Path) -> Optional[int]:
        raw = self._read(path)
        return int(raw) if raw else None

    def _energy_wh(self, base: Path, suffix: str, design_uv: Optional[int]) -> Optional[float]:
        """``energy_<suffix>`` (µWh), or ``charge_<suffix>`` (µAh) times the design voltage."""
        energy_uwh = self._read_int(base / f"energy_{suffix}")
        if energy_uwh is not None:
            return energy_uwh / 1_000_000
        charge_uah = self._read_int(base / f"charge_{suffix}")
        if charge_uah is not None and design_uv:
            return charge_uah * design_uv / 1e12
        return None

    def read(self) -> Optional[Reading]:
        base = self.find_battery()
        if base is None:
            return None

        percent = self._read_int(base / "capacity")
        if percent is None:
            now = self._read_int(base / "energy_now") or self._read_int(base / "charge_now")
            full = self._read_int(base / "energy_full") or self._read_int(base / "charge_full")
            if now is None or not full:
                raise ValueError(f"{base.name}: no capacity information")
            percent = 100.0 * now / full

        status = self._read(base / "status").lower()
        if status == "not charging":
            state = BatteryState.Full if percent >= FULL_THRESHOLD else BatteryState.Unknown
        else:
            state = _SYSFS_STATES.get(status, BatteryState.Unknown)

        voltage_uv = self._read_int(base / "voltage_now")
        power_uw = self._read_int(base / "power_now")
        if power_uw is None:
            current_ua = self._read_int(base / "current_now")
            if current_ua is not None and voltage_uv is not None:
                power_uw = abs(current_ua) * voltage_uv / 1_000_000
        power_w = abs(power_uw or 0) / 1_000_000
        if state is BatteryState.Discharging:
            power_w = -power_w

        temp_raw = self._read_int(base / "temp")
        return {
            "percent": float(percent),
            "state": state,
            "power_w": power_w,
            "voltage_mv": voltage_uv // 1000 if voltage_uv is not None else None,
            "temperature_c": temp_raw / 10.0 if temp_raw is not None else None,
            "details": self._details(base, state, power_w, voltage_uv),
        }

    def _details(self, base: Path, state: BatteryState, power_w: float,
                 voltage_uv: Optional[int]) -> BatteryDetails:
        design_uv = self._read_int(base / "voltage_min_design") or voltage_uv
        energy = self._energy_wh(base, "now", design_uv)
        full = self._energy_wh(base, "full", design_uv)
        to_full = self._read_int(base / "time_to_full_now")
        to_empty = self._read_int(base / "time_to_empty_now")
        if to_full is None and to_empty is None:
            to_full, to_empty = estimate_times(state, energy, full, power_w)
        return BatteryDetails(
            vendor=self._read(base / "manufacturer") or None,
            model=self._read(base / "model_name") or None,
            serial_number=self._read(base / "serial_number") or None,
            technology=self._read(base / "technology") or None,
            cycle_count=self._read_int(base / "cycle_count") or None,   # 0 = not reported
            energy_wh=energy,
            energy_full_wh=full,
            energy_full_design_wh=self._energy_wh(base, "full_design", design_uv),
            time_to_full_s=to_full,
            time_to_empty_s=to_empty,
        )


# ----------------------------------------------------------------------
# 2. psutil fallback (charge, plugged and time left only)
# ----------------------------------------------------------------------
class PsutilBatteryProvider:
    def read(self) -> Optional[Reading]:
        bat = psutil.sensors_battery()
        if bat is None:
            return None
        if bat.power_plugged is None:
            state = BatteryState.Unknown
        elif bat.power_plugged:
            state = BatteryState.Full if bat.percent >= FULL_THRESHOLD else BatteryState.Charging
        else:
            state = BatteryState.Discharging

        time_to_empty = None
        if (state is BatteryState.Discharging
                and bat.secsleft not in (psutil.POWER_TIME_UNKNOWN, psutil.POWER_TIME_UNLIMITED)
                and bat.secsleft >= 0):
            time_to_empty = float(bat.secsleft)
        return {
            "percent": float(bat.percent),
            "state": state,
            "power_w": 0.0,
            "voltage_mv": None,
            "temperature_c": None,
            "details": BatteryDetails(time_to_empty_s=time_to_empty),
        }


def default_provider() -> BatteryProvider:
    sysfs = SysfsBatteryProvider()
    if sysfs.find_battery() is not None:
        return sysfs
    return PsutilBatteryProvider()


# ----------------------------------------------------------------------
# 3. The source the rest of the program talks to
# ----------------------------------------------------------------------
class _ProviderCall(threading.Thread):
    """
    One bounded provider read. A daemon thread, so a read that never
    returns does not keep the interpreter alive at exit.
    """

    def __init__(self, call: Callable[[], Optional[Reading]]):
        super().__init__(name="amptop-provider", daemon=True)
        self._call = call
        self._result: Optional[Reading] = None
        self._error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self._result = self._call()
        except BaseException as exc:        # re-raised in the waiting thread
            self._error = exc

    def result(self) -> Optional[Reading]:
        if self._error is not None:
            raise self._error
        return self._result


class SampleSource:
    """
    Wraps a :class:`BatteryProvider` into ``sample() -> BatterySample``.

    Parameters
    ----------
    provider : BatteryProvider
        Where readings come from.
    clock : callable, optional
        Wall clock returning epoch seconds (``time.time`` by default).
    """

    def __init__(self, provider: BatteryProvider,
                 clock: Callable[[], float] = time.time):
        self.provider = provider
        self.clock = clock
        self._pending: Optional[_ProviderCall] = None

    def sample(self, timeout: Optional[float] = None) -> BatterySample:
        """
        Take one reading.

        Raises ``SourceUnavailable`` when the provider finds no battery and
        ``SourceReadError`` when the read fails or exceeds ``timeout``.
        """
        reading = self._read(timeout)
        if reading is None:
            raise SourceUnavailable("no battery device detected")
        return self.decode(reading, self.clock(), time.monotonic())

    @staticmethod
    def decode(reading: Reading, wall: float, mono: Optional[float] = None) -> BatterySample:
        try:
            voltage = reading.get("voltage_mv")
            temperature = reading.get("temperature_c")
            details = reading.get("details")
            if details is not None and not isinstance(details, BatteryDetails):
                raise TypeError(f"details must be BatteryDetails, not {type(details).__name__}")
            return BatterySample(
                timestamp=int(wall),
                charge_percent=float(reading["percent"]),
                state=reading.get("state", BatteryState.Unknown),
                power_watts=float(reading.get("power_w") or 0.0),
                voltage_mv=int(voltage) if voltage is not None else None,
                temperature_c=float(temperature) if temperature is not None else None,
                monotonic=mono,
                details=details,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceReadError(f"malformed battery reading: {exc}") from exc

    def _read(self, timeout: Optional[float]) -> Optional[Reading]:
        if timeout is None:
            return self._call_provider()

        if self._pending is not None and self._pending.is_alive():
            raise SourceReadError("previous battery read is still in progress")
        call = _ProviderCall(self._call_provider)
        self._pending = call
        call.start()
        call.join(timeout)
        if call.is_alive():
            raise SourceReadError(f"battery read timed out after {timeout:.1f}s")
        return call.result()

    def _call_provider(self) -> Optional[Reading]:
        try:
            return self.provider.read()
        except (OSError, ValueError) as exc:
            raise SourceReadError(f"battery read failed: {exc}") from exc

    def close(self) -> None:
        """Forget any read still in flight; its thread dies with the process."""
        if self._pending is not None and self._pending.is_alive():
            log.debug("abandoning a battery read still in progress")
        self._pending = None

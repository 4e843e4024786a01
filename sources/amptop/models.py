# models.py
"""
Dataclasses and enums shared by the store, the daemon and the live view.
``BatterySample`` maps 1‑to‑1 to a row of the ``samples`` table.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class BatteryState(Enum):
    # values are what the store persists
    Unknown = 0
    Charging = 1
    Discharging = 2
    Full = 3


class DaemonStatus(Enum):
    NotRunning = "not_running"
    Starting = "starting"
    Running = "running"
    Stopping = "stopping"
    Stale = "stale"


class Unit(Enum):
    Human = "human"
    Si = "si"


# ----------------------------------------------------------------------
# Samples
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class BatteryDetails:
    """Device, energy and timing information shown live; never persisted."""
    vendor: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    technology: Optional[str] = None
    cycle_count: Optional[int] = None
    energy_wh: Optional[float] = None
    energy_full_wh: Optional[float] = None
    energy_full_design_wh: Optional[float] = None
    time_to_full_s: Optional[float] = None
    time_to_empty_s: Optional[float] = None

    @property
    def health_percent(self) -> Optional[float]:
        """Last full charge relative to the design capacity."""
        if self.energy_full_wh is None or not self.energy_full_design_wh:
            return None
        return 100.0 * self.energy_full_wh / self.energy_full_design_wh


@dataclass(frozen=True)
class BatterySample:
    """One battery reading at a point in time."""
    timestamp: int                          # wall clock, epoch seconds (store key)
    charge_percent: float                   # clamped to [0, 100]
    state: BatteryState = BatteryState.Unknown
    power_watts: float = 0.0                # negative = draining
    voltage_mv: Optional[int] = None
    temperature_c: Optional[float] = None
    monotonic: Optional[float] = field(default=None, compare=False)  # not persisted
    details: Optional[BatteryDetails] = field(default=None, compare=False)  # not persisted

    def __post_init__(self):
        clamped = min(100.0, max(0.0, float(self.charge_percent)))
        object.__setattr__(self, "charge_percent", clamped)
        object.__setattr__(self, "timestamp", int(self.timestamp))


@dataclass(frozen=True)
class Bucket:
    """One downsampled slot of ``TimeSeriesStore.aggregate``."""
    bucket_start: int
    avg_charge: float
    avg_power: float


# ----------------------------------------------------------------------
# Daemon lock record
# ----------------------------------------------------------------------
_TRANSITIONS = {
    DaemonStatus.NotRunning: {DaemonStatus.Starting},
    DaemonStatus.Starting: {DaemonStatus.Running, DaemonStatus.Stopping, DaemonStatus.Stale},
    DaemonStatus.Running: {DaemonStatus.Stopping, DaemonStatus.Stale},
    DaemonStatus.Stopping: {DaemonStatus.NotRunning, DaemonStatus.Stale},
    DaemonStatus.Stale: {DaemonStatus.NotRunning},
}


@dataclass(frozen=True)
class DaemonState:
    status: DaemonStatus = DaemonStatus.NotRunning
    pid: Optional[int] = None
    interval_seconds: Optional[int] = None
    started_at: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self.status in (DaemonStatus.Starting, DaemonStatus.Running, DaemonStatus.Stopping)

    def uptime(self, now: float) -> Optional[float]:
        if self.started_at is None or not self.is_running:
            return None
        return max(0.0, now - self.started_at)

    def transition(self, status: DaemonStatus) -> "DaemonState":
        """Return a copy in ``status``; raise ``ValueError`` on a forbidden move."""
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(f"illegal daemon transition {self.status.name} -> {status.name}")
        return dataclasses.replace(self, status=status)

    def to_record(self) -> dict:
        return {
            "pid": self.pid,
            "interval_seconds": self.interval_seconds,
            "started_at": self.started_at,
            "status": self.status.value,
        }

    @classmethod
    def from_record(cls, record: dict) -> "DaemonState":
        return cls(
            status=DaemonStatus(record["status"]),
            pid=int(record["pid"]),
            interval_seconds=record.get("interval_seconds"),
            started_at=record.get("started_at"),
        )

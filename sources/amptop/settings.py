# settings.py
"""
Where amptop keeps its files and the tunables of the daemon and the live view.

Everything lives in one data directory (``$AMPTOP_HOME`` or
``~/.local/share/amptop``).  An optional ``config.json`` there is merged over
the defaults below.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from amptop.app_logger import get_logger

log = get_logger(__name__)

# ----------------------------------------------------------------------
# File names inside the data directory
# ----------------------------------------------------------------------
DB_FILE = "battery.db"
LOCK_FILE = "daemon.pid"
DAEMON_OUT = "daemon.out"
DAEMON_ERR = "daemon.err"
LOG_FILE = "amptop.log"
CONFIG_FILE = "config.json"

DEFAULT_CONFIG = {
    "retention_days": 30,
    "max_consecutive_failures": 5,
    "stop_timeout": 5.0,
    "trim_every_seconds": 3600,
    "busy_timeout_ms": 5000,
    "history_hours": 24,
    "history_bucket_seconds": 300,
    "history_refresh_seconds": 60,
    "log_level": "INFO",
}


def default_data_dir() -> Path:
    env = os.environ.get("AMPTOP_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".local" / "share" / "amptop"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    retention_days: int = 30
    max_consecutive_failures: int = 5
    stop_timeout: float = 5.0
    trim_every_seconds: int = 3600
    busy_timeout_ms: int = 5000
    history_hours: int = 24
    history_bucket_seconds: int = 300
    history_refresh_seconds: int = 60
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILE

    @property
    def lock_path(self) -> Path:
        return self.data_dir / LOCK_FILE

    @property
    def log_path(self) -> Path:
        return self.data_dir / LOG_FILE

    @property
    def daemon_out(self) -> Path:
        return self.data_dir / DAEMON_OUT

    @property
    def daemon_err(self) -> Path:
        return self.data_dir / DAEMON_ERR

    @property
    def retention_seconds(self) -> int:
        return int(self.retention_days * 86400)

    def ensure_data_dir(self) -> Path:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self.data_dir


def _coerce(value, kind: type):
    """Convert a config value to the type of its default; raise on lossy input."""
    if isinstance(value, bool) or value is None:
        raise TypeError(f"expected {kind.__name__}")
    if kind is int:
        number = float(value)
        if not number.is_integer():
            raise ValueError(f"{value!r} is not a whole number")
        return int(number)
    if kind is float:
        return float(value)
    if isinstance(value, (dict, list)):
        raise TypeError(f"expected {kind.__name__}")
    return kind(value)


def load_settings(data_dir: Optional[Path] = None) -> Settings:
    """Defaults merged with ``config.json`` from the data directory, if present."""
    data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
    merged = DEFAULT_CONFIG.copy()

    config_path = data_dir / CONFIG_FILE
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            log.warning("[CONFIG] Failed to load %s (%s), using defaults", config_path, exc)
            data = {}
        if not isinstance(data, dict):
            log.warning("[CONFIG] %s is not a JSON object, using defaults", config_path)
            data = {}
        known = {f.name for f in fields(Settings)} - {"data_dir"}
        for key, value in data.items():
            if key not in known:
                log.warning("[CONFIG] ignoring unknown key %r", key)
                continue
            try:
                merged[key] = _coerce(value, type(DEFAULT_CONFIG[key]))
            except (TypeError, ValueError):
                log.warning("[CONFIG] bad value %r for %r, using default %r",
                            value, key, DEFAULT_CONFIG[key])

    return Settings(data_dir=data_dir, **merged)

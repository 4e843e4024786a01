#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
File: timeseries_db.py
Description:
    Low‑level DAO (Data‑Access‑Object) for the battery history.
    A lightweight wrapper around an embedded SQLite database holding one
    append‑only table of ``BatterySample`` rows keyed by their timestamp.

    Key features:
        • Versioned, additive migrations tracked in ``PRAGMA user_version``
        • WAL journal so the daemon can append while viewers read
        • Bounded lock waits (``busy_timeout``) and bounded trim batches
        • Epoch‑aligned downsampling for long‑range charts
        • Read‑only mode for viewers (never migrates, never writes)
"""
import sqlite3
from pathlib import Path
from typing import Iterator, List, Optional

from amptop.app_logger import get_logger
from amptop.errors import StoreReadError, StoreWriteError
from amptop.models import BatterySample, BatteryState, Bucket
from amptop.timing_decorator import timed

log = get_logger(__name__)

TRIM_BATCH = 500          # rows deleted per transaction
FETCH_BATCH = 256         # rows pulled per fetchmany() while iterating

_COLUMNS = "timestamp, charge_percent, state, power_watts, voltage_mv, temperature_c"


# ----------------------------------------------------------------------
# Migrations – append only, never edit a released step
# ----------------------------------------------------------------------
def _migrate_create_samples(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS samples (
            timestamp      INTEGER PRIMARY KEY,
            charge_percent REAL    NOT NULL,
            state          INTEGER NOT NULL,
            power_watts    REAL    NOT NULL,
            voltage_mv     INTEGER,
            temperature_c  REAL
        );
        """
    )


def _migrate_import_battery_logs(conn: sqlite3.Connection) -> None:
    """Copy rows from the ``battery_logs`` table older releases wrote here."""
    legacy = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'battery_logs';"
    ).fetchone()
    if legacy is None:
        return
    cur = conn.execute(
        """
        INSERT OR IGNORE INTO samples (timestamp, charge_percent, state, power_watts)
        SELECT
            timestamp,
            MIN(MAX(percent, 0.0), 100.0),
            CASE LOWER(status)
                WHEN 'charging'    THEN 1
                WHEN 'discharging' THEN 2
                WHEN 'empty'       THEN 2
                WHEN 'full'        THEN 3
                ELSE 0
            END,
            0.0
        FROM battery_logs
        ORDER BY timestamp;
        """
    )
    log.info("imported %d legacy battery_logs row(s)", cur.rowcount)


MIGRATIONS = [
    (1, _migrate_create_samples),
    (2, _migrate_import_battery_logs),
]
SCHEMA_VERSION = MIGRATIONS[-1][0]


class _RangeQuery:
    """Restartable view over ``[start, end]``; every iteration re-reads the store."""

    def __init__(self, store: "TimeSeriesStore", start: int, end: int):
        self._store = store
        self.start = start
        self.end = end

    def __iter__(self) -> Iterator[BatterySample]:
        return self._store._iter_range(self.start, self.end)


# ----------------------------------------------------------------------
# Core wrapper
# ----------------------------------------------------------------------
class TimeSeriesStore:
    """Append/query wrapper for the ``samples`` table."""

    def __init__(self, db_path: str | Path, readonly: bool = False,
                 busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.readonly = readonly
        timeout = busy_timeout_ms / 1000.0
        try:
            if readonly:
                uri = self.db_path.resolve().as_uri() + "?mode=ro"
                self.conn = sqlite3.connect(uri, uri=True, timeout=timeout)
            else:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self.conn = sqlite3.connect(self.db_path, timeout=timeout)
        except (sqlite3.Error, OSError) as exc:
            err = StoreReadError if readonly else StoreWriteError
            raise err(f"cannot open store {self.db_path}: {exc}") from exc

        self.conn.row_factory = sqlite3.Row
        self.conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
        if readonly:
            self._check_schema()
        else:
            self._ensure_schema()

    # --------------------------------------------------------------
    # Schema
    # --------------------------------------------------------------
    def schema_version(self) -> int:
        return self.conn.execute("PRAGMA user_version;").fetchone()[0]

    def _ensure_schema(self) -> None:
        try:
            self.conn.execute("PRAGMA journal_mode = WAL;")
            self.conn.execute("BEGIN IMMEDIATE;")
            version = self.schema_version()
            for target, step in MIGRATIONS:
                if version >= target:
                    continue
                log.info("migrating %s to schema v%d", self.db_path, target)
                step(self.conn)
                self.conn.execute(f"PRAGMA user_version = {target};")
                version = target
            self.conn.commit()
        except sqlite3.Error as exc:
            if self.conn.in_transaction:
                self.conn.rollback()
            raise StoreWriteError(f"cannot migrate {self.db_path}: {exc}") from exc

    def _check_schema(self) -> None:
        try:
            version = self.schema_version()
        except sqlite3.Error as exc:
            raise StoreReadError(f"cannot read {self.db_path}: {exc}") from exc
        if version < 1:
            raise StoreReadError(f"{self.db_path} has no sample history yet")

    # --------------------------------------------------------------
    # Helper: Row → dataclass
    # --------------------------------------------------------------
    @staticmethod
    def _row_to_sample(row: sqlite3.Row) -> BatterySample:
        try:
            state = BatteryState(row["state"])
        except ValueError:
            state = BatteryState.Unknown
        return BatterySample(
            timestamp=row["timestamp"],
            charge_percent=row["charge_percent"],
            state=state,
            power_watts=row["power_watts"],
            voltage_mv=row["voltage_mv"],
            temperature_c=row["temperature_c"],
        )

    # ==============================================================
    #                     WRITES (daemon only)
    # ==============================================================

    def append(self, sample: BatterySample) -> None:
        if self.readonly:
            raise StoreWriteError("store is opened read-only")
        try:
            last = self.conn.execute("SELECT MAX(timestamp) FROM samples;").fetchone()[0]
            if last is not None and sample.timestamp <= last:
                raise StoreWriteError(
                    f"timestamp {sample.timestamp} is not after the newest row ({last})"
                )
            self.conn.execute(
                f"INSERT INTO samples ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?);",
                (
                    sample.timestamp,
                    sample.charge_percent,
                    sample.state.value,
                    sample.power_watts,
                    sample.voltage_mv,
                    sample.temperature_c,
                ),
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            if self.conn.in_transaction:
                self.conn.rollback()
            raise StoreWriteError(f"cannot append sample: {exc}") from exc

    @timed("store.trim_before")
    def trim_before(self, cutoff: int) -> int:
        """
        Delete rows with ``timestamp < cutoff``.

        Deletes in batches of ``TRIM_BATCH`` rows, committing between them,
        so readers never wait on one long write transaction.

        Returns
        -------
        int
            Number of rows deleted (0 on a second call with the same cutoff).
        """
        if self.readonly:
            raise StoreWriteError("store is opened read-only")
        total = 0
        try:
            while True:
                cur = self.conn.execute(
                    """
                    DELETE FROM samples
                    WHERE timestamp IN (
                        SELECT timestamp FROM samples
                        WHERE timestamp < ?
                        ORDER BY timestamp
                        LIMIT ?
                    );
                    """,
                    (int(cutoff), TRIM_BATCH),
                )
                self.conn.commit()
                total += cur.rowcount
                if cur.rowcount < TRIM_BATCH:
                    break
        except sqlite3.Error as exc:
            if self.conn.in_transaction:
                self.conn.rollback()
            raise StoreWriteError(f"cannot trim before {cutoff}: {exc}") from exc
        return total

    # ==============================================================
    #                     READS
    # ==============================================================

    def query_range(self, start: int, end: int) -> _RangeQuery:
        """Samples with ``start <= timestamp <= end``, ascending, lazily read."""
        return _RangeQuery(self, int(start), int(end))

    def _iter_range(self, start: int, end: int) -> Iterator[BatterySample]:
        try:
            cur = self.conn.execute(
                f"SELECT {_COLUMNS} FROM samples "
                "WHERE timestamp BETWEEN ? AND ? ORDER BY timestamp ASC;",
                (start, end),
            )
            while True:
                rows = cur.fetchmany(FETCH_BATCH)
                if not rows:
                    break
                for r in rows:
                    yield self._row_to_sample(r)
        except sqlite3.Error as exc:
            raise StoreReadError(f"cannot read samples: {exc}") from exc

    @timed("store.latest")
    def latest(self, n: int) -> List[BatterySample]:
        """
        Retrieve up to ``n`` of the newest samples in **chronological** order
        (oldest first), ready to be pushed into a rolling window.
        """
        if n <= 0:
            return []
        try:
            cur = self.conn.execute(
                f"SELECT {_COLUMNS} FROM samples ORDER BY timestamp DESC LIMIT ?;",
                (int(n),),
            )
            rows = [self._row_to_sample(r) for r in cur]
        except sqlite3.Error as exc:
            raise StoreReadError(f"cannot read latest samples: {exc}") from exc
        rows.reverse()
        return rows

    @timed("store.aggregate")
    def aggregate(self, bucket_duration: int, start: Optional[int] = None,
                  end: Optional[int] = None) -> List[Bucket]:
        """
        Average charge and power per bucket.

        Bucket boundaries are multiples of ``bucket_duration`` counted from
        the Unix epoch, so the same rows always land in the same buckets no
        matter where the queried range begins.
        """
        bucket_duration = int(bucket_duration)
        if bucket_duration <= 0:
            raise ValueError("bucket_duration must be a positive number of seconds")
        # floor division that also holds for negative timestamps
        bucket_expr = "(timestamp - (((timestamp % :d) + :d) % :d))"
        sql = f"""
            SELECT
                {bucket_expr}       AS bucket_start,
                AVG(charge_percent) AS avg_charge,
                AVG(power_watts)    AS avg_power
            FROM samples
            WHERE (:start IS NULL OR timestamp >= :start)
              AND (:end   IS NULL OR timestamp <= :end)
            GROUP BY bucket_start
            ORDER BY bucket_start ASC;
        """
        params = {"d": bucket_duration, "start": start, "end": end}
        try:
            cur = self.conn.execute(sql, params)
            return [
                Bucket(int(r["bucket_start"]), float(r["avg_charge"]), float(r["avg_power"]))
                for r in cur
            ]
        except sqlite3.Error as exc:
            raise StoreReadError(f"cannot aggregate samples: {exc}") from exc

    def count(self) -> int:
        try:
            return self.conn.execute("SELECT COUNT(*) FROM samples;").fetchone()[0]
        except sqlite3.Error as exc:
            raise StoreReadError(f"cannot count samples: {exc}") from exc

    # ------------------------------------------------------------------
    # Clean shutdown
    # ------------------------------------------------------------------
    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "TimeSeriesStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

#!/usr/bin/env python3
"""
History report over the stored samples.

* ``samples_frame``   – raw range as a pandas DataFrame (CSV export).
* ``buckets_frame``   – ``TimeSeriesStore.aggregate`` output as a DataFrame.
* ``format_table``    – the aggregate as printable text lines.
* ``plot_history``    – charge (left axis) and power draw (right axis) vs.
                        time, saved as an image.
"""

from datetime import datetime
from pathlib import Path
from typing import Iterable, List

import matplotlib
matplotlib.use("Agg")                       # file output only, no display needed

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
from matplotlib.dates import DateFormatter

from amptop.app_logger import get_logger
from amptop.models import BatterySample, Bucket
from amptop.timeseries_db import TimeSeriesStore

log = get_logger(__name__)

SAMPLE_COLUMNS = ["timestamp", "charge_percent", "state", "power_watts",
                  "voltage_mv", "temperature_c"]
CHARGE_COLOR = "#1f77b4"
POWER_COLOR = "#ff7f0e"


# ----------------------------------------------------------------------
# 1️⃣  DATAFRAMES
# ----------------------------------------------------------------------
def samples_frame(samples: Iterable[BatterySample]) -> pd.DataFrame:
    records = [
        (s.timestamp, s.charge_percent, s.state.name, s.power_watts,
         s.voltage_mv, s.temperature_c)
        for s in samples
    ]
    df = pd.DataFrame.from_records(records, columns=SAMPLE_COLUMNS)
    df["recorded_at"] = pd.to_datetime(df["timestamp"], unit="s", utc=True)
    return df


def buckets_frame(buckets: Iterable[Bucket]) -> pd.DataFrame:
    df = pd.DataFrame.from_records(
        [(b.bucket_start, b.avg_charge, b.avg_power) for b in buckets],
        columns=["bucket_start", "avg_charge", "avg_power"],
    )
    df["recorded_at"] = pd.to_datetime(df["bucket_start"], unit="s", utc=True)
    return df


def load_range(store: TimeSeriesStore, start: int, end: int) -> pd.DataFrame:
    return samples_frame(store.query_range(start, end))


def export_csv(df: pd.DataFrame, path: str | Path) -> Path:
    path = Path(path)
    df.drop(columns=["recorded_at"]).to_csv(path, index=False)
    log.info("exported %d row(s) to %s", len(df), path)
    return path


# ----------------------------------------------------------------------
# 2️⃣  TEXT TABLE
# ----------------------------------------------------------------------
def format_table(buckets: List[Bucket]) -> List[str]:
    lines = [f"{'bucket start':<19}  {'charge %':>8}  {'power W':>8}"]
    for b in buckets:
        when = datetime.fromtimestamp(b.bucket_start).strftime("%Y-%m-%d %H:%M:%S")
        lines.append(f"{when:<19}  {b.avg_charge:8.1f}  {b.avg_power:8.2f}")
    return lines


# ----------------------------------------------------------------------
# 3️⃣  CHART – charge and power on twin axes
# ----------------------------------------------------------------------
def plot_history(df: pd.DataFrame, path: str | Path, title: str = "Battery history") -> Path:
    """
    Save a chart of ``avg_charge``/``avg_power`` (bucket frame) or
    ``charge_percent``/``power_watts`` (sample frame) against time.
    """
    path = Path(path)
    charge_col = "avg_charge" if "avg_charge" in df else "charge_percent"
    power_col = "avg_power" if "avg_power" in df else "power_watts"

    sns.set_style("whitegrid")
    fig, ax_charge = plt.subplots(figsize=(12, 6))
    try:
        # ---- primary (charge) axis -------------------------------------
        line_charge, = ax_charge.plot(df["recorded_at"], df[charge_col],
                                      color=CHARGE_COLOR, linewidth=2, label="Charge (%)")
        ax_charge.set_xlabel("Time (UTC)")
        ax_charge.set_ylabel("Charge (%)", color=CHARGE_COLOR)
        ax_charge.set_ylim(0, 100)
        ax_charge.tick_params(axis="y", labelcolor=CHARGE_COLOR)
        ax_charge.xaxis.set_major_formatter(DateFormatter("%m-%d %H:%M"))

        # ---- secondary (power) axis ------------------------------------
        ax_power = ax_charge.twinx()
        line_power, = ax_power.plot(df["recorded_at"], df[power_col],
                                    color=POWER_COLOR, linewidth=1.5, linestyle="--",
                                    label="Power (W)")
        ax_power.set_ylabel("Power (W, negative = draining)", color=POWER_COLOR)
        ax_power.tick_params(axis="y", labelcolor=POWER_COLOR)

        if not df.empty:
            ax_charge.text(
                0.98, 0.98,
                f"min ≈ {df[charge_col].min():.1f} %   max ≈ {df[charge_col].max():.1f} %",
                transform=ax_charge.transAxes,
                ha="right", va="top", fontsize=9, color=CHARGE_COLOR,
                bbox=dict(facecolor="white", edgecolor=CHARGE_COLOR, pad=1.5),
            )

        handles = [line_charge, line_power]
        ax_charge.legend(handles, [h.get_label() for h in handles], loc="upper center")
        fig.suptitle(title)
        fig.autofmt_xdate()
        fig.tight_layout()
        fig.savefig(path)
    finally:
        plt.close(fig)
    log.info("saved history chart to %s", path)
    return path

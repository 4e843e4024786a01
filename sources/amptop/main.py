#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""main.py
Command line entry point.

    amptop [--delay SECONDS] [--units human|si]       interactive monitor
    amptop daemon start --interval SECONDS [-f]       background sampling
    amptop daemon stop | status
    amptop history [--hours H] [--bucket S] [--csv FILE] [--plot FILE]

Every command prints a one-line diagnosis on failure and exits non-zero.
"""

import argparse
import curses
import os
import sys
import time
from datetime import timedelta
from typing import List, Optional

from amptop import __version__
from amptop.app_logger import get_logger, setup_logging
from amptop.curses_view import CursesView
from amptop.daemon import DaemonController
from amptop.errors import (
    AmptopError,
    ForcedStop,
    SourceReadError,
    SourceUnavailable,
    StoreReadError,
)
from amptop.live_monitor import LiveMonitor
from amptop.models import DaemonState, DaemonStatus, Unit
from amptop.rolling_window import RollingWindow
from amptop.sample_source import SampleSource, default_provider
from amptop.settings import Settings, load_settings
from amptop.timeseries_db import TimeSeriesStore

log = get_logger(__name__)

EXIT_INTERRUPTED = 130


# ----------------------------------------------------------------------
# Argument parsing
# ----------------------------------------------------------------------
def _positive_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        value = 0.0
    if value <= 0:
        raise argparse.ArgumentTypeError(f"{text} isn't a positive number")
    return value


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        value = 0
    if value <= 0:
        raise argparse.ArgumentTypeError(f"{text} isn't a positive integer")
    return value


def _unit(text: str) -> Unit:
    for unit in Unit:
        if text.lower() == unit.value:
            return unit
    raise argparse.ArgumentTypeError(f"{text} isn't a valid unit (human, si)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="amptop", description="Interactive battery statistics")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-d", "--delay", type=_positive_float, default=1.0,
                        help="delay between updates, in seconds (default: 1)")
    parser.add_argument("-u", "--units", "--unit", type=_unit, default=Unit.Human,
                        help="measurement units: human or si (default: human)")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    daemon = commands.add_parser("daemon", help="manage the battery monitoring daemon")
    actions = daemon.add_subparsers(dest="action", metavar="ACTION", required=True)
    start = actions.add_parser("start", help="collect battery statistics in the background")
    start.add_argument("-i", "--interval", type=_positive_int, default=60,
                       help="seconds between readings (recommended: 60-300)")
    start.add_argument("-f", "--foreground", action="store_true",
                       help="run the sampling loop in this process")
    actions.add_parser("stop", help="stop the running daemon")
    actions.add_parser("status", help="show whether the daemon is running")

    history = commands.add_parser("history", help="summarise the stored battery history")
    history.add_argument("--hours", type=_positive_int, default=None,
                         help="how far back to look (default: from config, 24)")
    history.add_argument("--bucket", type=_positive_int, default=None,
                         help="bucket size in seconds (default: from config, 300)")
    history.add_argument("--csv", metavar="FILE", help="export the raw samples as CSV")
    history.add_argument("--plot", metavar="FILE", help="save a charge/power chart (PNG)")
    return parser


# ----------------------------------------------------------------------
# daemon start | stop | status
# ----------------------------------------------------------------------
def describe_status(state: DaemonState, now: float) -> str:
    if state.status is DaemonStatus.NotRunning:
        return "NotRunning"
    if state.status is DaemonStatus.Stale:
        pid = state.pid if state.pid is not None else "?"
        return f"Stale (pid {pid} is gone; run 'amptop daemon stop')"
    uptime = state.uptime(now)
    uptime_txt = str(timedelta(seconds=int(uptime))) if uptime is not None else "?"
    return (f"{state.status.name} (pid {state.pid}, interval {state.interval_seconds}s, "
            f"uptime {uptime_txt})")


def daemon_command(args: argparse.Namespace, settings: Settings,
                   controller: Optional[DaemonController] = None) -> int:
    controller = controller or DaemonController(settings)
    try:
        if args.action == "start":
            if args.foreground:
                print(f"amptop daemon running in foreground (pid {os.getpid()})")
                return controller.run_foreground(args.interval)
            state = controller.start(args.interval)
            print(f"Daemon started (pid {state.pid}, interval {state.interval_seconds}s)")
            return 0

        if args.action == "stop":
            try:
                controller.stop()
            except ForcedStop as exc:
                print(f"amptop: warning: {exc}", file=sys.stderr)
                return 0
            print("Daemon stopped")
            return 0

        state = controller.status()
        print(describe_status(state, time.time()))
        return 0 if state.is_running else 1
    except (AmptopError, OSError, ValueError) as exc:
        print(f"amptop: {exc}", file=sys.stderr)
        return 1


# ----------------------------------------------------------------------
# history
# ----------------------------------------------------------------------
def history_command(args: argparse.Namespace, settings: Settings) -> int:
    from amptop import history   # pandas/matplotlib only when asked for

    hours = args.hours or settings.history_hours
    bucket = args.bucket or settings.history_bucket_seconds
    end = int(time.time())
    start = end - hours * 3600
    try:
        with TimeSeriesStore(settings.db_path, readonly=True,
                             busy_timeout_ms=settings.busy_timeout_ms) as store:
            buckets = store.aggregate(bucket, start=start, end=end)
            for line in history.format_table(buckets):
                print(line)
            if args.csv:
                history.export_csv(history.load_range(store, start, end), args.csv)
                print(f"Samples written to {args.csv}")
            if args.plot:
                history.plot_history(history.buckets_frame(buckets), args.plot,
                                     title=f"Battery history, last {hours}h")
                print(f"Chart written to {args.plot}")
    except (AmptopError, OSError) as exc:
        print(f"amptop: {exc}", file=sys.stderr)
        return 1
    return 0


# ----------------------------------------------------------------------
# interactive mode
# ----------------------------------------------------------------------
def open_history(settings: Settings) -> Optional[TimeSeriesStore]:
    """Read-only store for seeding, or None when there is no usable history."""
    if not settings.db_path.exists():
        return None
    try:
        return TimeSeriesStore(settings.db_path, readonly=True,
                               busy_timeout_ms=settings.busy_timeout_ms)
    except StoreReadError as exc:
        log.warning("history disabled: %s", exc)
        return None


def run_session(stdscr: "curses.window", args: argparse.Namespace, settings: Settings,
                source: SampleSource, store: Optional[TimeSeriesStore]) -> None:
    """Body of ``curses.wrapper``: terminal state is restored however this exits."""
    view = CursesView(stdscr)
    window = RollingWindow(view.chart_width)
    monitor = LiveMonitor(
        source, window, store,
        unit=args.units,
        delay_seconds=args.delay,
        history_hours=settings.history_hours,
        history_bucket_seconds=settings.history_bucket_seconds,
        history_refresh_seconds=settings.history_refresh_seconds,
    )
    monitor.seed()
    while True:
        if window.capacity != view.chart_width:
            window.resize(view.chart_width)
        view.render(monitor.tick())
        if not view.poll(args.delay):
            break


def interactive(args: argparse.Namespace, settings: Settings) -> int:
    source = SampleSource(default_provider())
    store = None
    try:
        # fail before touching the terminal when there is no battery at all
        try:
            source.sample(timeout=args.delay)
        except SourceReadError as exc:
            log.warning("first battery read failed: %s", exc)

        store = open_history(settings)
        curses.wrapper(run_session, args, settings, source, store)
    except SourceUnavailable as exc:
        print(f"amptop: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    finally:
        source.close()
        if store is not None:
            store.close()
    return 0


# ----------------------------------------------------------------------
# Main entry point
# ----------------------------------------------------------------------
def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()

    foreground = args.command == "daemon" and args.action == "start" and args.foreground
    setup_logging(settings.log_path, settings.log_level, stream=foreground)

    if args.command == "daemon":
        return daemon_command(args, settings)
    if args.command == "history":
        return history_command(args, settings)
    return interactive(args, settings)


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()

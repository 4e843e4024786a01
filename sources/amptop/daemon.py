# daemon.py
"""
Background sampling daemon.

* ``LockRecord``        – the JSON lock/PID file, created with O_EXCL so two
                          concurrent ``start`` calls cannot both win.
* ``SamplingLoop``      – one tick at a time: sample → append → maybe trim.
* ``DaemonController``  – start / stop / status as seen from the CLI.

The controller and the daemon are separate processes; they only talk
through the lock record and signals.
"""

import dataclasses
import json
import os
import signal
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

import psutil

from amptop.app_logger import get_logger, setup_logging
from amptop.errors import (
    AlreadyRunning,
    AmptopError,
    DaemonAborted,
    ForcedStop,
    LockRaceLost,
    NotRunning,
    SourceReadError,
    SourceUnavailable,
    StaleDaemon,
    StoreWriteError,
)
from amptop.models import DaemonState, DaemonStatus
from amptop.sample_source import SampleSource, default_provider
from amptop.scheduler import Clock, SystemClock, TickSchedule
from amptop.settings import Settings
from amptop.timeseries_db import TimeSeriesStore

log = get_logger(__name__)

POLL_INTERVAL = 0.1        # seconds between liveness polls


def pid_alive(pid: Optional[int]) -> bool:
    """True if ``pid`` exists and is not a zombie."""
    if not pid:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


# ----------------------------------------------------------------------
# Lock record
# ----------------------------------------------------------------------
class LockRecord:
    def __init__(self, path: Path):
        self.path = Path(path)

    def create(self, state: DaemonState) -> None:
        """Atomically create the record; ``FileExistsError`` if one exists."""
        fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(state.to_record(), f)
            f.flush()
            os.fsync(f.fileno())

    def read(self) -> Optional[DaemonState]:
        """
        Return the recorded state, None when there is no record, or raise
        ``ValueError`` when the file cannot be parsed (e.g. half written).
        """
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        if text.isdigit():
            # plain PID file written by older releases
            return DaemonState(status=DaemonStatus.Running, pid=int(text))
        try:
            return DaemonState.from_record(json.loads(text))
        except (ValueError, KeyError, TypeError) as exc:
            raise ValueError(f"unreadable lock record {self.path}") from exc

    def replace(self, state: DaemonState) -> None:
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(state.to_record(), f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def remove(self, owners: Optional[Iterable[int]] = None) -> bool:
        """Delete the record; with ``owners`` only if it names one of those PIDs."""
        if owners is not None:
            try:
                current = self.read()
            except ValueError:
                current = None
            if current is None or current.pid not in set(owners):
                return False
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True


# ----------------------------------------------------------------------
# Sampling loop
# ----------------------------------------------------------------------
class SamplingLoop:
    """
    Drives ticks from a :class:`TickSchedule` until the clock reports a stop.

    Transient failures (``SourceReadError``, ``StoreWriteError``) are logged
    and counted; ``max_failures`` consecutive ones abort the loop, as does
    ``SourceUnavailable``. Both surface as ``DaemonAborted``.
    """

    def __init__(self, source: SampleSource, store: TimeSeriesStore, interval: float,
                 clock: Optional[Clock] = None, max_failures: int = 5,
                 retention_seconds: Optional[int] = None, trim_every: float = 3600):
        self.source = source
        self.store = store
        self.interval = float(interval)
        self.clock = clock or SystemClock()
        self.schedule = TickSchedule(self.interval)
        self.max_failures = max_failures
        self.retention_seconds = retention_seconds
        self.trim_every = trim_every
        self.failures = 0
        self.appended = 0
        self._last_trim: Optional[float] = None

    def run(self) -> None:
        self.schedule.start(self.clock.now())
        while True:
            if self.clock.wait(self.schedule.delay(self.clock.now())):
                break
            suspends = self.schedule.suspends
            if self.schedule.on_wake(self.clock.now()):
                self.tick()
            elif self.schedule.suspends != suspends:
                log.info("wake-up far behind schedule (suspend?); resuming at %d",
                         self.schedule.next_due)

    def tick(self) -> bool:
        """Run one tick; True when a row was appended."""
        now = self.clock.now()
        try:
            sample = self.source.sample(timeout=self.interval)
        except SourceUnavailable as exc:
            log.error("battery source unavailable: %s", exc)
            raise DaemonAborted(str(exc)) from exc
        except SourceReadError as exc:
            self._fail("read", exc)
            return False

        try:
            self.store.append(sample)
        except StoreWriteError as exc:
            self._fail("write", exc)
            return False

        self.failures = 0
        self.appended += 1
        log.debug("stored %d: %.1f%% %s %.2fW", sample.timestamp, sample.charge_percent,
                  sample.state.name, sample.power_watts)
        self._maybe_trim(now)
        return True

    def _fail(self, what: str, exc: Exception) -> None:
        self.failures += 1
        log.warning("%s failed (%d/%d): %s", what, self.failures, self.max_failures, exc)
        if self.failures >= self.max_failures:
            raise DaemonAborted(
                f"{self.failures} consecutive failures, last: {exc}"
            ) from exc

    def _maybe_trim(self, now: float) -> None:
        if self.retention_seconds is None:
            return
        if self._last_trim is not None and now - self._last_trim < self.trim_every:
            return
        self._last_trim = now
        cutoff = int(now) - self.retention_seconds
        try:
            removed = self.store.trim_before(cutoff)
        except StoreWriteError as exc:
            log.warning("retention trim failed: %s", exc)
            return
        if removed:
            log.info("trimmed %d sample(s) older than %d", removed, cutoff)


# ----------------------------------------------------------------------
# Controller
# ----------------------------------------------------------------------
class DaemonController:
    """
    Parameters
    ----------
    settings : Settings
        Paths and tunables.
    pid_alive : callable, optional
        Liveness check; tests inject a fake.
    launcher : callable, optional
        ``launcher(controller, state)`` detaches the sampling loop; the
        default double-forks.
    kill, sleep, clock : callables, optional
        ``os.kill``, ``time.sleep`` and ``time.time`` unless injected.
    """

    def __init__(self, settings: Settings,
                 pid_alive: Callable[[Optional[int]], bool] = pid_alive,
                 launcher: Optional[Callable[["DaemonController", DaemonState], None]] = None,
                 kill: Callable[[int, int], None] = os.kill,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time,
                 source_factory: Optional[Callable[[], SampleSource]] = None,
                 store_factory: Optional[Callable[[], TimeSeriesStore]] = None):
        self.settings = settings
        self.lock = LockRecord(settings.lock_path)
        self.pid_alive = pid_alive
        self.launcher = launcher or _daemonize
        self.kill = kill
        self.sleep = sleep
        self.clock = clock
        self.source_factory = source_factory or (lambda: SampleSource(default_provider()))
        self.store_factory = store_factory or (
            lambda: TimeSeriesStore(settings.db_path, busy_timeout_ms=settings.busy_timeout_ms)
        )

    # --------------------------------------------------------------
    # start
    # --------------------------------------------------------------
    def _acquire(self, interval_seconds: int) -> DaemonState:
        interval = int(interval_seconds)
        if interval < 1:
            raise ValueError("interval must be at least one second")
        self.settings.ensure_data_dir()
        initial = dataclasses.replace(
            DaemonState().transition(DaemonStatus.Starting),
            pid=os.getpid(),
            interval_seconds=interval,
            started_at=self.clock(),
        )
        try:
            self.lock.create(initial)
        except FileExistsError:
            self._raise_conflict()
        return initial

    def _raise_conflict(self) -> None:
        try:
            existing = self.lock.read()
        except ValueError:
            raise LockRaceLost() from None
        if existing is None:
            raise LockRaceLost()
        if existing.status is DaemonStatus.Stale or not self.pid_alive(existing.pid):
            raise StaleDaemon(existing.pid)
        raise AlreadyRunning(existing.pid)

    def start(self, interval_seconds: int) -> DaemonState:
        """Record the lock, detach the sampling loop and return once it runs."""
        initial = self._acquire(interval_seconds)
        try:
            self.launcher(self, initial)
        except BaseException:
            self.lock.remove(owners=(initial.pid,))
            raise
        return self._await_running()

    def _await_running(self) -> DaemonState:
        deadline = time.monotonic() + self.settings.stop_timeout
        while True:
            try:
                state = self.lock.read()
            except ValueError:
                state = None
            if state is None:
                raise DaemonAborted(
                    f"daemon exited during startup; see {self.settings.daemon_err}"
                )
            if state.status is DaemonStatus.Running or time.monotonic() >= deadline:
                if state.status is not DaemonStatus.Running:
                    log.warning("daemon still %s after %.1fs",
                                state.status.name, self.settings.stop_timeout)
                return state
            self.sleep(POLL_INTERVAL)

    def run_foreground(self, interval_seconds: int, clock: Optional[Clock] = None) -> int:
        """Hold the lock and sample in this process until signalled."""
        initial = self._acquire(interval_seconds)
        return self._serve(initial, clock)

    # --------------------------------------------------------------
    # the daemon process itself
    # --------------------------------------------------------------
    def _daemon_main(self, initial: DaemonState) -> int:
        settings = self.settings
        os.chdir(settings.data_dir)
        os.umask(0o022)
        _redirect_stdio(settings.daemon_out, settings.daemon_err)
        setup_logging(settings.log_path, settings.log_level, stream=True)
        return self._serve(initial)

    def _serve(self, initial: DaemonState, clock: Optional[Clock] = None) -> int:
        clock = clock or SystemClock()
        previous = {
            sig: signal.signal(sig, lambda signum, frame: clock.request_stop())
            for sig in (signal.SIGTERM, signal.SIGINT)
        }
        owners = (os.getpid(), initial.pid)
        source = None
        store = None
        try:
            source = self.source_factory()
            store = self.store_factory()
            running = dataclasses.replace(initial, pid=os.getpid()).transition(DaemonStatus.Running)
            self.lock.replace(running)
            log.info("daemon started (pid %d, every %ds, db %s)",
                     running.pid, running.interval_seconds, self.settings.db_path)
            SamplingLoop(
                source, store, running.interval_seconds, clock=clock,
                max_failures=self.settings.max_consecutive_failures,
                retention_seconds=self.settings.retention_seconds,
                trim_every=self.settings.trim_every_seconds,
            ).run()
            log.info("daemon stopped")
            return 0
        except AmptopError as exc:
            log.error("daemon aborted: %s", exc)
            return 1
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            if source is not None:
                source.close()
            if store is not None:
                store.close()
            self.lock.remove(owners=owners)

    # --------------------------------------------------------------
    # stop
    # --------------------------------------------------------------
    def stop(self) -> DaemonState:
        """
        Signal the daemon and wait up to ``stop_timeout`` for it to exit.

        A stale record is simply cleared. If the process outlives the wait
        the lock is cleared anyway and ``ForcedStop`` is raised.
        """
        try:
            state = self.lock.read()
        except ValueError:
            log.warning("clearing unreadable lock record %s", self.lock.path)
            self.lock.remove()
            return DaemonState()
        if state is None:
            raise NotRunning()

        if state.status is DaemonStatus.Stale or not self.pid_alive(state.pid):
            log.info("clearing stale lock (pid %s)", state.pid)
            self.lock.remove()
            return DaemonState()

        if state.status is not DaemonStatus.Stopping:
            self.lock.replace(state.transition(DaemonStatus.Stopping))
        try:
            self.kill(state.pid, signal.SIGTERM)
        except ProcessLookupError:
            self.lock.remove()
            return DaemonState()

        timeout = self.settings.stop_timeout
        deadline = time.monotonic() + timeout
        while self.pid_alive(state.pid):
            if time.monotonic() >= deadline:
                self.lock.remove()
                raise ForcedStop(state.pid, timeout)
            self.sleep(POLL_INTERVAL)

        self.lock.remove(owners=(state.pid,))
        log.info("daemon (pid %d) stopped", state.pid)
        return DaemonState()

    # --------------------------------------------------------------
    # status
    # --------------------------------------------------------------
    def status(self) -> DaemonState:
        try:
            state = self.lock.read()
        except ValueError:
            return DaemonState(status=DaemonStatus.Stale)
        if state is None:
            return DaemonState()
        if state.status is not DaemonStatus.Stale and not self.pid_alive(state.pid):
            try:
                current = self.lock.read()
            except ValueError:
                return DaemonState(status=DaemonStatus.Stale)
            if current != state:
                # the record was stopped or replaced while the pid was checked
                return current if current is not None else DaemonState()
            stale = state.transition(DaemonStatus.Stale)
            self.lock.replace(stale)
            log.warning("daemon pid %s is gone; lock marked stale", state.pid)
            return stale
        return state


# ----------------------------------------------------------------------
# Detaching
# ----------------------------------------------------------------------
def _redirect_stdio(out_path: Path, err_path: Path) -> None:
    null = os.open(os.devnull, os.O_RDONLY)
    out = os.open(out_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    err = os.open(err_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    for fd, target in ((null, 0), (out, 1), (err, 2)):
        os.dup2(fd, target)
        os.close(fd)


def _daemonize(controller: DaemonController, initial: DaemonState) -> None:
    """Double fork; only the calling process returns."""
    pid = os.fork()
    if pid > 0:
        os.waitpid(pid, 0)
        return

    code = 1
    try:
        os.setsid()
        if os.fork() > 0:
            code = 0
        else:
            code = controller._daemon_main(initial)
    except Exception:
        log.exception("daemon failed")
    finally:
        os._exit(code)

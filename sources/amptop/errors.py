# errors.py
"""
Exception taxonomy shared by every layer of amptop.

Lower layers raise the typed errors below; the CLI catches ``AmptopError``,
prints a one-line diagnosis and turns it into a non-zero exit code.
"""


class AmptopError(Exception):
    """Root of every error amptop raises on purpose."""


# ----------------------------------------------------------------------
# Battery source
# ----------------------------------------------------------------------
class SourceError(AmptopError):
    pass


class SourceUnavailable(SourceError):
    """No battery device on this host – fatal for any session."""


class SourceReadError(SourceError):
    """Transient provider failure – the caller may retry on the next tick."""


# ----------------------------------------------------------------------
# Time-series store
# ----------------------------------------------------------------------
class StoreError(AmptopError):
    pass


class StoreWriteError(StoreError):
    pass


class StoreReadError(StoreError):
    pass


# ----------------------------------------------------------------------
# Daemon lifecycle
# ----------------------------------------------------------------------
class DaemonError(AmptopError):
    pass


class AlreadyRunning(DaemonError):
    def __init__(self, pid=None):
        self.pid = pid
        msg = "daemon is already running"
        if pid is not None:
            msg += f" (pid {pid})"
        super().__init__(msg)


class LockRaceLost(AlreadyRunning):
    """Another ``start`` created the lock record first and is still writing it."""


class NotRunning(DaemonError):
    def __init__(self):
        super().__init__("daemon is not running")


class StaleDaemon(DaemonError):
    def __init__(self, pid):
        self.pid = pid
        super().__init__(
            f"stale daemon lock found (pid {pid} is gone); "
            "run 'amptop daemon stop' first"
        )


class ForcedStop(DaemonError):
    def __init__(self, pid, waited: float):
        self.pid = pid
        self.waited = waited
        super().__init__(
            f"daemon (pid {pid}) did not exit within {waited:.1f}s; lock cleared anyway"
        )


class DaemonAborted(DaemonError):
    """The sampling loop gave up (fatal source error or too many failures)."""

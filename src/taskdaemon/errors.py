"""Exception types raised by taskdaemon."""

from __future__ import annotations

from typing import Any


class DaemonError(Exception):
    """Base class for every taskdaemon error."""


class ConfigurationError(DaemonError):
    """Invalid or missing configuration, or the wrong execution context.

    Always fatal. Raised before the daemon detaches, so nothing has forked yet.
    """


class AlreadyRunningError(ConfigurationError):
    """Another live daemon instance owns the PID file."""

    def __init__(self, pid: int, path: object):
        self.pid = pid
        self.path = path
        super().__init__(f"Daemon already running (PID {pid}, pid file {path})")


class ProcessControlError(DaemonError):
    """Fork, setsid, chdir or signal setup failed while daemonizing."""


class PidFileError(ProcessControlError):
    """PID file could not be opened, locked, read or written."""


class DispatchError(DaemonError):
    """A worker process could not be spawned or recorded."""


class LogSinkError(DaemonError):
    """Log directory is missing or not writable."""


class DatabaseAccessError(DaemonError):
    """A database operation failed.

    Carries the statement text and bound parameters so the failure can be
    diagnosed from the log line alone.
    """

    def __init__(self, message: str, statement: str | None = None, params: Any = None):
        self.statement = statement
        self.params = params
        parts = [message]
        if statement is not None:
            parts.append(f"statement: {statement}")
        if params:
            parts.append(f"params: {params!r}")
        super().__init__("\n".join(parts))

"""Polling background-job daemon with process-per-task workers."""

from taskdaemon.config import Config, DaemonConfig, DatabaseConfig
from taskdaemon.daemon import Daemon
from taskdaemon.errors import (
    AlreadyRunningError,
    ConfigurationError,
    DaemonError,
    DatabaseAccessError,
    DispatchError,
    LogSinkError,
    PidFileError,
    ProcessControlError,
)

__all__ = [
    "AlreadyRunningError",
    "Config",
    "ConfigurationError",
    "Daemon",
    "DaemonConfig",
    "DaemonError",
    "DatabaseAccessError",
    "DatabaseConfig",
    "DispatchError",
    "LogSinkError",
    "PidFileError",
    "ProcessControlError",
]

"""Severity-segregated, size-rotated log files.

Each (day, severity) pair gets its own file in the log directory:

    daemon-info-2026-10-18.log
    daemon-error-2026-10-18.log

Once a file reaches the size limit it is renamed with a unix-time suffix
(daemon-info-2026-10-18_1760781600.log) and a fresh file is started. Worker
processes write to the same files as the supervisor; every line is a single
O_APPEND write, so lines from different processes interleave but never mix.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import date, datetime
from pathlib import Path

from taskdaemon.errors import LogSinkError

INFO = "info"
ERROR = "error"
SEVERITIES = (INFO, ERROR)

FILE_PREFIX = "daemon"
FILE_SUFFIX = ".log"


class LogSink:
    """Append-only writer for the daemon's log directory."""

    def __init__(self, directory: Path, max_size: int, component: str = "daemon"):
        self.directory = Path(directory)
        self.max_size = max_size
        self.component = component

    def check_directory(self) -> None:
        """Raise LogSinkError unless the log directory exists and is writable."""
        if not self.directory.is_dir() or not os.access(self.directory, os.W_OK):
            raise LogSinkError(f"Log directory missing or not writable: {self.directory}")

    def target_path(self, severity: str, day: date | None = None) -> Path:
        """Return the active log file for severity on day (default today)."""
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {severity!r}. Valid: {list(SEVERITIES)}")
        day = day or date.today()
        return self.directory / f"{FILE_PREFIX}-{severity}-{day.isoformat()}{FILE_SUFFIX}"

    def rotate(self, path: Path) -> Path | None:
        """Move path aside under an unused time-based name.

        The new name is claimed with a hard link, which fails instead of
        replacing a file another process rotated in the same second.

        Returns the new name, or None if another process rotated it first.

        Raises:
            LogSinkError: If the file can't be linked or unlinked.
        """
        stamp = int(time.time())
        while True:
            rotated = path.with_name(f"{path.stem}_{stamp}{path.suffix}")
            try:
                os.link(path, rotated)
            except FileExistsError:
                stamp += 1
                continue
            except FileNotFoundError:
                return None
            except OSError as e:
                raise LogSinkError(f"Cannot rotate log file {path}: {e}") from e
            break
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LogSinkError(f"Cannot rotate log file {path}: {e}") from e
        return rotated

    def format_line(self, message: str, now: datetime | None = None) -> str:
        now = now or datetime.now()
        return f"[{now:%Y-%m-%d %H:%M:%S}] {self.component} {os.getpid()} {message}\n"

    def write(self, message: str, severity: str = ERROR) -> Path:
        """Append one line to today's file for severity.

        Returns:
            The file the line was written to.

        Raises:
            LogSinkError: If the log directory is missing or not writable.
        """
        self.check_directory()
        now = datetime.now()
        target = self.target_path(severity, now.date())

        try:
            size = target.stat().st_size
        except FileNotFoundError:
            size = 0
        if size >= self.max_size:
            self.rotate(target)

        data = self.format_line(message, now).encode("utf-8", errors="replace")
        try:
            fd = os.open(target, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        except OSError as e:
            raise LogSinkError(f"Cannot open log file {target}: {e}") from e
        try:
            os.write(fd, data)
        finally:
            os.close(fd)
        return target


class LogSinkHandler(logging.Handler):
    """stdlib logging handler that writes formatted records into a LogSink.

    WARNING and above go to the error file, everything else to the info file.
    A sink failure is escalated to the terminal and ends the process: a daemon
    that can't write its logs is not allowed to keep running.
    """

    def __init__(self, sink: LogSink, level: int = logging.NOTSET):
        super().__init__(level)
        self.sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        severity = ERROR if record.levelno >= logging.WARNING else INFO
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        try:
            self.sink.write(message, severity)
        except LogSinkError as e:
            from taskdaemon import logging as tlog

            tlog.log_unwritable(str(e))
            raise SystemExit(1) from e

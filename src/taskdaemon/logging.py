"""Console output and structlog configuration.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Core console functions (log, info, warn, error)
3. Domain-specific console helpers (daemon_detached, already_running, etc.)
4. Structlog configuration (configure, get_structlog)

Console output uses Rich markup and only matters before the daemon detaches
from its terminal. Everything else goes through structlog into the LogSink
files.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

from taskdaemon.logsink import LogSink, LogSinkHandler

if TYPE_CHECKING:
    from taskdaemon.config import DaemonConfig

# Human-readable output goes to stderr so stdout stays clean for CLI results
_console = Console(highlight=False, stderr=True)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    SIGNAL = "⚡"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def daemon_starting(name: str, max_workers: int, scan_interval: float) -> None:
    """Log daemon startup before detaching."""
    info(
        f"Starting [bold cyan]{name}[/] "
        f"[dim](workers={max_workers}, scan={scan_interval}s)[/]",
        Icon.WAIT,
    )


def daemon_detached(pid: int) -> None:
    """Log that the daemon is running in the background."""
    info(f"Daemon running in background [dim](PID {pid})[/]", Icon.OK)


def already_running(pid: int) -> None:
    """Log daemon already running error."""
    error(f"Another daemon already running [dim](PID {pid})[/]", Icon.FAIL)


def startup_failed(msg: str) -> None:
    """Log a fatal startup error."""
    error(msg, Icon.FAIL)


def log_unwritable(msg: str) -> None:
    """Log that the log directory can't be used."""
    error(f"Logging failed: {msg}", Icon.FAIL)


def stop_requested(pid: int) -> None:
    """Log SIGTERM sent to the daemon."""
    info(f"Sent [bold]SIGTERM[/] to PID {pid}", Icon.SIGNAL)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _render_message(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> str:
    """Render an event as 'event key=value ...' with any traceback below it.

    Timestamp, component and pid are prepended by the LogSink itself.
    """
    event = event_dict.pop("event", "")
    exc = event_dict.pop("exception", None)
    stack = event_dict.pop("stack", None)
    for key in ("level", "_record", "_from_structlog"):
        event_dict.pop(key, None)
    parts = [str(event)]
    parts.extend(f"{key}={value!r}" for key, value in sorted(event_dict.items()))
    line = " ".join(parts)
    if stack:
        line += "\n" + stack
    if exc:
        line += "\n" + exc
    return line


def configure(config: DaemonConfig, component: str = "daemon") -> LogSink:
    """Route structlog and stdlib logging into the daemon's LogSink.

    Args:
        config: Daemon config with log_path and max_log_size
        component: Name written on every line (usually the job class name)

    Returns:
        The LogSink receiving all log output.

    Raises:
        LogSinkError: If the log directory is missing or not writable.
    """
    if config.log_path is None:
        raise ValueError("configure() needs config.log_path")

    sink = LogSink(config.log_path, config.max_log_size, component=component)
    sink.check_directory()

    handler = LogSinkHandler(sink)
    handler.setLevel(logging.INFO)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_render_message,
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.add_log_level,
                structlog.processors.format_exc_info,
            ],
        )
    )

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()
    stdlib_root.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return sink


def get_structlog() -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance."""
    return structlog.get_logger()

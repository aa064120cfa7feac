"""Shared test fixtures for taskdaemon."""

import logging
import os
import signal
import sys
import threading
import time
import warnings
from pathlib import Path
from typing import Any, Iterator

import psutil
import pytest

from taskdaemon.config import DaemonConfig
from taskdaemon.daemon import Daemon

_SIGNALS = (signal.SIGCHLD, signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


@pytest.fixture(autouse=True)
def _restore_process_state() -> Iterator[None]:
    """Undo global changes made by the daemon under test.

    Signal dispositions, error hooks, warning filters and root log handlers
    are all process-wide, so every test gets them back as they were.
    """
    saved_signals = {sig: signal.getsignal(sig) for sig in _SIGNALS}
    saved_hooks = (sys.excepthook, threading.excepthook, warnings.showwarning)
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    with warnings.catch_warnings():
        yield
    for sig, handler in saved_signals.items():
        signal.signal(sig, handler)
    sys.excepthook, threading.excepthook, warnings.showwarning = saved_hooks
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    """An empty, writable log directory."""
    path = tmp_path / "logs"
    path.mkdir()
    return path


@pytest.fixture
def daemon_config(tmp_path: Path, log_dir: Path) -> DaemonConfig:
    """Config with every path under tmp_path and no sleeping between polls."""
    return DaemonConfig(
        pid_file=tmp_path / "daemon.pid",
        log_path=log_dir,
        max_worker_count=2,
        scan_interval=0,
    )


@pytest.fixture(autouse=True)
def configured_logging(_restore_process_state: None, daemon_config: DaemonConfig) -> Path:
    """Route structlog into a LogSink under log_dir. Returns the directory.

    Module-level loggers are cached on first use, so logging has to be
    configured before any test touches one; the root handler is what changes
    from test to test.
    """
    from taskdaemon import logging as tlog

    tlog.configure(daemon_config, component="RecordingJob")
    return daemon_config.log_path


def read_logs(log_dir: Path, severity: str) -> str:
    """Concatenate every log file of one severity, rotated ones included."""
    return "".join(p.read_text() for p in sorted(log_dir.glob(f"daemon-{severity}-*.log")))


def spawn_child(exit_code: int = 0, sleep: float = 0.0) -> int:
    """Fork a bare child that optionally sleeps, then exits with exit_code."""
    pid = os.fork()
    if pid == 0:
        try:
            if sleep:
                time.sleep(sleep)
        finally:
            os._exit(exit_code)
    return pid


def wait_until_exited(pids: list[int], timeout: float = 5.0) -> None:
    """Wait until every pid is a zombie (exited, not yet reaped)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if all(psutil.Process(pid).status() == psutil.STATUS_ZOMBIE for pid in pids):
            return
        time.sleep(0.01)
    raise TimeoutError(f"Children {pids} did not exit within {timeout}s")


class RecordingJob(Daemon):
    """Job that serves a fixed task list and records every hook call."""

    def __init__(
        self,
        config: Any = None,
        tasks: list | None = None,
        results: dict | None = None,
        **kwargs: Any,
    ):
        super().__init__(config, **kwargs)
        self.pending = list(tasks or [])
        self.results = results or {}
        self.calls: list[tuple] = []

    def task(self) -> Any:
        self.calls.append(("task",))
        return self.pending[0] if self.pending else None

    def start(self, task: Any) -> None:
        self.calls.append(("start", task))
        self.pending.remove(task)

    def work(self, task: Any) -> bool:
        self.calls.append(("work", task))
        return self.results.get(task, True)

    def over(self, task: Any) -> None:
        self.calls.append(("over", task))

    def fail(self, task: Any) -> None:
        self.calls.append(("fail", task))

    def after_success(self) -> None:
        self.calls.append(("after_success",))


@pytest.fixture
def job(daemon_config: DaemonConfig) -> RecordingJob:
    """A RecordingJob with no tasks, posing as the owning supervisor."""
    job = RecordingJob(daemon_config)
    job.pid = os.getpid()
    return job

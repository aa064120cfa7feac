"""Supervisor base class for polling background jobs.

A job subclasses Daemon and implements the lifecycle hooks:

    task()          -> next pending task, or None when there is nothing to do
    start(task)     -> mark the task as dispatched (runs in the supervisor)
    work(task)      -> do the work (runs in a fresh worker process), True on success
    over(task)      -> mark the task done (worker, after work() returned True)
    fail(task)      -> mark the task failed (worker, after work() returned False)
    after_success() -> optional follow-up in the worker after over()

task() should return the next pending task without claiming it: when every
worker slot is busy the task is not dispatched, and the next poll asks again.
start() is where a task gets claimed, and it always happens in the supervisor
before the worker exists.
"""

import os
import signal
import sys
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, NoReturn

import structlog

from taskdaemon import logging as tlog
from taskdaemon.config import DaemonConfig, DatabaseConfig
from taskdaemon.db import Connection
from taskdaemon.errors import (
    AlreadyRunningError,
    ConfigurationError,
    DaemonError,
    DispatchError,
    ProcessControlError,
)
from taskdaemon.errortrap import ErrorTrap
from taskdaemon.logsink import LogSink
from taskdaemon.pidfile import PidFileGuard
from taskdaemon.pool import WorkerPool
from taskdaemon.signals import SHUTDOWN_SIGNALS, SignalRouter

log = structlog.get_logger()

DISPATCH_BLOCKED_SIGNALS = {signal.SIGCHLD, *SHUTDOWN_SIGNALS}


class Daemon(ABC):
    """Polls for tasks and runs each one in its own forked worker process."""

    def __init__(
        self,
        config: DaemonConfig | Mapping[str, Any] | None = None,
        database: DatabaseConfig | None = None,
    ):
        if config is None:
            config = DaemonConfig()
        elif not isinstance(config, DaemonConfig):
            config = DaemonConfig.from_mapping(config)
        self.config = config
        self.database = database or DatabaseConfig()

        self.pool = WorkerPool(config.max_worker_count)
        self.pidfile = PidFileGuard(config.pid_file) if config.pid_file else None
        self.trap = ErrorTrap()
        self.router: SignalRouter | None = None
        self.sink: LogSink | None = None
        self.pid: int | None = None
        self._db: Connection | None = None

    @property
    def name(self) -> str:
        """Component name written on every log line."""
        return type(self).__name__

    # ─────────────────────────────────────────────────────────────────────
    # Job hooks
    # ─────────────────────────────────────────────────────────────────────

    @abstractmethod
    def task(self) -> Any:
        """Return the next pending task, or None."""

    @abstractmethod
    def start(self, task: Any) -> None:
        """Mark task as dispatched."""

    @abstractmethod
    def work(self, task: Any) -> bool:
        """Process task. Return True on success."""

    @abstractmethod
    def over(self, task: Any) -> None:
        """Mark task as finished."""

    def fail(self, task: Any) -> None:
        """Mark task as failed."""

    def after_success(self) -> None:
        """Called in the worker after over()."""

    # ─────────────────────────────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────────────────────────────

    @property
    def db(self) -> Connection:
        """Database accessor for job code, created on first use."""
        if self._db is None:
            if not self.database.path:
                raise ConfigurationError("No database configured (database.path is unset)")
            self._db = Connection(self.database.path, timeout=self.database.timeout)
        return self._db

    def release_db(self) -> None:
        """Close and forget the cached connection.

        Connections are never carried across a fork or held while sleeping.
        """
        if self._db is not None:
            self._db.close()
            self._db = None

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    def run(self, detach: bool = True) -> NoReturn:
        """Start the daemon. Only returns by raising.

        Args:
            detach: Fork into the background. With detach=False the daemon
                stays attached to the calling process, for service managers
                that supervise the foreground process themselves.

        Raises:
            ConfigurationError: Missing settings or another instance running.
            LogSinkError: The log directory is missing or not writable.
            ProcessControlError: Daemonizing failed.
        """
        self.trap.install()
        try:
            self._check_environment()
            self.sink = tlog.configure(self.config, component=self.name)
            tlog.daemon_starting(self.name, self.config.max_worker_count, self.config.scan_interval)
            self.pidfile.ensure_not_running()  # type: ignore[union-attr]
        except AlreadyRunningError as e:
            tlog.already_running(e.pid)
            raise
        except DaemonError as e:
            tlog.startup_failed(str(e))
            raise

        if detach:
            self._daemonize()
        else:
            self._become_owner()

        self.router = SignalRouter(self.pool, self.pidfile, self.pid)  # type: ignore[arg-type]
        self.router.install()
        log.info(
            "daemon_started",
            pid=self.pid,
            detached=detach,
            max_workers=self.config.max_worker_count,
            scan_interval=self.config.scan_interval,
        )
        self._main_loop()

    def _check_environment(self) -> None:
        if self.config.pid_file is None:
            raise ConfigurationError("A pid file must be configured (pid_file)")
        if self.config.log_path is None:
            raise ConfigurationError("A log directory must be configured (log_path)")
        if os.name != "posix" or not hasattr(os, "fork"):
            raise ConfigurationError("The daemon needs a POSIX system with fork()")
        if hasattr(sys, "ps1") or sys.flags.interactive:
            raise ConfigurationError("The daemon can't run inside an interactive interpreter")

    def _daemonize(self) -> None:
        """Detach from the terminal: fork, setsid, fork again, chdir /."""
        os.umask(0)
        self._fork_and_exit_parent()
        try:
            os.setsid()
        except OSError as e:
            raise ProcessControlError(f"Cannot become session leader: {e}") from e
        try:
            signal.signal(signal.SIGHUP, signal.SIG_IGN)
        except (OSError, ValueError) as e:
            raise ProcessControlError(f"Cannot ignore SIGHUP: {e}") from e
        # Second fork: no longer a session leader, can't reacquire a terminal
        self._fork_and_exit_parent()
        try:
            os.chdir("/")
        except OSError as e:
            raise ProcessControlError(f"Cannot change working directory to /: {e}") from e

        self._become_owner()
        tlog.daemon_detached(self.pid)  # type: ignore[arg-type]
        self._redirect_stdio()

    @staticmethod
    def _fork_and_exit_parent() -> None:
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            pid = os.fork()
        except OSError as e:
            raise ProcessControlError(f"Cannot fork: {e}") from e
        if pid > 0:
            # Intermediate parent: no atexit hooks, no unwinding
            os._exit(0)

    @staticmethod
    def _redirect_stdio() -> None:
        sys.stdout.flush()
        sys.stderr.flush()
        with open(os.devnull, "r+") as f:
            for fd in (0, 1, 2):
                os.dup2(f.fileno(), fd)

    def _become_owner(self) -> None:
        self.pid = os.getpid()
        self.pidfile.write(self.pid)  # type: ignore[union-attr]

    def _main_loop(self) -> NoReturn:
        while True:
            self.poll_once()
            self.release_db()
            time.sleep(self.config.scan_interval)

    def poll_once(self) -> int | None:
        """Run one poll/dispatch step.

        Returns:
            PID of the worker spawned for this poll, if any.
        """
        count = self.pool.count()
        task = self.task()
        if task is not None and count < self.config.max_worker_count:
            return self._dispatch(task)
        if task is None and count == 0:
            log.info("idle_shutdown", pid=self.pid)
            os.kill(self.pid, signal.SIGTERM)  # type: ignore[arg-type]
        elif task is not None:
            log.debug("pool_full", task=task, workers=count)
        return None

    def _dispatch(self, task: Any) -> int:
        log.info("task_started", task=task)
        self.start(task)
        self.release_db()

        # Hold SIGCHLD and the shutdown signals until the worker is recorded:
        # a fast worker could otherwise be reaped before it is tracked, and a
        # shutdown in between would never terminate it
        old_mask = signal.pthread_sigmask(signal.SIG_BLOCK, DISPATCH_BLOCKED_SIGNALS)
        try:
            try:
                pid = os.fork()
            except OSError as e:
                raise DispatchError(f"Cannot fork worker: {e}") from e
            if pid == 0:
                self._run_worker(task, old_mask)
            self.pool.record(pid)
        finally:
            signal.pthread_sigmask(signal.SIG_SETMASK, old_mask)

        log.info("worker_spawned", worker_pid=pid, task=task, workers=self.pool.count())
        return pid

    def _run_worker(self, task: Any, signal_mask: set) -> NoReturn:
        """Worker process body. Never returns to the supervisor loop."""
        status = 1
        try:
            SignalRouter.reset_in_worker()
            signal.pthread_sigmask(signal.SIG_SETMASK, signal_mask)
            self._db = None
            status = self.execute(task)
        except SystemExit as e:
            status = e.code if isinstance(e.code, int) else 1
        except BaseException as e:
            self.trap.handle_exception(e)
        finally:
            os._exit(status)

    def execute(self, task: Any) -> int:
        """Run the worker half of the task lifecycle.

        Returns:
            Exit status for the worker process.
        """
        log.info("task_working", task=task)
        if self.work(task):
            log.info("task_succeeded", task=task)
            self.over(task)
            self.after_success()
        else:
            log.warning("task_failed", task=task)
            self.fail(task)
        return 0

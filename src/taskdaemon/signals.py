"""Signal handling for the supervisor process."""

import os
import signal
import sys
from collections.abc import Callable

import structlog

from taskdaemon.errors import ProcessControlError
from taskdaemon.pidfile import PidFileGuard
from taskdaemon.pool import WorkerPool

log = structlog.get_logger()

# Graceful shutdown exits non-zero, same as every other way the daemon ends
SHUTDOWN_EXIT_STATUS = 1

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class SignalRouter:
    """Maps OS signals onto pool and shutdown actions.

    Handlers only act in the owning supervisor process. A worker forked from
    the supervisor inherits them until reset_in_worker() runs, and must never
    reap the supervisor's children or delete its PID file.
    """

    def __init__(
        self,
        pool: WorkerPool,
        pidfile: PidFileGuard,
        owner_pid: int,
        exit: Callable[[int], object] = sys.exit,
    ):
        self.pool = pool
        self.pidfile = pidfile
        self.owner_pid = owner_pid
        self._exit = exit

    def is_owner(self) -> bool:
        return os.getpid() == self.owner_pid

    def install(self) -> None:
        """Register the handlers. Called once, after daemonizing.

        Raises:
            ProcessControlError: If a disposition can't be changed.
        """
        try:
            signal.signal(signal.SIGCHLD, self.handle_child_exit)
            signal.signal(signal.SIGHUP, signal.SIG_IGN)
            for sig in SHUTDOWN_SIGNALS:
                signal.signal(sig, self.handle_shutdown)
        except (OSError, ValueError) as e:
            raise ProcessControlError(f"Cannot install signal handlers: {e}") from e
        log.debug("signal_handlers_installed", owner_pid=self.owner_pid)

    @staticmethod
    def reset_in_worker() -> None:
        """Give a freshly forked worker the default dispositions back.

        SIGHUP stays ignored so a worker also survives terminal hang-up.
        """
        signal.signal(signal.SIGCHLD, signal.SIG_DFL)
        for sig in SHUTDOWN_SIGNALS:
            signal.signal(sig, signal.SIG_DFL)

    def handle_child_exit(self, signum: int, frame: object) -> None:
        if not self.is_owner():
            return
        self.pool.reap_all()

    def handle_shutdown(self, signum: int, frame: object) -> None:
        """Terminate workers, drop the PID file, exit."""
        if not self.is_owner():
            return
        log.info(
            "shutdown_requested",
            signal=signal.Signals(signum).name,
            workers=self.pool.count(),
        )
        self.pool.terminate_all()
        self.pidfile.remove()
        log.info("daemon_stopped", exit_status=SHUTDOWN_EXIT_STATUS)
        self._exit(SHUTDOWN_EXIT_STATUS)

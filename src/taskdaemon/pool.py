"""Bookkeeping for in-flight worker processes."""

import os
import signal
import time
from dataclasses import dataclass, field

import psutil
import structlog

from taskdaemon.errors import DispatchError

log = structlog.get_logger()


@dataclass
class WorkerRecord:
    """A spawned worker process."""

    pid: int
    started_at: float = field(default_factory=time.time)


class WorkerPool:
    """Tracks live worker processes and enforces the concurrency cap.

    reap_all() is driven from the SIGCHLD handler, so it may run between any
    two statements of the main loop. Everything that walks the records works
    on a snapshot.
    """

    def __init__(self, max_workers: int):
        self.max_workers = max_workers
        self._workers: dict[int, WorkerRecord] = {}

    def count(self) -> int:
        return len(self._workers)

    def pids(self) -> list[int]:
        return list(self._workers)

    def get(self, pid: int) -> WorkerRecord | None:
        return self._workers.get(pid)

    def is_full(self) -> bool:
        return len(self._workers) >= self.max_workers

    def record(self, pid: int) -> WorkerRecord:
        """Start tracking a freshly spawned worker.

        Raises:
            DispatchError: If the pool is already at max_workers.
        """
        if self.is_full():
            raise DispatchError(
                f"Worker pool full ({self.max_workers}), refusing to track PID {pid}"
            )
        worker = WorkerRecord(pid=pid)
        self._workers[pid] = worker
        return worker

    def discard(self, pid: int) -> WorkerRecord | None:
        return self._workers.pop(pid, None)

    def reap_all(self) -> list[int]:
        """Collect every child that has already exited. Never blocks.

        One SIGCHLD can stand for several exits, so this keeps waiting until
        no exited child is left.

        Returns:
            PIDs reaped by this call.
        """
        reaped = []
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                break
            if pid == 0:
                break
            reaped.append(pid)
            worker = self.discard(pid)
            if worker is not None:
                log.info(
                    "worker_reaped",
                    worker_pid=pid,
                    exit_status=os.waitstatus_to_exitcode(status),
                    runtime=round(time.time() - worker.started_at, 3),
                )
        return reaped

    def terminate_all(self) -> None:
        """Ask every tracked worker to stop.

        Only sends SIGTERM; a worker that ignores it keeps running. A worker
        that could not be signalled but still exists is logged as an error.
        """
        for pid in self.pids():
            try:
                os.kill(pid, signal.SIGTERM)
                log.info("worker_terminate_requested", worker_pid=pid)
            except ProcessLookupError:
                self.discard(pid)
            except OSError as e:
                if psutil.pid_exists(pid):
                    log.error("worker_terminate_failed", worker_pid=pid, error=str(e))

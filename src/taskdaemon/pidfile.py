"""Single-instance enforcement through an flock-protected PID file."""

import fcntl
import os
from pathlib import Path

import psutil
import structlog

from taskdaemon.errors import AlreadyRunningError, PidFileError

log = structlog.get_logger()


def process_alive(pid: int) -> bool:
    """Return True if pid names a live, non-zombie process.

    A process we are not allowed to inspect is assumed alive.
    """
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        log.warning("pid_check_access_denied", pid=pid)
        return True


class PidFileGuard:
    """Owns the daemon PID file.

    The file holds the decimal process id of the running supervisor. Reads take
    a shared lock and writes an exclusive one; locks are held only for the
    duration of the read or write.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.owner_pid: int | None = None

    def read(self) -> int | None:
        """Return the recorded pid, or None if the file is absent or not a pid."""
        try:
            f = open(self.path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PidFileError(f"Cannot open pid file {self.path}: {e}") from e

        with f:
            try:
                fcntl.flock(f, fcntl.LOCK_SH)
            except OSError as e:
                raise PidFileError(f"Cannot lock pid file {self.path}: {e}") from e
            try:
                content = f.read().strip()
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)

        if not content:
            return None
        try:
            return int(content)
        except ValueError:
            log.warning("pid_file_invalid", path=str(self.path), reason="not a number")
            return None

    def running_pid(self) -> int | None:
        """Return the recorded pid if that process is still alive."""
        pid = self.read()
        if pid is None or pid <= 0:
            return None
        if not process_alive(pid):
            log.info("pid_file_stale", path=str(self.path), pid=pid)
            return None
        return pid

    def is_running(self) -> bool:
        """True if the PID file names a live process."""
        return self.running_pid() is not None

    def ensure_not_running(self) -> None:
        """Refuse to continue if another live instance owns the PID file.

        The file itself is left untouched either way; write() replaces a stale one.

        Raises:
            AlreadyRunningError: If the recorded process is alive.
        """
        pid = self.running_pid()
        if pid is not None:
            raise AlreadyRunningError(pid, self.path)

    def write(self, pid: int) -> None:
        """Record pid as the owner of this PID file.

        Raises:
            PidFileError: If the file can't be opened, locked or fully written.
        """
        data = str(pid).encode()
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT, 0o644)
        except OSError as e:
            raise PidFileError(f"Cannot open pid file {self.path}: {e}") from e

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
            except OSError as e:
                raise PidFileError(f"Cannot lock pid file {self.path}: {e}") from e
            try:
                os.ftruncate(fd, 0)
                written = os.write(fd, data)
            except OSError as e:
                raise PidFileError(f"Cannot write pid file {self.path}: {e}") from e
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

        if written != len(data):
            raise PidFileError(
                f"Short write to pid file {self.path}: {written} of {len(data)} bytes"
            )

        self.owner_pid = pid
        log.debug("pid_file_written", path=str(self.path), pid=pid)

    def remove(self) -> bool:
        """Delete the PID file. Only the owning process may do this.

        Returns:
            True if this call removed the file.
        """
        if self.owner_pid is None or self.owner_pid != os.getpid():
            log.warning(
                "pid_file_remove_refused",
                path=str(self.path),
                owner_pid=self.owner_pid,
            )
            return False
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        log.debug("pid_file_removed", path=str(self.path))
        return True

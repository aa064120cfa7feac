"""Process-wide error boundary.

Converts warnings and otherwise-uncaught exceptions into error-level log
entries and decides whether the process may continue. Notices and warnings
are logged and execution goes on; fatal errors and uncaught exceptions are
logged with their traceback and the process exits with status 1 on the spot,
with no cleanup beyond the log write.
"""

import os
import sys
import threading
import traceback
import warnings
from collections.abc import Callable
from enum import Enum
from types import TracebackType

import structlog

log = structlog.get_logger()

FATAL_EXIT_STATUS = 1


class Severity(str, Enum):
    NOTICE = "Notice"
    WARNING = "Warning"
    FATAL = "Fatal Error"
    EXCEPTION = "Exception"

    @property
    def fatal(self) -> bool:
        return self in (Severity.FATAL, Severity.EXCEPTION)


# Warning categories that only deserve a notice
_NOTICE_CATEGORIES = (
    DeprecationWarning,
    PendingDeprecationWarning,
    ImportWarning,
    ResourceWarning,
)


def classify_warning(category: type[Warning]) -> Severity:
    """Map a warnings category onto a trap severity."""
    if issubclass(category, _NOTICE_CATEGORIES):
        return Severity.NOTICE
    return Severity.WARNING


class ErrorTrap:
    """Installs the process-wide hooks and routes every event to the log.

    Args:
        exit: Called with the exit status after a fatal event. Defaults to
            os._exit so a forked worker can never unwind back into the
            supervisor's stack.
    """

    def __init__(self, exit: Callable[[int], object] = os._exit):
        self._exit = exit
        self._saved: tuple | None = None

    @property
    def installed(self) -> bool:
        return self._saved is not None

    def install(self) -> None:
        """Take over sys.excepthook, threading.excepthook and warnings.showwarning."""
        if self._saved is not None:
            return
        self._saved = (sys.excepthook, threading.excepthook, warnings.showwarning)
        sys.excepthook = self._excepthook
        threading.excepthook = self._thread_excepthook
        warnings.showwarning = self._showwarning
        # Report every warning once per location, including deprecations
        warnings.simplefilter("default")

    def uninstall(self) -> None:
        """Restore the hooks that were active before install()."""
        if self._saved is None:
            return
        sys.excepthook, threading.excepthook, warnings.showwarning = self._saved
        self._saved = None

    def report(
        self,
        severity: Severity,
        message: str,
        filename: str | None = None,
        lineno: int | None = None,
        trace: str | None = None,
    ) -> None:
        """Log one event and exit if it is fatal."""
        if trace is None:
            # No exception at hand: record where we were called from
            trace = "".join(traceback.format_stack()[:-1])
        log.error(
            "trapped_error",
            severity=severity.value,
            message=message,
            file=filename,
            line=lineno,
            stack=trace,
        )
        if severity.fatal:
            self._exit(FATAL_EXIT_STATUS)

    def notice(self, message: str) -> None:
        self.report(Severity.NOTICE, message)

    def warning(self, message: str) -> None:
        self.report(Severity.WARNING, message)

    def fatal(self, message: str) -> None:
        """Log a fatal error and end the process."""
        self.report(Severity.FATAL, message)

    def handle_exception(
        self,
        exc: BaseException,
        exc_type: type[BaseException] | None = None,
        tb: TracebackType | None = None,
    ) -> None:
        """Log an uncaught exception with its traceback, then end the process."""
        exc_type = exc_type or type(exc)
        tb = tb or exc.__traceback__
        frames = traceback.extract_tb(tb)
        filename, lineno = (frames[-1].filename, frames[-1].lineno) if frames else (None, None)
        trace = "".join(traceback.format_exception(exc_type, exc, tb))
        self.report(
            Severity.EXCEPTION,
            f"{exc_type.__name__}: {exc}",
            filename=filename,
            lineno=lineno,
            trace=trace,
        )

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            assert self._saved is not None
            self._saved[0](exc_type, exc, tb)
            return
        self.handle_exception(exc, exc_type, tb)

    def _thread_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit or args.exc_value is None:
            return
        self.handle_exception(args.exc_value, args.exc_type, args.exc_traceback)

    def _showwarning(
        self,
        message: Warning | str,
        category: type[Warning],
        filename: str,
        lineno: int,
        file: object = None,
        line: str | None = None,
    ) -> None:
        self.report(
            classify_warning(category),
            f"{category.__name__}: {message}",
            filename=filename,
            lineno=lineno,
        )

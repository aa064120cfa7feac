"""Minimal example job.

Greets a fixed list of names, one worker per name, then lets the daemon shut
itself down once everything is done:

    taskdaemon run taskdaemon.hello:HelloWorld --config hello.toml
"""

from typing import Any

import structlog

from taskdaemon.daemon import Daemon

log = structlog.get_logger()

DEFAULT_NAMES = ("world",)


class HelloWorld(Daemon):
    """Says hello to each name in a worker process."""

    names: tuple[str, ...] = DEFAULT_NAMES

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._pending = list(self.names)

    def task(self) -> str | None:
        return self._pending[0] if self._pending else None

    def start(self, task: str) -> None:
        self._pending.remove(task)

    def work(self, task: str) -> bool:
        log.info("hello", name=task)
        return True

    def over(self, task: str) -> None:
        log.info("hello_done", name=task)

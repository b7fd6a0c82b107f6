"""Console shim handed to sandboxed code.

Every call is mirrored to the host's structured log and recorded, in call order,
for the run's result.
"""

from __future__ import annotations

from typing import Any

import structlog

from .models import LogEntry, LogMode

logger = structlog.get_logger(__name__)


class LogInterceptor:
    """Collects the console output of one sandboxed run."""

    def __init__(self, run_id: str | None = None):
        self._entries: list[LogEntry] = []
        self._logger = logger.bind(run_id=run_id) if run_id else logger
        self.console = SandboxConsole(self)

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def log(self, *args: Any) -> None:
        self._record(LogMode.LOG, args)

    def error(self, *args: Any) -> None:
        self._record(LogMode.ERROR, args)

    # warn has no channel of its own
    warn = error

    def print(self, *objects: Any, sep: Any = None, end: Any = None, file: Any = None, flush: bool = False) -> None:
        """Stand-in for the `print` builtin; output goes to the log channel."""
        self._record(LogMode.LOG, objects)

    def _record(self, mode: LogMode, args: tuple[Any, ...]) -> None:
        rendered = tuple(str(arg) for arg in args)
        if mode is LogMode.ERROR:
            self._logger.error("Sandbox console", mode=mode.value, args=list(rendered))
        else:
            self._logger.info("Sandbox console", mode=mode.value, args=list(rendered))
        self._entries.append(LogEntry(mode=mode, args=rendered))


class SandboxConsole:
    """The only view of a LogInterceptor that sandboxed code receives."""

    __slots__ = ("log", "error", "warn")

    def __init__(self, interceptor: LogInterceptor):
        self.log = interceptor.log
        self.error = interceptor.error
        self.warn = interceptor.error

    def __repr__(self) -> str:
        return "<console>"

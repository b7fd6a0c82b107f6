"""Errors surfaced to callers of the execution pipeline.

Only setup-level problems are raised: anything a snippet raises while running is
demoted to an entry on the run's error log channel instead.
"""

from __future__ import annotations


class PlaygroundError(Exception):
    code = "playground_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidInput(PlaygroundError):
    code = "invalid_input"


class UnsupportedEngine(PlaygroundError):
    code = "unsupported_engine"


class ForbiddenAccess(PlaygroundError):
    code = "forbidden_access"


class ExecutionTimeout(PlaygroundError):
    code = "execution_timeout"


class BrowserLaunchError(PlaygroundError):
    code = "browser_launch_failed"

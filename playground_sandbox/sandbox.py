from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog

from .console import LogInterceptor
from .errors import ExecutionTimeout, ForbiddenAccess, InvalidInput, UnsupportedEngine
from .restricted import (
    SNIPPET_FUNCTION,
    Deadline,
    DeadlineExceeded,
    build_globals,
    compile_snippet,
    make_sleep,
    strip_boilerplate,
)
from .scope import RunScope
from .settings import SUPPORTED_ENGINES, SandboxSettings
from .video import VideoCapture
from .watcher import ArtifactWatcher

logger = structlog.get_logger(__name__)


def validate_request(code: str, engine: str, engines: tuple[str, ...] = SUPPORTED_ENGINES) -> None:
    """Reject a request before anything is allocated for it."""
    if not code or not str(code).strip():
        raise InvalidInput("No code specified")
    if engine not in SUPPORTED_ENGINES or engine not in engines:
        raise UnsupportedEngine("No valid browser specified")
    # Literal check on the raw submission; the scoped handle also guards goto() at runtime.
    if "file:" in code:
        raise ForbiddenAccess("It is not allowed to access local files")


class ExecutionSandbox:
    """Runs one snippet against a borrowed browser and collects the files it wrote."""

    def __init__(self, settings: SandboxSettings):
        self.settings = settings

    async def run(
        self,
        code: str,
        engine: str,
        *,
        browser: Any,
        scope: RunScope,
        interceptor: LogInterceptor,
    ) -> list[Path]:
        validate_request(code, engine, self.settings.engines)
        program = compile_snippet(strip_boilerplate(code))

        timeout = float(self.settings.execution_timeout_seconds)
        deadline = Deadline(timeout)
        watchers: list[ArtifactWatcher] = []

        def watch_files() -> None:
            if not watchers:
                watchers.append(
                    scope.watch(
                        settle_seconds=self.settings.watcher_settle_seconds,
                        force_polling=self.settings.watch_force_polling,
                    )
                )

        capabilities = {
            "browser": scope.expose(browser),
            "VideoCapture": VideoCapture(
                scope, engine, ffmpeg_path=self.settings.ffmpeg_path, fps=self.settings.video_fps
            ),
            "console": interceptor.console,
            "sleep": make_sleep(deadline),
            "watch_files": watch_files,
        }
        namespace = build_globals(capabilities, deadline=deadline, print_fn=interceptor.print)
        # Only defines the coroutine function; no snippet code runs here.
        exec(program, namespace)
        snippet = namespace[SNIPPET_FUNCTION]

        async def bounded() -> Exception | None:
            failure = None
            try:
                await snippet()
            except Exception as exc:
                failure = exc
            if deadline.expired:
                # The snippet swallowed the deadline signal and kept going.
                raise DeadlineExceeded("finished past its deadline")
            return failure

        watch_files()
        watcher = watchers[0]
        # Give the watcher task a chance to arm before the snippet writes anything.
        await asyncio.sleep(0)
        try:
            # Only the snippet itself counts against the timeout; finalizing does not.
            failure = await asyncio.wait_for(bounded(), timeout=timeout)
        except (asyncio.TimeoutError, DeadlineExceeded):
            logger.warning("Snippet timed out", run_id=scope.run_id, timeout_seconds=timeout)
            raise ExecutionTimeout(f"Execution exceeded {timeout:g} seconds") from None

        if failure is None:
            try:
                await scope.stop_recordings()
            except Exception as exc:
                failure = exc
        if failure is not None:
            interceptor.error("Runtime error", f"{type(failure).__name__}: {failure}")
            await watcher.close()
            return []

        candidates = await watcher.stop()
        logger.info("Snippet finished", run_id=scope.run_id, candidates=len(candidates))
        return candidates

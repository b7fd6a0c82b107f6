from __future__ import annotations

import time

import structlog

from .browsers import BrowserPool
from .console import LogInterceptor
from .errors import PlaygroundError
from .models import ExecutionResult
from .publisher import ArtifactPublisher
from .sandbox import ExecutionSandbox, validate_request
from .scope import RunScope
from .settings import SandboxSettings

logger = structlog.get_logger(__name__)


class ExecutionCoordinator:
    """Single entry point for running an untrusted snippet.

    Each call gets a fresh run directory and log interceptor; the browser is
    borrowed from the shared pool. Concurrent calls are independent tasks.
    """

    def __init__(
        self,
        settings: SandboxSettings,
        pool: BrowserPool,
        *,
        sandbox: ExecutionSandbox | None = None,
        publisher: ArtifactPublisher | None = None,
    ):
        self.settings = settings
        self.pool = pool
        self.sandbox = sandbox or ExecutionSandbox(settings)
        self.publisher = publisher or ArtifactPublisher.from_settings(settings)

    async def run_untrusted_code(self, code: str, engine: str) -> ExecutionResult:
        validate_request(code, engine, self.settings.engines)
        browser = self.pool.get(engine)

        started = time.perf_counter()
        scope = RunScope.create(self.settings.workspace_dir)
        interceptor = LogInterceptor(run_id=scope.run_id)
        log = logger.bind(run_id=scope.run_id, engine=engine)
        log.info("Run started")
        try:
            candidates = await self.sandbox.run(
                code,
                engine,
                browser=browser,
                scope=scope,
                interceptor=interceptor,
            )
            files = self.publisher.publish(candidates, base_dir=scope.root)
        except PlaygroundError as exc:
            log.warning("Run rejected", code=exc.code, error=exc.message)
            raise
        finally:
            await scope.close(keep_files=self.settings.keep_workdirs)

        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)
        log.info("Run finished", files=len(files), logs=len(interceptor.entries), elapsed_ms=elapsed_ms)
        return ExecutionResult(files=tuple(files), logs=tuple(interceptor.entries))

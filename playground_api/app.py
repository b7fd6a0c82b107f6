from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from playground_api.schema import ApiError, ErrorResponse, HealthResponse, RunRequest, RunResponse
from playground_sandbox.browsers import BrowserPool
from playground_sandbox.coordinator import ExecutionCoordinator
from playground_sandbox.errors import PlaygroundError
from playground_sandbox.publisher import ArtifactPublisher
from playground_sandbox.settings import SandboxSettings

LOGGER = logging.getLogger("playground-api")

ERROR_STATUS = {
    "invalid_input": 400,
    "unsupported_engine": 400,
    "forbidden_access": 403,
    "execution_timeout": 504,
    "browser_launch_failed": 503,
}

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in sorted(set(ERROR_STATUS.values()))
}


def create_app(settings: SandboxSettings | None = None, *, pool: BrowserPool | None = None) -> FastAPI:
    settings = settings or SandboxSettings()
    pool = pool or BrowserPool.from_settings(settings)
    publisher = ArtifactPublisher.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        Path(settings.workspace_dir).mkdir(parents=True, exist_ok=True)
        # A launch failure propagates and the server refuses to start.
        await pool.start()
        purged = publisher.purge_stale()
        if purged:
            LOGGER.info("Purged expired artifacts count=%s", purged)
        try:
            yield
        finally:
            await pool.stop()

    app = FastAPI(title="Playwright Playground", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.pool = pool
    app.state.publisher = publisher
    app.state.coordinator = ExecutionCoordinator(settings, pool, publisher=publisher)

    prefix = settings.public_url_prefix
    if prefix:
        public_dir = Path(settings.public_dir)
        public_dir.mkdir(parents=True, exist_ok=True)
        app.mount(f"/{prefix}", StaticFiles(directory=str(public_dir)), name="public")

    @app.exception_handler(PlaygroundError)
    async def _playground_error(req: Request, exc: PlaygroundError) -> JSONResponse:
        status = ERROR_STATUS.get(exc.code, 500)
        LOGGER.info("Rejected run code=%s status=%s", exc.code, status)
        body = ErrorResponse(error=ApiError(code=exc.code, message=exc.message))
        return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))

    @app.get("/api/v1/health", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        return {"ok": True, "ts": time.time(), "engines": list(pool.engines), "browsers_ready": pool.started}

    @app.post("/api/v1/run", response_model=RunResponse, responses=_ERROR_RESPONSES)
    async def run(body: RunRequest) -> dict[str, Any]:
        coordinator: ExecutionCoordinator = app.state.coordinator
        result = await coordinator.run_untrusted_code(body.code, body.engine)
        return result.to_dict()

    return app

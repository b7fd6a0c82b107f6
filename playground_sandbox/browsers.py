from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, Awaitable, Callable

import structlog
from playwright.async_api import Browser, async_playwright

from .errors import BrowserLaunchError, UnsupportedEngine
from .settings import SUPPORTED_ENGINES, SandboxSettings

logger = structlog.get_logger(__name__)


_CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-sync",
    "--metrics-recording-only",
    "--no-first-run",
    "--no-default-browser-check",
]


def find_chromium_executable(explicit: str = "") -> str | None:
    """Prefer an explicitly configured Chromium; None means Playwright's bundled build."""
    env_path = explicit or os.getenv("CHROMIUM_PATH")
    if env_path and Path(env_path).exists():
        return env_path
    return None


def chromium_args() -> list[str]:
    args = list(_CHROMIUM_ARGS)
    # Avoid renderer crashes when /dev/shm is tiny.
    try:
        st = os.statvfs("/dev/shm")
        shm_bytes = int(st.f_frsize) * int(st.f_blocks)
    except Exception:
        shm_bytes = 0
    if shm_bytes and shm_bytes < (512 * 1024 * 1024):
        args.insert(1, "--disable-dev-shm-usage")
    return args


async def _neutralized_close(*args: Any, **kwargs: Any) -> None:
    return None


class BrowserPool:
    """One long-lived browser per engine family, shared by every run.

    Browsers handed out by `get()` cannot be shut down by their borrowers: their
    `close` is a no-op. The pool keeps the real closers for `stop()`.
    """

    def __init__(
        self,
        engines: tuple[str, ...] = SUPPORTED_ENGINES,
        *,
        headless: bool = True,
        chromium_path: str = "",
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        unknown = [e for e in engines if e not in SUPPORTED_ENGINES]
        if unknown:
            raise UnsupportedEngine(f"Unsupported browser engine(s): {', '.join(unknown)}")
        self.engines = tuple(engines)
        self.headless = bool(headless)
        self.chromium_path = chromium_path
        self._playwright_factory = playwright_factory
        self._playwright: Any = None
        self._browsers: dict[str, Browser] = {}
        self._closers: dict[str, Callable[..., Awaitable[Any]]] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: SandboxSettings) -> "BrowserPool":
        return cls(settings.engines, headless=settings.headless, chromium_path=settings.chromium_path)

    @property
    def started(self) -> bool:
        return bool(self._browsers)

    async def start(self) -> None:
        async with self._lock:
            if self._browsers:
                return
            self._playwright = await self._playwright_factory().start()
            launched = await asyncio.gather(
                *(self._launch(engine) for engine in self.engines), return_exceptions=True
            )
            failures = [r for r in launched if isinstance(r, BaseException)]
            if failures:
                for browser in launched:
                    if not isinstance(browser, BaseException):
                        await browser.close()
                await self._stop_playwright()
                raise BrowserLaunchError(f"Could not launch browsers: {failures[0]}") from failures[0]

            for engine, browser in zip(self.engines, launched):
                # Borrowers must not be able to take the shared browser down.
                self._closers[engine] = browser.close
                browser.close = _neutralized_close
                self._browsers[engine] = browser
            logger.info("Browser pool started", engines=list(self.engines))

    async def _launch(self, engine: str) -> Browser:
        browser_type = getattr(self._playwright, engine)
        kwargs: dict[str, Any] = {"headless": self.headless}
        if engine == "chromium":
            kwargs["args"] = chromium_args()
            executable = find_chromium_executable(self.chromium_path)
            if executable:
                kwargs["executable_path"] = executable
        browser = await browser_type.launch(**kwargs)
        logger.info("Launched browser", engine=engine, version=getattr(browser, "version", None))
        return browser

    def get(self, engine: str) -> Browser:
        if engine not in SUPPORTED_ENGINES or engine not in self.engines:
            raise UnsupportedEngine("No valid browser specified")
        browser = self._browsers.get(engine)
        if browser is None:
            raise RuntimeError("browser pool is not started")
        return browser

    async def stop(self) -> None:
        async with self._lock:
            for engine, close in self._closers.items():
                try:
                    await close()
                except Exception as exc:
                    logger.warning("Failed to close browser", engine=engine, error=str(exc))
            self._closers.clear()
            self._browsers.clear()
            await self._stop_playwright()
            logger.info("Browser pool stopped")

    async def _stop_playwright(self) -> None:
        if self._playwright is None:
            return
        try:
            await self._playwright.stop()
        finally:
            self._playwright = None

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from playground_sandbox.browsers import BrowserPool
from playground_sandbox.settings import SandboxSettings

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
PDF_BYTES = b"%PDF-1.4\n%fake\n"


class FakePage:
    def __init__(self, context: "FakeContext"):
        self._context = context
        self.url = "about:blank"
        self.closed = False
        self.listeners: dict[str, list[Callable[..., Any]]] = {}

    @property
    def context(self) -> "FakeContext":
        return self._context

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.url = url
        return None

    async def title(self) -> str:
        return "Fake Page"

    async def screenshot(self, *, path: str | None = None, full_page: bool = False) -> bytes:
        if path:
            Path(path).write_bytes(PNG_BYTES)
        return PNG_BYTES

    async def pdf(self, *, path: str | None = None) -> bytes:
        if path:
            Path(path).write_bytes(PDF_BYTES)
        return PDF_BYTES

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable[..., Any]) -> None:
        self.listeners.get(event, []).remove(handler)

    def emit(self, event: str, *args: Any) -> list[Any]:
        return [handler(*args) for handler in list(self.listeners.get(event, []))]

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, browser: "FakeBrowser", options: dict[str, Any] | None = None):
        self.browser = browser
        self.options = options or {}
        self.pages: list[FakePage] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def new_cdp_session(self, page: FakePage) -> Any:
        raise AssertionError("CDP sessions are not available in fakes")

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, engine: str, launch_kwargs: dict[str, Any]):
        self.engine = engine
        self.launch_kwargs = launch_kwargs
        self.version = "0.0-fake"
        self.browser_type = object()
        self.created: list[FakeContext] = []
        self.real_close_calls = 0

    @property
    def contexts(self) -> list[FakeContext]:
        return list(self.created)

    @property
    def pages(self) -> list[FakePage]:
        return [page for ctx in self.created for page in ctx.pages]

    async def new_context(
        self,
        *,
        base_url: str | None = None,
        storage_state: Any = None,
        client_certificates: list[dict[str, Any]] | None = None,
        record_video_dir: str | None = None,
    ) -> FakeContext:
        options = {
            "base_url": base_url,
            "storage_state": storage_state,
            "client_certificates": client_certificates,
            "record_video_dir": record_video_dir,
        }
        ctx = FakeContext(self, options)
        self.created.append(ctx)
        return ctx

    async def new_page(self, *, storage_state: Any = None, base_url: str | None = None) -> FakePage:
        ctx = await self.new_context(storage_state=storage_state, base_url=base_url)
        return await ctx.new_page()

    async def close(self) -> None:
        self.real_close_calls += 1


class FakeBrowserType:
    def __init__(self, engine: str):
        self.engine = engine
        self.fail = False
        self.launched: list[FakeBrowser] = []

    async def launch(self, **kwargs: Any) -> FakeBrowser:
        if self.fail:
            raise RuntimeError(f"{self.engine} executable missing")
        browser = FakeBrowser(self.engine, kwargs)
        self.launched.append(browser)
        return browser


class FakePlaywright:
    def __init__(self) -> None:
        self.chromium = FakeBrowserType("chromium")
        self.firefox = FakeBrowserType("firefox")
        self.webkit = FakeBrowserType("webkit")
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True


class FakePlaywrightManager:
    def __init__(self, playwright: FakePlaywright):
        self.playwright = playwright
        self.starts = 0

    def __call__(self) -> "FakePlaywrightManager":
        return self

    async def start(self) -> FakePlaywright:
        self.starts += 1
        return self.playwright


@pytest.fixture
def settings(tmp_path: Path) -> SandboxSettings:
    return SandboxSettings(
        engines=("chromium", "firefox"),
        execution_timeout_seconds=5.0,
        watcher_settle_seconds=0.05,
        watch_force_polling=False,
        artifact_retention_seconds=60.0,
        public_dir=str(tmp_path / "public"),
        public_url_prefix="public",
        workspace_dir=str(tmp_path / "workspace"),
        keep_workdirs=False,
        headless=True,
        chromium_path="",
        ffmpeg_path="ffmpeg",
        video_fps=10,
    )


@pytest.fixture
def fake_playwright() -> FakePlaywright:
    return FakePlaywright()


@pytest.fixture
def playwright_manager(fake_playwright: FakePlaywright) -> FakePlaywrightManager:
    return FakePlaywrightManager(fake_playwright)


@pytest.fixture
def pool(settings: SandboxSettings, playwright_manager: FakePlaywrightManager) -> BrowserPool:
    return BrowserPool(settings.engines, headless=True, playwright_factory=playwright_manager)

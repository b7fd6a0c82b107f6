from __future__ import annotations

import dataclasses
import os
import shutil
from pathlib import Path

import pytest

from playground_sandbox.browsers import BrowserPool
from playground_sandbox.coordinator import ExecutionCoordinator
from playground_sandbox.settings import SandboxSettings


pytestmark = pytest.mark.live


if os.getenv("PLAYGROUND_LIVE") != "1":
    pytest.skip("Set PLAYGROUND_LIVE=1 to run snippets against real browsers", allow_module_level=True)


def _settings(tmp_path: Path, engine: str) -> SandboxSettings:
    return dataclasses.replace(
        SandboxSettings(),
        engines=(engine,),
        public_dir=str(tmp_path / "public"),
        workspace_dir=str(tmp_path / "workspace"),
        execution_timeout_seconds=30.0,
    )


@pytest.mark.asyncio
async def test_chromium_screenshot_and_pdf(tmp_path: Path) -> None:
    settings = _settings(tmp_path, "chromium")
    pool = BrowserPool.from_settings(settings)
    await pool.start()
    try:
        code = (
            "page = await browser.new_page()\n"
            "await page.set_content('<h1>Hello playground</h1>')\n"
            "console.log(await page.inner_text('h1'))\n"
            "await page.screenshot(path='hello.png')\n"
            "await page.pdf(path='hello.pdf')\n"
        )
        result = await ExecutionCoordinator(settings, pool).run_untrusted_code(code, "chromium")
    finally:
        await pool.stop()

    assert [e.args for e in result.logs] == [("Hello playground",)]
    assert sorted(f.mime_type for f in result.files) == ["application/pdf", "image/png"]
    for artifact in result.files:
        assert (tmp_path / artifact.public_url).stat().st_size > 0


@pytest.mark.asyncio
async def test_chromium_video_capture(tmp_path: Path) -> None:
    if not shutil.which("ffmpeg"):
        pytest.skip("ffmpeg not installed")
    settings = _settings(tmp_path, "chromium")
    pool = BrowserPool.from_settings(settings)
    await pool.start()
    try:
        code = (
            "page = await browser.new_page()\n"
            "recording = await VideoCapture.start(page, save_path='clip.mp4')\n"
            "for i in range(5):\n"
            "    await page.set_content(f'<h1>frame {i}</h1>')\n"
            "    await sleep(0.2)\n"
            "await recording.stop()\n"
        )
        result = await ExecutionCoordinator(settings, pool).run_untrusted_code(code, "chromium")
    finally:
        await pool.stop()

    assert [f.filename for f in result.files] == ["clip.mp4"], result.logs
    assert result.files[0].mime_type == "video/mp4"


@pytest.mark.asyncio
async def test_firefox_screenshot(tmp_path: Path) -> None:
    settings = _settings(tmp_path, "firefox")
    pool = BrowserPool.from_settings(settings)
    await pool.start()
    try:
        code = "page = await browser.new_page()\nawait page.set_content('<p>fx</p>')\nawait page.screenshot(path='fx.png')\n"
        result = await ExecutionCoordinator(settings, pool).run_untrusted_code(code, "firefox")
    finally:
        await pool.stop()

    assert [f.filename for f in result.files] == ["fx.png"]

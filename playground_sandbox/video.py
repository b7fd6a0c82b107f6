"""Page recording for snippets.

Chromium streams JPEG frames over a CDP screencast; they are piped into ffmpeg,
which encodes an H.264 MP4. Frames are repeated so the video follows the
wall-clock timestamps Chromium attaches to them rather than the (irregular)
arrival rate.
"""

from __future__ import annotations

import asyncio
import base64
import shutil
import time
from typing import Any

import structlog
from playwright.async_api import Error as PlaywrightError

from .errors import UnsupportedEngine
from .scope import RunScope

logger = structlog.get_logger(__name__)


class VideoCapture:
    """Video capability bound to one run and the browser it was given."""

    def __init__(self, scope: RunScope, engine: str, *, ffmpeg_path: str = "ffmpeg", fps: int = 25):
        self._scope = scope
        self._engine = engine
        self._ffmpeg_path = ffmpeg_path
        self._fps = max(1, int(fps))

    def __repr__(self) -> str:
        return "<VideoCapture>"

    async def start(self, page: Any, save_path: str = "video.mp4") -> "ScreencastRecording":
        if self._engine != "chromium":
            raise UnsupportedEngine("Video capture is only available for chromium")
        ffmpeg = shutil.which(self._ffmpeg_path)
        if not ffmpeg:
            raise RuntimeError("ffmpeg is not available on this host")

        target = self._scope.resolve(save_path)
        raw_page = self._scope.unwrap(page)
        process = await asyncio.create_subprocess_exec(
            ffmpeg,
            "-y",
            "-loglevel",
            "error",
            "-f",
            "image2pipe",
            "-c:v",
            "mjpeg",
            "-r",
            str(self._fps),
            "-i",
            "-",
            "-an",
            "-c:v",
            "libx264",
            "-preset",
            "ultrafast",
            "-pix_fmt",
            "yuv420p",
            "-vf",
            "pad=ceil(iw/2)*2:ceil(ih/2)*2",
            target,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            session = await raw_page.context.new_cdp_session(raw_page)
            recording = ScreencastRecording(session, process, fps=self._fps, path=target)
            await recording.begin()
        except Exception:
            process.kill()
            await process.wait()
            raise
        self._scope.add_recording(recording)
        logger.info("Video capture started", run_id=self._scope.run_id)
        return recording


class ScreencastRecording:
    def __init__(self, session: Any, process: asyncio.subprocess.Process, *, fps: int, path: str):
        self._session = session
        self._process = process
        self._fps = fps
        self._path = path
        self._lock = asyncio.Lock()
        self._last_frame: bytes | None = None
        self._last_ts: float | None = None
        self.stopped = False

    def __repr__(self) -> str:
        return "<ScreencastRecording>"

    async def begin(self) -> None:
        self._session.on("Page.screencastFrame", self._on_frame)
        await self._session.send("Page.startScreencast", {"format": "jpeg", "quality": 80, "everyNthFrame": 1})

    async def _on_frame(self, params: dict[str, Any]) -> None:
        if self.stopped:
            return
        try:
            await self._session.send("Page.screencastFrameAck", {"sessionId": params.get("sessionId")})
        except PlaywrightError as exc:
            logger.debug("Screencast ack failed", error=str(exc))
        frame = base64.b64decode(params.get("data") or "")
        ts = (params.get("metadata") or {}).get("timestamp") or time.time()
        async with self._lock:
            await self._write(frame, float(ts))

    async def _write(self, frame: bytes, ts: float) -> None:
        stdin = self._process.stdin
        if self._last_frame is not None and self._last_ts is not None and stdin is not None:
            repeat = max(1, round((ts - self._last_ts) * self._fps))
            for _ in range(repeat):
                stdin.write(self._last_frame)
            await stdin.drain()
        self._last_frame = frame
        self._last_ts = ts

    async def stop(self) -> None:
        """Finish the screencast and wait for ffmpeg to write the file."""
        if self.stopped:
            return
        self.stopped = True
        try:
            await self._session.send("Page.stopScreencast")
            await self._session.detach()
        except PlaywrightError as exc:
            # The page may already be gone; the frames received so far still count.
            logger.debug("Screencast teardown failed", error=str(exc))

        async with self._lock:
            stdin = self._process.stdin
            if stdin is not None and self._last_frame is not None:
                stdin.write(self._last_frame)
                await stdin.drain()
        # communicate() closes stdin, which ends the ffmpeg input stream.
        try:
            _, err = await asyncio.wait_for(self._process.communicate(), timeout=30.0)
        except asyncio.TimeoutError:
            self._process.kill()
            raise RuntimeError("ffmpeg did not finish encoding in time") from None
        if self._process.returncode != 0:
            message = (err or b"").decode("utf-8", errors="replace").strip()[:500]
            raise RuntimeError(f"ffmpeg exited with code {self._process.returncode}: {message}")

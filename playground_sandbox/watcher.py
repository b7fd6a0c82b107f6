from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
from watchfiles import Change, DefaultFilter, awatch

from .settings import ALLOWED_EXTENSIONS

logger = structlog.get_logger(__name__)


class ArtifactFilter(DefaultFilter):
    """Accept newly added files with an allowed extension outside vendor dirs."""

    def __init__(self, extensions: tuple[str, ...] = ALLOWED_EXTENSIONS):
        super().__init__()
        self.extensions = tuple(extensions)

    def __call__(self, change: Change, path: str) -> bool:
        if change != Change.added:
            return False
        if not path.endswith(self.extensions):
            return False
        return super().__call__(change, path)


class ArtifactWatcher:
    """Observes one directory for artifact files created while a snippet runs.

    Paths are reported in the order they were observed. Files the OS notifier did
    not report (e.g. written before the watch was armed) are picked up by a
    directory scan on `stop()` and appended in modification-time order.
    """

    def __init__(
        self,
        root: Path,
        *,
        settle_seconds: float = 0.15,
        extensions: tuple[str, ...] = ALLOWED_EXTENSIONS,
        force_polling: bool = False,
    ):
        self.root = Path(root)
        self.settle_seconds = float(settle_seconds)
        self.extensions = tuple(extensions)
        self.force_polling = bool(force_polling)
        self._filter = ArtifactFilter(self.extensions)
        self._found: list[Path] = []
        self._seen: set[Path] = set()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._closed = False

    def start(self) -> "ArtifactWatcher":
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._consume())
        return self

    async def stop(self) -> list[Path]:
        """Let pending writes settle, stop watching and return the created paths."""
        await asyncio.sleep(self.settle_seconds)
        await self.close()
        self._reconcile()
        return list(self._found)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=2.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            logger.warning("Artifact watcher did not stop in time", root=str(self.root))
        except Exception as exc:
            # The directory scan in stop() still finds the files.
            logger.warning("Artifact watcher failed", root=str(self.root), error=str(exc))

    async def _consume(self) -> None:
        async for changes in awatch(
            self.root,
            watch_filter=self._filter,
            stop_event=self._stop_event,
            recursive=False,
            step=50,
            force_polling=self.force_polling,
        ):
            # A batch is a set; order its members by creation time.
            for _change, raw in sorted(changes, key=lambda c: _sort_key(Path(c[1]))):
                self._record(Path(raw))

    def _record(self, path: Path) -> None:
        key = path.resolve()
        if key in self._seen:
            return
        self._seen.add(key)
        self._found.append(path)

    def _reconcile(self) -> None:
        try:
            entries = [p for p in self.root.iterdir() if p.is_file() and p.name.endswith(self.extensions)]
        except FileNotFoundError:
            return
        for path in sorted(entries, key=_sort_key):
            if self._filter(Change.added, str(path)):
                self._record(path)


def _sort_key(path: Path) -> tuple[int, str]:
    try:
        return (path.stat().st_mtime_ns, path.name)
    except OSError:
        return (0, path.name)

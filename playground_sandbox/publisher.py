from __future__ import annotations

import asyncio
import mimetypes
import os
import shutil
import time
import uuid
from pathlib import Path
from typing import Iterable

import structlog

from .models import FileArtifact
from .settings import ALLOWED_EXTENSIONS, SandboxSettings

logger = structlog.get_logger(__name__)


class ArtifactPublisher:
    """Moves qualifying run outputs into the public directory for a limited time."""

    def __init__(
        self,
        public_dir: str | Path,
        *,
        url_prefix: str = "public",
        retention_seconds: float = 60.0,
        extensions: tuple[str, ...] = ALLOWED_EXTENSIONS,
    ):
        self.public_dir = Path(public_dir)
        self.url_prefix = str(url_prefix or "").strip("/")
        self.retention_seconds = float(retention_seconds)
        self.extensions = tuple(extensions)

    @classmethod
    def from_settings(cls, settings: SandboxSettings) -> "ArtifactPublisher":
        return cls(
            settings.public_dir,
            url_prefix=settings.public_url_prefix,
            retention_seconds=settings.artifact_retention_seconds,
        )

    def public_url(self, name: str) -> str:
        return f"{self.url_prefix}/{name}" if self.url_prefix else name

    def publish(self, candidates: Iterable[str | Path], *, base_dir: Path | None = None) -> list[FileArtifact]:
        """Publish candidate files in order; other extensions are skipped silently.

        Must be called from a running event loop: deletion is scheduled on it.
        """
        artifacts: list[FileArtifact] = []
        for candidate in candidates:
            source = Path(candidate)
            extension = source.suffix
            if extension not in self.extensions:
                continue
            if not source.is_file():
                logger.warning("Candidate file vanished before publishing", path=str(source))
                continue

            filename = _display_name(source, base_dir)
            new_name = f"{uuid.uuid4()}{extension}"
            self.public_dir.mkdir(parents=True, exist_ok=True)
            target = self.public_dir / new_name
            shutil.move(str(source), str(target))
            # Expiry is measured from publication, not from when the snippet wrote it.
            os.utime(target)
            self._schedule_removal(target, self.retention_seconds)

            artifact = FileArtifact(
                public_url=self.public_url(new_name),
                filename=filename,
                mime_type=mimetypes.guess_type(new_name)[0] or "",
            )
            artifacts.append(artifact)
            logger.info("Published artifact", filename=filename, public_url=artifact.public_url)
        return artifacts

    def purge_stale(self) -> int:
        """Handle artifacts left behind by a previous process.

        Files past their retention window are deleted now; younger ones get a
        deletion timer for the time they have left. Returns the number deleted.
        """
        if not self.public_dir.is_dir():
            return 0
        removed = 0
        now = time.time()
        for path in self.public_dir.iterdir():
            if not path.is_file() or path.suffix not in self.extensions:
                continue
            try:
                age = now - path.stat().st_mtime
            except FileNotFoundError:
                continue
            if age >= self.retention_seconds:
                self._remove(path)
                removed += 1
            else:
                self._schedule_removal(path, self.retention_seconds - age)
        return removed

    def _schedule_removal(self, path: Path, delay: float) -> None:
        asyncio.get_running_loop().call_later(max(0.0, delay), self._remove, path)

    def _remove(self, path: Path) -> None:
        logger.info("Removing expired artifact", path=str(path))
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Expired artifact already gone", path=str(path))


def _display_name(path: Path, base_dir: Path | None) -> str:
    if base_dir is not None:
        try:
            return path.resolve().relative_to(Path(base_dir).resolve()).as_posix()
        except ValueError:
            pass
    return path.name

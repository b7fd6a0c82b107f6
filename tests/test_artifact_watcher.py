from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from watchfiles import Change

from playground_sandbox.watcher import ArtifactFilter, ArtifactWatcher


def test_filter_accepts_only_added_artifacts() -> None:
    f = ArtifactFilter()
    assert f(Change.added, "/run/out.png") is True
    assert f(Change.added, "/run/out.pdf") is True
    assert f(Change.added, "/run/video.mp4") is True
    assert f(Change.added, "/run/out.txt") is False
    assert f(Change.modified, "/run/out.png") is False
    assert f(Change.added, "/run/node_modules/out.png") is False


@pytest.mark.asyncio
async def test_watcher_reports_created_artifacts_in_order(tmp_path: Path) -> None:
    watcher = ArtifactWatcher(tmp_path, settle_seconds=0.05).start()
    await asyncio.sleep(0.1)

    (tmp_path / "first.png").write_bytes(b"1")
    await asyncio.sleep(0.05)
    (tmp_path / "notes.txt").write_text("ignored")
    (tmp_path / "second.pdf").write_bytes(b"2")

    found = await watcher.stop()
    assert [p.name for p in found] == ["first.png", "second.pdf"]


@pytest.mark.asyncio
async def test_watcher_with_no_matches_returns_empty_list(tmp_path: Path) -> None:
    watcher = ArtifactWatcher(tmp_path, settle_seconds=0.01).start()
    (tmp_path / "out.txt").write_text("x")
    assert await watcher.stop() == []


@pytest.mark.asyncio
async def test_watcher_ignores_subdirectories(tmp_path: Path) -> None:
    watcher = ArtifactWatcher(tmp_path, settle_seconds=0.05).start()
    nested = tmp_path / "nested"
    nested.mkdir()
    (nested / "deep.png").write_bytes(b"x")
    (tmp_path / "top.png").write_bytes(b"x")

    found = await watcher.stop()
    assert [p.name for p in found] == ["top.png"]


@pytest.mark.asyncio
async def test_close_is_idempotent_and_stop_still_scans(tmp_path: Path) -> None:
    watcher = ArtifactWatcher(tmp_path, settle_seconds=0.0).start()
    await watcher.close()
    await watcher.close()
    (tmp_path / "late.png").write_bytes(b"x")
    found = await watcher.stop()
    assert [p.name for p in found] == ["late.png"]

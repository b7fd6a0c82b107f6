from __future__ import annotations

import os
from dataclasses import dataclass, field

SUPPORTED_ENGINES: tuple[str, ...] = ("chromium", "firefox", "webkit")
ALLOWED_EXTENSIONS: tuple[str, ...] = (".png", ".pdf", ".mp4")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    s = str(raw).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        value = float(str(raw).strip())
    except Exception:
        return float(default)
    return value if value > 0 else float(default)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _env_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return ()
    out: list[str] = []
    for part in str(raw).split(","):
        item = part.strip().lower()
        if item:
            out.append(item)
    return tuple(out)


def _engines_default() -> tuple[str, ...]:
    # The set is closed: unknown names in the env are dropped, never added.
    configured = tuple(e for e in _env_csv("PLAYGROUND_ENGINES") if e in SUPPORTED_ENGINES)
    return configured or SUPPORTED_ENGINES


@dataclass(frozen=True)
class SandboxSettings:
    engines: tuple[str, ...] = field(default_factory=_engines_default)

    # Wall-clock bound for one sandboxed run.
    execution_timeout_seconds: float = field(
        default_factory=lambda: _env_float("PLAYGROUND_EXECUTION_TIMEOUT_SECONDS", 30.0)
    )
    # Grace period for in-flight file writes before the watcher is stopped.
    watcher_settle_seconds: float = field(
        default_factory=lambda: _env_float("PLAYGROUND_WATCHER_SETTLE_SECONDS", 0.15)
    )
    watch_force_polling: bool = field(default_factory=lambda: _env_bool("PLAYGROUND_WATCH_FORCE_POLLING", False))
    # Published artifacts are deleted this long after publication, fetched or not.
    artifact_retention_seconds: float = field(
        default_factory=lambda: _env_float("PLAYGROUND_ARTIFACT_RETENTION_SECONDS", 60.0)
    )

    public_dir: str = field(default_factory=lambda: _env_str("PLAYGROUND_PUBLIC_DIR", "public"))
    public_url_prefix: str = field(default_factory=lambda: _env_str("PLAYGROUND_PUBLIC_URL_PREFIX", "public").strip("/"))
    # Each run gets <workspace_dir>/<run_id> as its working directory.
    workspace_dir: str = field(default_factory=lambda: _env_str("PLAYGROUND_WORKSPACE_DIR", "workspace"))
    keep_workdirs: bool = field(default_factory=lambda: _env_bool("PLAYGROUND_KEEP_WORKDIRS", False))

    # --- Browsers ---
    headless: bool = field(default_factory=lambda: _env_bool("PLAYGROUND_HEADLESS", True))
    chromium_path: str = field(default_factory=lambda: os.getenv("CHROMIUM_PATH", "").strip())

    # --- Video capture ---
    ffmpeg_path: str = field(default_factory=lambda: _env_str("PLAYGROUND_FFMPEG_PATH", "ffmpeg"))
    video_fps: int = field(default_factory=lambda: max(1, min(_env_int("PLAYGROUND_VIDEO_FPS", 25), 60)))

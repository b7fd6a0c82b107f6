"""Run one snippet locally and print the result as a single JSON line.

    playground-run --engine chromium --snippet-file example.py

The last stdout line is `PLAYGROUND_RESULT_JSON=<json>`. Logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import os
import sys
from pathlib import Path

import structlog

from .browsers import BrowserPool
from .coordinator import ExecutionCoordinator
from .errors import PlaygroundError
from .logs import configure_logging
from .settings import SUPPORTED_ENGINES, SandboxSettings

RESULT_PREFIX = "PLAYGROUND_RESULT_JSON="

logger = structlog.get_logger(__name__)


def _read_snippet(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _emit(payload: dict) -> None:
    sys.stdout.write(RESULT_PREFIX + json.dumps(payload, ensure_ascii=False, sort_keys=True) + "\n")
    sys.stdout.flush()


async def _amain(argv: list[str]) -> int:
    ap = argparse.ArgumentParser(description="Run a Playwright snippet in the playground sandbox.")
    ap.add_argument("--snippet-file", required=True, help="path to the snippet, or - for stdin")
    ap.add_argument("--engine", default="chromium", choices=list(SUPPORTED_ENGINES))
    ap.add_argument("--timeout-seconds", type=float, default=None)
    ap.add_argument("--keep-workdir", action="store_true")
    args = ap.parse_args(argv)

    code = _read_snippet(args.snippet_file)
    settings = SandboxSettings()
    overrides: dict = {"engines": (args.engine,)}
    if args.timeout_seconds is not None:
        overrides["execution_timeout_seconds"] = max(1.0, float(args.timeout_seconds))
    if args.keep_workdir:
        overrides["keep_workdirs"] = True
    settings = dataclasses.replace(settings, **overrides)

    pool = BrowserPool.from_settings(settings)
    coordinator = ExecutionCoordinator(settings, pool)
    try:
        await pool.start()
        result = await coordinator.run_untrusted_code(code, args.engine)
    except PlaygroundError as exc:
        _emit({"error": {"code": exc.code, "message": exc.message}})
        return 2
    finally:
        await pool.stop()

    _emit(result.to_dict())
    if result.files:
        # Deletion timers die with this process; a later server start purges leftovers.
        logger.info("Artifacts kept in public directory", public_dir=os.path.abspath(settings.public_dir))
    return 0


def main() -> None:
    configure_logging(stream=sys.stderr)
    # Ensure predictable HOME for Playwright temp files inside read-only sandboxes.
    os.environ.setdefault("HOME", "/tmp")
    try:
        rc = asyncio.run(_amain(sys.argv[1:]))
    except KeyboardInterrupt:
        rc = 130
    sys.exit(int(rc))


if __name__ == "__main__":
    main()

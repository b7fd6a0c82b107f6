"""Per-run working directory and the browser view handed to a snippet.

Relative paths a snippet passes to the browser (screenshots, PDFs, downloads,
uploads) resolve inside the run's own directory, so the files of concurrent runs
never mix and nothing outside that directory can be read or written.
"""

from __future__ import annotations

import inspect
import os
import shutil
import uuid
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Callable
from urllib.parse import urlsplit

import structlog

from .errors import ForbiddenAccess
from .watcher import ArtifactWatcher

logger = structlog.get_logger(__name__)


_PLAIN_TYPES = (type(None), bool, int, float, complex, str, bytes, bytearray, dict, PurePath, Enum)

# Parameter names that carry host filesystem paths in the Playwright API.
_PATH_PARAMETERS = frozenset({"path", "files", "record_video_dir", "record_har_path", "har", "storage_state"})
# Parameters the browser resolves as URLs; local schemes are refused.
_URL_PARAMETERS = frozenset({"url", "base_url"})
# Keys of a `client_certificates` entry that name files on the host.
_CERTIFICATE_PATH_KEYS = frozenset({"certPath", "keyPath", "pfxPath"})

_MISSING = object()

_HIDDEN_ATTRIBUTES = frozenset(
    {
        "browser_type",  # launch()/connect() would start arbitrary host processes
        "contexts",  # other runs' contexts on the shared browser
        "new_cdp_session",
        "new_browser_cdp_session",
    }
)

# Factories whose products are closed when the run ends.
_OPENERS = frozenset({"new_context", "new_page"})


class RunScope:
    def __init__(self, root: Path, run_id: str):
        self.root = Path(root).resolve()
        self.run_id = run_id
        self._opened: list[Any] = []
        self._recordings: list[Any] = []
        self._watchers: list[ArtifactWatcher] = []
        self._listeners: dict[Callable[..., Any], Callable[..., Any]] = {}

    @classmethod
    def create(cls, workspace_dir: str | Path) -> "RunScope":
        run_id = uuid.uuid4().hex
        root = Path(workspace_dir) / run_id
        root.mkdir(parents=True, exist_ok=False)
        return cls(root, run_id)

    # --- Paths ---

    def resolve(self, value: str | os.PathLike) -> str:
        candidate = (self.root / Path(value)).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ForbiddenAccess(f"Path is outside the run directory: {os.fspath(value)}")
        return str(candidate)

    def _resolve_argument(self, value: Any) -> Any:
        if isinstance(value, (str, os.PathLike)):
            return self.resolve(value)
        if isinstance(value, (list, tuple)):
            return [self.resolve(v) if isinstance(v, (str, os.PathLike)) else v for v in value]
        # None, in-memory file payloads or a storage state dict
        return value

    def _resolve_certificates(self, value: Any) -> Any:
        if value is None:
            return value
        resolved = []
        for entry in value:
            if isinstance(entry, dict):
                entry = {
                    k: self.resolve(v) if k in _CERTIFICATE_PATH_KEYS and v is not None else v
                    for k, v in entry.items()
                }
            resolved.append(entry)
        return resolved

    # --- Handles ---

    def expose(self, value: Any) -> Any:
        """Wrap a host object for the snippet; plain data passes through."""
        if isinstance(value, (ScopedHandle,) + _PLAIN_TYPES):
            return value
        if isinstance(value, (list, tuple)):
            return type(value)(self.expose(v) for v in value)
        if inspect.isawaitable(value):
            return self._settle("", value)
        return ScopedHandle(value, self)

    def unwrap(self, value: Any) -> Any:
        """Turn a snippet-side value back into what the host API expects."""
        if isinstance(value, ScopedHandle):
            return value._target
        if isinstance(value, (list, tuple)):
            return type(value)(self.unwrap(v) for v in value)
        if isinstance(value, dict):
            return {k: self.unwrap(v) for k, v in value.items()}
        if inspect.isfunction(value) or inspect.ismethod(value):
            return self._listener(value)
        return value

    def _listener(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        # Same callback, same wrapper: remove_listener() must find it again.
        wrapper = self._listeners.get(fn)
        if wrapper is not None:
            return wrapper

        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return fn(*(self.expose(a) for a in args), **{k: self.expose(v) for k, v in kwargs.items()})

        # Playwright counts the handler's parameters to decide what to pass.
        wrapper.__signature__ = inspect.signature(fn)  # type: ignore[attr-defined]
        self._listeners[fn] = wrapper
        return wrapper

    def call(self, name: str, method: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        call_args = [self.unwrap(a) for a in args]
        call_kwargs = {k: self.unwrap(v) for k, v in kwargs.items()}
        try:
            bound = inspect.signature(method).bind(*call_args, **call_kwargs)
        except (TypeError, ValueError):
            bound = None
        if bound is not None:
            for param, value in list(bound.arguments.items()):
                if param in _PATH_PARAMETERS:
                    bound.arguments[param] = self._resolve_argument(value)
                elif param == "client_certificates":
                    bound.arguments[param] = self._resolve_certificates(value)
                elif param in _URL_PARAMETERS:
                    _reject_local_url(value)
            call_args, call_kwargs = list(bound.args), dict(bound.kwargs)

        result = method(*call_args, **call_kwargs)
        if inspect.isawaitable(result):
            return self._settle(name, result)
        return self.expose(result)

    async def _settle(self, name: str, awaitable: Any) -> Any:
        value = await awaitable
        if name in _OPENERS and value is not None:
            self._opened.append(value)
        return self.expose(value)

    # --- Run resources ---

    def watch(self, *, settle_seconds: float, force_polling: bool = False) -> ArtifactWatcher:
        watcher = ArtifactWatcher(self.root, settle_seconds=settle_seconds, force_polling=force_polling).start()
        self._watchers.append(watcher)
        return watcher

    def add_recording(self, recording: Any) -> None:
        self._recordings.append(recording)

    async def stop_recordings(self) -> None:
        """Finalize recordings the snippet left running; re-raise the first failure."""
        first_error: Exception | None = None
        for recording in self._recordings:
            if recording.stopped:
                continue
            try:
                await recording.stop()
            except Exception as exc:
                first_error = first_error or exc
        if first_error is not None:
            raise first_error

    async def close(self, *, keep_files: bool = False) -> None:
        for watcher in self._watchers:
            await watcher.close()
        try:
            await self.stop_recordings()
        except Exception as exc:
            logger.warning("Failed to finalize recording", run_id=self.run_id, error=str(exc))
        for handle in reversed(self._opened):
            try:
                await handle.close()
            except Exception as exc:
                logger.debug("Could not close run handle", run_id=self.run_id, error=str(exc))
        self._opened.clear()
        self._listeners.clear()
        if not keep_files:
            shutil.rmtree(self.root, ignore_errors=True)


class ScopedHandle:
    """Read-only view of a host object that keeps its descendants in the run scope."""

    __slots__ = ("_target", "_scope")

    def __init__(self, target: Any, scope: RunScope):
        object.__setattr__(self, "_target", target)
        object.__setattr__(self, "_scope", scope)

    def __getattr__(self, name: str) -> Any:
        value = _MISSING
        if not name.startswith("_") and name not in _HIDDEN_ATTRIBUTES:
            value = getattr(self._target, name, _MISSING)
        if value is _MISSING:
            # Raised fresh, outside any handler: no `obj` and no chained error that holds the target.
            raise AttributeError(f"'{type(self._target).__name__}' object has no attribute '{name}'")
        if callable(value) and not isinstance(value, type):
            scope = self._scope

            def method(*args: Any, **kwargs: Any) -> Any:
                return scope.call(name, value, args, kwargs)

            method.__name__ = name
            return method
        return self._scope.expose(value)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("browser handles are read-only")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("browser handles are read-only")

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, ScopedHandle):
            return self._target is other._target
        return NotImplemented

    def __hash__(self) -> int:
        return hash(id(self._target))

    def __repr__(self) -> str:
        return f"<{type(self._target).__name__}>"

    def __await__(self):
        return self._scope._settle("", self._target).__await__()

    async def __aenter__(self) -> Any:
        return self._scope.expose(await self._target.__aenter__())

    async def __aexit__(self, exc_type, exc, tb) -> Any:
        return await self._target.__aexit__(exc_type, exc, tb)


def _reject_local_url(value: Any) -> None:
    if not isinstance(value, str):
        return
    scheme = urlsplit(value.strip()).scheme.lower()
    if scheme in {"file", "view-source"} or value.strip().lower().startswith("file:"):
        raise ForbiddenAccess("It is not allowed to access local files")

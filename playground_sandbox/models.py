from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LogMode(str, Enum):
    LOG = "log"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    mode: LogMode
    args: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode.value, "args": list(self.args)}


@dataclass(frozen=True)
class FileArtifact:
    public_url: str
    filename: str  # name the snippet gave the file, relative to its run directory
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {"publicURL": self.public_url, "filename": self.filename, "mimetype": self.mime_type}


@dataclass(frozen=True)
class ExecutionResult:
    files: tuple[FileArtifact, ...] = field(default_factory=tuple)
    logs: tuple[LogEntry, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [f.to_dict() for f in self.files],
            "logs": [entry.to_dict() for entry in self.logs],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)

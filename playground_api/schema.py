from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ApiError(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ApiError


class RunRequest(BaseModel):
    # Emptiness and engine membership are checked by the pipeline, which owns the error codes.
    code: str = Field("", max_length=500_000)
    engine: str = Field("", max_length=40)


class FileArtifactModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    public_url: str = Field(..., alias="publicURL")
    filename: str
    mimetype: str


class LogEntryModel(BaseModel):
    mode: Literal["log", "error"]
    args: list[str] = Field(default_factory=list)


class RunResponse(BaseModel):
    files: list[FileArtifactModel] = Field(default_factory=list)
    logs: list[LogEntryModel] = Field(default_factory=list)


class HealthResponse(BaseModel):
    ok: bool
    ts: float
    engines: list[str]
    browsers_ready: bool

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ModeRequest(BaseModel):
    mode: Literal["upload", "camera"] = Field(..., description="Input mode to switch to")


class ResultModel(BaseModel):
    label: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    confidence_percent: int
    tone: str
    description: str
    known_label: bool


class ErrorModel(BaseModel):
    kind: str
    message: str
    detail: str | None = None


class CameraStatusModel(BaseModel):
    readiness: str
    reason: str | None = None
    can_capture: bool = False


class StateResponse(BaseModel):
    mode: str
    state: str
    loading: bool
    result: ResultModel | None = None
    error: ErrorModel | None = None
    preview_url: str | None = None
    camera: CameraStatusModel | None = None


__all__ = [
    "CameraStatusModel",
    "ErrorModel",
    "ModeRequest",
    "ResultModel",
    "StateResponse",
]

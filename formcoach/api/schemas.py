"""Pydantic schemas for request/response payloads.

All endpoints use a standardized JSON envelope: {"success": bool, "data": any, "error": str|None}
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


class Envelope(BaseModel):
    success: bool = True
    data: Optional[dict] = None
    error: Optional[str] = None


def error_response(status_code: int, error: str, data: Optional[dict] = None, headers: Optional[dict] = None) -> JSONResponse:
    body = Envelope(success=False, data=data, error=error).model_dump()
    return JSONResponse(body, status_code=status_code, headers=headers)


class KeypointIn(BaseModel):
    name: Optional[str] = None
    index: Optional[int] = None
    x: float
    y: float
    score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class FrameInput(BaseModel):
    keypoints: List[KeypointIn] = Field(default_factory=list)
    source_width: Optional[float] = Field(default=None, gt=0)
    source_height: Optional[float] = Field(default=None, gt=0)
    timestamp_ms: Optional[float] = None


class SessionCreateInput(BaseModel):
    exercise_id: Optional[str] = None


class SimulateInput(BaseModel):
    cycles: int = Field(default=3, ge=0, le=50)
    depth: float = Field(default=1.0, ge=0.0, le=1.5)
    torso_lean_deg: float = Field(default=10.0, ge=0.0, le=90.0)


class ValidateRepInput(BaseModel):
    exercise_id: str
    metrics: Dict[str, Any] = Field(default_factory=dict)


class TtsInput(BaseModel):
    text: Optional[str] = None
    voice_id: Optional[str] = None
    model_id: Optional[str] = None

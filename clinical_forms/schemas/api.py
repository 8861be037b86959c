"""Pydantic models shared by every route: health and the error envelope."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "healthy"
    environment: str
    database: str = "connected"


class ErrorDetail(BaseModel):
    code: str
    message: Any
    violations: list[dict[str, Any]] | None = None


class ErrorResponse(BaseModel):
    ok: bool = False
    error: ErrorDetail

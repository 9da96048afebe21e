from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    code: str
    message: str
    platform: str | None = None
    upstream_status: int | None = Field(default=None, alias="upstreamStatus")


class ErrorResponse(BaseModel):
    error: ErrorDetail

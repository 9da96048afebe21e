from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from clipforge.api.deps.auth import get_app_settings
from clipforge.application.meta import health_status, readiness_status, status_snapshot
from clipforge.core.config import Settings
from clipforge.schemas.errors import ErrorResponse
from clipforge.schemas.meta import HealthResponse, ReadyResponse, StatusResponse

router = APIRouter(prefix="/meta", tags=["meta"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return await health_status()


@router.get(
    "/ready",
    response_model=ReadyResponse,
    responses={503: {"model": ErrorResponse, "description": "Dependencies not ready."}},
)
async def ready(request: Request, settings: Annotated[Settings, Depends(get_app_settings)]) -> ReadyResponse:
    return await readiness_status(settings, getattr(request.app.state, "upload_manager", None))


@router.get("/status", response_model=StatusResponse)
async def status(request: Request) -> StatusResponse:
    return await status_snapshot(getattr(request.app.state, "upload_manager", None))

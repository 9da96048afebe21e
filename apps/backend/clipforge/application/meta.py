from __future__ import annotations

import logging
import pathlib
import time

from postgrest import APIError

from clipforge.api import __version__
from clipforge.application.uploads import UploadSessionManager
from clipforge.core.config import Settings
from clipforge.core.errors import NotReadyError
from clipforge.schemas.meta import HealthResponse, ReadyResponse, StatusResponse
from clipforge.services.supabase import create_supabase_admin_client

_START_TIME = time.monotonic()

logger = logging.getLogger(__name__)


async def health_status() -> HealthResponse:
    logger.info("health check ok")
    return HealthResponse(status="ok")


async def readiness_status(settings: Settings, manager: UploadSessionManager | None) -> ReadyResponse:
    # Readiness: upload manager running, storage roots present, Supabase configured and reachable.
    if manager is None:
        logger.warning("readiness check failed: upload manager not running")
        raise NotReadyError("Upload service is not running.")

    for directory in (settings.upload_dir, settings.completed_dir):
        if not pathlib.Path(directory).is_dir():
            logger.warning("readiness check failed: storage missing", extra={"directory": directory})
            raise NotReadyError("Upload storage is not available.")

    if not settings.supabase_url or not settings.supabase_publishable_key or not settings.supabase_secret_key:
        logger.warning("readiness check failed: supabase not configured")
        raise NotReadyError("Supabase is not configured.")

    client = await create_supabase_admin_client(settings)
    try:
        await client.table("uploads").select("id").limit(1).execute()
    except APIError as exc:
        logger.warning(
            "readiness check failed: supabase not reachable",
            extra={"error_type": type(exc).__name__},
        )
        raise NotReadyError("Supabase is not reachable.") from exc

    logger.info("readiness check ok")
    return ReadyResponse(status="ok")


async def status_snapshot(manager: UploadSessionManager | None) -> StatusResponse:
    uptime_seconds = time.monotonic() - _START_TIME
    active_uploads = len(manager.store.active_sessions()) if manager is not None else None
    logger.info(
        "status snapshot",
        extra={"uptime_seconds": round(uptime_seconds, 2), "version": __version__, "active_uploads": active_uploads},
    )
    return StatusResponse(
        status="ok",
        version=__version__,
        uptime_seconds=uptime_seconds,
        active_uploads=active_uploads,
    )

from __future__ import annotations

import asyncio
import logging
import pathlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from clipforge.application.transfers import OutboundTransferService
from clipforge.application.uploads import create_upload_manager
from clipforge.core.config import Settings, get_settings
from clipforge.services.collaborators import SupabaseTokenProvider, SupabaseUploadSink
from clipforge.services.platforms import create_adapters

logger = logging.getLogger(__name__)


def _ensure_storage(settings: Settings) -> None:
    for directory in (settings.upload_dir, settings.completed_dir):
        pathlib.Path(directory).mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Build the upload core for the lifetime of the app.

    Collaborators already placed on ``app.state`` (upload_sink,
    token_provider, http_client) are used as given; tests rely on this.
    """
    settings: Settings = getattr(app.state, "settings", None) or get_settings()
    await asyncio.to_thread(_ensure_storage, settings)

    sink = getattr(app.state, "upload_sink", None) or SupabaseUploadSink(settings)
    token_provider = getattr(app.state, "token_provider", None) or SupabaseTokenProvider(settings)
    http_client: httpx.AsyncClient | None = getattr(app.state, "http_client", None)
    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.outbound_http_timeout_seconds)

    manager = create_upload_manager(settings, sink)
    app.state.upload_manager = manager
    app.state.http_client = http_client
    app.state.transfer_service = OutboundTransferService(create_adapters(settings, http_client, token_provider))

    manager.start()
    logger.info(
        "upload service started",
        extra={"upload_dir": settings.upload_dir, "reap_interval_seconds": settings.upload_reap_interval_seconds},
    )
    try:
        yield
    finally:
        logger.info("upload service stopping")
        await manager.stop()
        if owns_http_client:
            await http_client.aclose()
        app.state.upload_manager = None
        app.state.transfer_service = None

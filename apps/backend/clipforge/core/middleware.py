from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import RequestResponseEndpoint
from starlette.responses import Response

from clipforge.core.errors import RequestTooLargeError
from clipforge.core.handlers import handle_app_error
from clipforge.core.logging import log_context

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request size limits
# ---------------------------------------------------------------------------
MAX_REQUEST_BYTES = 64_000  # 64 KB
CHUNK_ROUTE_SUFFIX = "/chunk"
# Multipart framing around a chunk is small, but clients may send a full chunk plus form fields.
CHUNK_REQUEST_SIZE_FACTOR = 2


def _max_request_bytes(request: Request) -> int:
    if request.method == "POST" and request.url.path.endswith(CHUNK_ROUTE_SUFFIX):
        settings = getattr(request.app.state, "settings", None)
        chunk_size = getattr(settings, "upload_chunk_size", None)
        if chunk_size:
            return chunk_size * CHUNK_REQUEST_SIZE_FACTOR
    return MAX_REQUEST_BYTES


async def _enforce_request_size(request: Request) -> None:
    max_bytes = _max_request_bytes(request)
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > max_bytes:
                raise RequestTooLargeError("Request body too large.")
        except ValueError:
            pass

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_bytes:
            raise RequestTooLargeError("Request body too large.")

    request._body = bytes(body)


async def log_requests(request: Request, call_next: RequestResponseEndpoint) -> Response:
    start = time.perf_counter()
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    request.state.request_id = request_id

    with log_context(request_id=request_id, method=request.method, path=request.url.path):
        try:
            await _enforce_request_size(request)
        except RequestTooLargeError as exc:
            # Raised outside the router, so the app-level exception handlers never see it.
            return await handle_app_error(request, exc)

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request finished",
            extra={"status_code": response.status_code, "duration_ms": round(duration_ms, 2)},
        )
        return response

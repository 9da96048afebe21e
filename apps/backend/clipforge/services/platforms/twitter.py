from __future__ import annotations

import os
from typing import Any, Literal

import httpx

from clipforge.core.errors import RemoteProtocolError, StorageIOError, UploadValidationError
from clipforge.services.collaborators import TokenProvider
from clipforge.services.platforms.base import (
    ChunkResult,
    OutboundUploadSession,
    Platform,
    TransferAdapter,
    TransferResult,
)

MediaType = Literal["video", "image"]

_CONTENT_TYPES: dict[str, str] = {"video": "video/mp4", "image": "image/jpeg"}
_MEDIA_CATEGORIES: dict[str, str] = {"video": "tweet_video", "image": "tweet_image"}


class TwitterMediaAdapter(TransferAdapter):
    """
    X / Twitter chunked media upload (INIT, APPEND, FINALIZE).

    Segment indices are sent exactly as the caller asks. The remote end
    enforces ordering; an out-of-order APPEND comes back as an HTTP error and
    fails the session like any other rejection.
    """

    platform = Platform.TWITTER

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        *,
        chunk_size: int,
        upload_url: str,
    ) -> None:
        super().__init__(http_client, token_provider, chunk_size=chunk_size)
        self.upload_url = upload_url

    async def _auth_headers(self, session: OutboundUploadSession) -> dict[str, str]:
        # Tokens are looked up per call so a reconnect mid-transfer is picked up.
        access_token = await self._require_token(session.user_id)
        return {"Authorization": f"Bearer {access_token}"}

    async def initialize(
        self,
        user_id: str,
        file_path: str | os.PathLike[str],
        *,
        media_type: MediaType = "video",
        **_options: Any,
    ) -> OutboundUploadSession:
        if media_type not in _CONTENT_TYPES:
            raise UploadValidationError(f"Unsupported media type: {media_type}")
        access_token = await self._require_token(user_id)
        path, file_size = await self._stat_file(file_path)
        content_type = _CONTENT_TYPES[media_type]

        request = self.http.build_request(
            "POST",
            self.upload_url,
            headers={"Authorization": f"Bearer {access_token}"},
            data={
                "command": "INIT",
                "total_bytes": str(file_size),
                "media_type": content_type,
                "media_category": _MEDIA_CATEGORIES[media_type],
            },
        )
        response = await self._send("INIT", request)
        if not response.is_success:
            raise self._protocol_error("INIT", response.status_code)

        media_id = _json_field(response, "media_id_string")
        if not media_id:
            raise self._protocol_error("INIT", response.status_code, "no media id returned")

        return self._new_session(
            user_id=user_id,
            path=path,
            file_size=file_size,
            content_type=content_type,
            chunk_size=self.chunk_size,
            remote_handle={"media_id": media_id},
        )

    async def upload_chunk(self, session_id: str, chunk_index: int) -> ChunkResult:
        session = self._get_open_session(session_id)
        async with session.lock:
            session = self._get_open_session(session_id)
            chunk = self._get_chunk(session, chunk_index)
            headers = await self._auth_headers(session)
            try:
                data = await self._read_chunk(session, chunk)
                request = self.http.build_request(
                    "POST",
                    self.upload_url,
                    headers=headers,
                    data={
                        "command": "APPEND",
                        "media_id": session.remote_handle["media_id"],
                        "segment_index": str(chunk_index),
                    },
                    files={"media": (session.file_name, data, "application/octet-stream")},
                )
                chunk.attempts += 1
                response = await self._send("APPEND", request)
                chunk.last_status = response.status_code
                if not response.is_success:
                    raise self._protocol_error("APPEND", response.status_code, f"segment {chunk_index}")
            except (RemoteProtocolError, StorageIOError) as exc:
                self._fail(session, exc)
                raise

            chunk.uploaded = True
            session.status = "uploading"
            return ChunkResult(chunk_index, chunk.size, response.status_code, completed=False)

    async def finalize(self, session_id: str) -> TransferResult:
        session = self._get_open_session(session_id)
        async with session.lock:
            session = self._get_open_session(session_id)
            if not session.all_chunks_uploaded:
                missing = [chunk.index for chunk in session.chunks if not chunk.uploaded]
                raise UploadValidationError(f"Cannot finalize: segments {missing} have not been uploaded.")
            headers = await self._auth_headers(session)
            media_id = session.remote_handle["media_id"]
            try:
                request = self.http.build_request(
                    "POST",
                    self.upload_url,
                    headers=headers,
                    data={"command": "FINALIZE", "media_id": media_id},
                )
                response = await self._send("FINALIZE", request)
                if not response.is_success:
                    raise self._protocol_error("FINALIZE", response.status_code)
            except RemoteProtocolError as exc:
                self._fail(session, exc)
                raise

            details: dict[str, Any] = {}
            processing_info = _json_field(response, "processing_info")
            if processing_info is not None:
                details["processing_info"] = processing_info
            self._complete(session, media_id)
            return TransferResult(
                session_id=session.session_id,
                platform=self.platform,
                remote_media_id=media_id,
                details=details,
            )


def _json_field(response: httpx.Response, key: str) -> Any:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get(key)

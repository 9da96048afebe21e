"""YouTube resumable upload: one signed session URL, byte ranges sent with PUT."""

from __future__ import annotations

import os
from typing import Any

import httpx

from clipforge.core.constants import YOUTUBE_CHUNK_MULTIPLE
from clipforge.core.errors import ConfigurationError, RemoteProtocolError, StorageIOError, UploadValidationError
from clipforge.services.collaborators import TokenProvider
from clipforge.services.platforms.base import (
    ChunkResult,
    OutboundUploadSession,
    Platform,
    TransferAdapter,
    TransferResult,
)

# 308 "Resume Incomplete": the chunk was stored and more bytes are expected.
RESUME_INCOMPLETE = 308
DEFAULT_CATEGORY_ID = "22"  # People & Blogs
DEFAULT_PRIVACY_STATUS = "private"
DEFAULT_CONTENT_TYPE = "video/*"


class YouTubeResumableAdapter(TransferAdapter):
    platform = Platform.YOUTUBE

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        *,
        chunk_size: int,
        upload_url: str,
    ) -> None:
        if chunk_size % YOUTUBE_CHUNK_MULTIPLE:
            raise ConfigurationError(f"YouTube chunk size must be a multiple of {YOUTUBE_CHUNK_MULTIPLE} bytes.")
        super().__init__(http_client, token_provider, chunk_size=chunk_size)
        self.upload_url = upload_url.rstrip("/")

    async def initialize(
        self,
        user_id: str,
        file_path: str | os.PathLike[str],
        *,
        title: str = "",
        description: str = "",
        tags: list[str] | None = None,
        category_id: str = DEFAULT_CATEGORY_ID,
        privacy_status: str = DEFAULT_PRIVACY_STATUS,
        content_type: str = DEFAULT_CONTENT_TYPE,
        **_options: Any,
    ) -> OutboundUploadSession:
        access_token = await self._require_token(user_id)
        path, file_size = await self._stat_file(file_path)

        request = self.http.build_request(
            "POST",
            f"{self.upload_url}/youtube/v3/videos",
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers={
                "Authorization": f"Bearer {access_token}",
                "X-Upload-Content-Length": str(file_size),
                "X-Upload-Content-Type": content_type,
            },
            json={
                "snippet": {
                    "title": title or path.stem,
                    "description": description,
                    "tags": tags or [],
                    "categoryId": category_id,
                },
                "status": {"privacyStatus": privacy_status},
            },
        )
        response = await self._send("upload initialization", request)
        if not response.is_success:
            raise self._protocol_error("upload initialization", response.status_code)

        session_url = response.headers.get("location")
        if not session_url:
            raise self._protocol_error("upload initialization", response.status_code, "no upload URL returned")

        return self._new_session(
            user_id=user_id,
            path=path,
            file_size=file_size,
            content_type=content_type,
            chunk_size=self.chunk_size,
            remote_handle={"upload_url": session_url},
        )

    async def upload_chunk(self, session_id: str, chunk_index: int) -> ChunkResult:
        session = self._get_open_session(session_id)
        async with session.lock:
            session = self._get_open_session(session_id)
            chunk = self._get_chunk(session, chunk_index)
            start = chunk.offset
            end = chunk.offset + chunk.size - 1
            try:
                data = await self._read_chunk(session, chunk)
                request = self.http.build_request(
                    "PUT",
                    session.remote_handle["upload_url"],
                    headers={
                        "Content-Range": f"bytes {start}-{end}/{session.file_size}",
                    },
                    content=data,
                )
                chunk.attempts += 1
                response = await self._send("chunk upload", request)
                chunk.last_status = response.status_code

                if response.status_code == RESUME_INCOMPLETE:
                    chunk.uploaded = True
                    chunk.remote_ack = response.headers.get("range")
                    session.status = "uploading"
                    return ChunkResult(chunk_index, chunk.size, response.status_code, completed=False)

                if response.status_code in (200, 201):
                    chunk.uploaded = True
                    video_id = _video_id(response)
                    if not video_id:
                        raise self._protocol_error("chunk upload", response.status_code, "no video id returned")
                    self._complete(session, video_id)
                    return ChunkResult(chunk_index, chunk.size, response.status_code, completed=True)

                raise self._protocol_error("chunk upload", response.status_code)
            except (RemoteProtocolError, StorageIOError) as exc:
                self._fail(session, exc)
                raise

    async def finalize(self, session_id: str) -> TransferResult:
        # Completion is signalled by the last chunk's response; there is no separate call.
        session = self.get_session(session_id)
        if session.status != "completed" or not session.remote_media_id:
            raise UploadValidationError("YouTube upload has not completed yet.")
        return TransferResult(
            session_id=session.session_id,
            platform=self.platform,
            remote_media_id=session.remote_media_id,
        )


def _video_id(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("id"), str):
        return payload["id"]
    return None

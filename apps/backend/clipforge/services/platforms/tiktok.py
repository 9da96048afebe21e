from __future__ import annotations

import math
import os
from typing import Any

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

DEFAULT_CONTENT_TYPE = "video/mp4"


class TikTokUploadAdapter(TransferAdapter):
    """TikTok multipart upload keyed by a remote upload id.

    The init response may negotiate a different chunk size; the session's
    chunk plan follows the remote value. There is no explicit finalize call:
    the session completes once every chunk has been acknowledged.
    """

    platform = Platform.TIKTOK

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        *,
        chunk_size: int,
        api_url: str,
    ) -> None:
        super().__init__(http_client, token_provider, chunk_size=chunk_size)
        self.api_url = api_url.rstrip("/")

    async def initialize(
        self,
        user_id: str,
        file_path: str | os.PathLike[str],
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
        **_options: Any,
    ) -> OutboundUploadSession:
        access_token = await self._require_token(user_id)
        path, file_size = await self._stat_file(file_path)

        total_chunk_count = math.ceil(file_size / self.chunk_size)
        request = self.http.build_request(
            "POST",
            f"{self.api_url}/video/upload/init/",
            headers={"Authorization": f"Bearer {access_token}"},
            json={
                "source_info": {
                    "source": "FILE_UPLOAD",
                    "video_size": file_size,
                    "chunk_size": self.chunk_size,
                    "total_chunk_count": total_chunk_count,
                }
            },
        )
        response = await self._send("upload initialization", request)
        if not response.is_success:
            raise self._protocol_error("upload initialization", response.status_code)

        data = _response_data(response)
        upload_url = data.get("upload_url")
        upload_id = data.get("upload_id")
        if not isinstance(upload_url, str) or not upload_url or upload_id in (None, ""):
            raise self._protocol_error("upload initialization", response.status_code, "incomplete upload descriptor")

        chunk_size = self.chunk_size
        negotiated = data.get("chunk_size")
        if isinstance(negotiated, int) and not isinstance(negotiated, bool) and negotiated > 0:
            chunk_size = negotiated

        return self._new_session(
            user_id=user_id,
            path=path,
            file_size=file_size,
            content_type=content_type,
            chunk_size=chunk_size,
            remote_handle={"upload_url": upload_url, "upload_id": str(upload_id)},
        )

    async def upload_chunk(self, session_id: str, chunk_index: int) -> ChunkResult:
        session = self._get_open_session(session_id)
        async with session.lock:
            session = self._get_open_session(session_id)
            chunk = self._get_chunk(session, chunk_index)
            try:
                data = await self._read_chunk(session, chunk)
                # upload_url is pre-signed; no bearer token on chunk requests.
                request = self.http.build_request(
                    "POST",
                    session.remote_handle["upload_url"],
                    data={
                        "upload_id": session.remote_handle["upload_id"],
                        "chunk_index": str(chunk_index),
                    },
                    files={"chunk_data": (session.file_name, data, "application/octet-stream")},
                )
                chunk.attempts += 1
                response = await self._send("chunk upload", request)
                chunk.last_status = response.status_code
                if not response.is_success:
                    raise self._protocol_error("chunk upload", response.status_code, f"chunk {chunk_index}")
            except (RemoteProtocolError, StorageIOError) as exc:
                self._fail(session, exc)
                raise

            chunk.uploaded = True
            session.status = "uploading"
            completed = session.all_chunks_uploaded
            if completed:
                self._complete(session, session.remote_handle["upload_id"])
            return ChunkResult(chunk_index, chunk.size, response.status_code, completed=completed)

    async def finalize(self, session_id: str) -> TransferResult:
        session = self.get_session(session_id)
        if session.status != "completed" or not session.remote_media_id:
            missing = [chunk.index for chunk in session.chunks if not chunk.uploaded]
            raise UploadValidationError(f"TikTok upload is not complete; chunks {missing} outstanding.")
        return TransferResult(
            session_id=session.session_id,
            platform=self.platform,
            remote_media_id=session.remote_media_id,
            details={"upload_id": session.remote_handle["upload_id"]},
        )


def _response_data(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    data = payload.get("data") if isinstance(payload, dict) else None
    return data if isinstance(data, dict) else {}

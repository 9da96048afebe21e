"""
Common local interface for outbound chunked transfers.

Each platform adapter speaks its own wire protocol; only the three phases
(initialize, upload_chunk, finalize) and the local session bookkeeping are
shared. Adapters never retry: one call is at most one remote attempt, and a
non-success answer fails the session with RemoteProtocolError.
"""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

import httpx

from clipforge.core.errors import (
    PlatformNotConnectedError,
    RemoteProtocolError,
    SessionNotFoundError,
    StorageIOError,
    UploadValidationError,
)
from clipforge.core.logging import log_context
from clipforge.services.collaborators import TokenProvider
from clipforge.services.progress import TransferProgress, compute_progress

logger = logging.getLogger(__name__)

TransferStatus = Literal["initialized", "uploading", "completed", "failed"]


class Platform(StrEnum):
    YOUTUBE = "youtube"
    TWITTER = "twitter"
    TIKTOK = "tiktok"


@dataclass
class OutboundChunk:
    index: int
    offset: int
    size: int
    uploaded: bool = False
    attempts: int = 0
    last_status: int | None = None
    remote_ack: str | None = None


@dataclass
class OutboundUploadSession:
    session_id: str
    platform: Platform
    user_id: str
    file_path: pathlib.Path
    file_name: str
    file_size: int
    content_type: str
    chunk_size: int
    chunks: list[OutboundChunk]
    # Signed URL, media id, or upload id depending on the platform. Only the adapter reads it.
    remote_handle: dict[str, str] = field(default_factory=dict)
    status: TransferStatus = "initialized"
    remote_media_id: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_monotonic: float = field(default_factory=time.monotonic)
    completed_at: datetime | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    @property
    def bytes_uploaded(self) -> int:
        return sum(chunk.size for chunk in self.chunks if chunk.uploaded)

    @property
    def all_chunks_uploaded(self) -> bool:
        return all(chunk.uploaded for chunk in self.chunks)


@dataclass(frozen=True)
class ChunkResult:
    chunk_index: int
    bytes_uploaded: int
    status_code: int
    completed: bool


@dataclass(frozen=True)
class TransferResult:
    session_id: str
    platform: Platform
    remote_media_id: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OutboundProgress:
    session_id: str
    status: TransferStatus
    total_chunks: int
    uploaded_chunks: int
    bytes_uploaded: int
    total_bytes: int
    progress: float
    eta_ms: int


def calculate_chunks(file_size: int, chunk_size: int) -> list[OutboundChunk]:
    """Split a file into fixed-size ranges; the last one carries the remainder."""
    chunks: list[OutboundChunk] = []
    offset = 0
    index = 0
    while offset < file_size:
        size = min(chunk_size, file_size - offset)
        chunks.append(OutboundChunk(index=index, offset=offset, size=size))
        offset += size
        index += 1
    return chunks


def _read_range(path: pathlib.Path, offset: int, size: int) -> bytes:
    with open(path, "rb") as handle:
        handle.seek(offset)
        return handle.read(size)


class TransferAdapter(ABC):
    """Base class for one platform's chunked upload protocol."""

    platform: Platform

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        *,
        chunk_size: int,
    ) -> None:
        self.http = http_client
        self.token_provider = token_provider
        self.chunk_size = chunk_size
        self._sessions: dict[str, OutboundUploadSession] = {}

    # ------------------------------------------------------------------
    # Platform protocol
    # ------------------------------------------------------------------
    @abstractmethod
    async def initialize(self, user_id: str, file_path: str | os.PathLike[str], **options: Any) -> OutboundUploadSession:
        """Open a remote upload session for a local file."""

    @abstractmethod
    async def upload_chunk(self, session_id: str, chunk_index: int) -> ChunkResult:
        """Send one chunk of the file to the remote session."""

    @abstractmethod
    async def finalize(self, session_id: str) -> TransferResult:
        """Complete the remote upload and return the remote media reference."""

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------
    def get_session(self, session_id: str) -> OutboundUploadSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError("Transfer session not found.")
        return session

    def _get_open_session(self, session_id: str) -> OutboundUploadSession:
        session = self.get_session(session_id)
        if session.is_terminal:
            raise SessionNotFoundError(f"Transfer session is already {session.status}.")
        return session

    def _get_chunk(self, session: OutboundUploadSession, chunk_index: int) -> OutboundChunk:
        if chunk_index < 0 or chunk_index >= len(session.chunks):
            raise UploadValidationError(
                f"Invalid chunk index {chunk_index}. Must be between 0 and {len(session.chunks) - 1}."
            )
        return session.chunks[chunk_index]

    def discard(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def get_progress(self, session_id: str) -> OutboundProgress:
        session = self.get_session(session_id)
        bytes_uploaded = session.bytes_uploaded
        elapsed_ms = (time.monotonic() - session.started_monotonic) * 1000
        computed: TransferProgress = compute_progress(bytes_uploaded, session.file_size, elapsed_ms)
        return OutboundProgress(
            session_id=session.session_id,
            status=session.status,
            total_chunks=len(session.chunks),
            uploaded_chunks=sum(1 for chunk in session.chunks if chunk.uploaded),
            bytes_uploaded=bytes_uploaded,
            total_bytes=session.file_size,
            progress=100.0 if session.status == "completed" else computed.progress,
            eta_ms=0 if session.is_terminal else computed.eta_ms,
        )

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------
    async def _require_token(self, user_id: str) -> str:
        token = await self.token_provider.get_valid_token(user_id, self.platform.value)
        if not token:
            raise PlatformNotConnectedError(f"{self.platform.value} access token not available.")
        return token

    async def _stat_file(self, file_path: str | os.PathLike[str]) -> tuple[pathlib.Path, int]:
        path = pathlib.Path(file_path)
        try:
            stat = await asyncio.to_thread(path.stat)
        except OSError as exc:
            raise StorageIOError(f"Cannot read file for transfer: {path.name}") from exc
        if stat.st_size == 0:
            raise UploadValidationError("Cannot transfer an empty file.")
        return path, stat.st_size

    async def _read_chunk(self, session: OutboundUploadSession, chunk: OutboundChunk) -> bytes:
        try:
            data = await asyncio.to_thread(_read_range, session.file_path, chunk.offset, chunk.size)
        except OSError as exc:
            raise StorageIOError(f"Failed to read chunk {chunk.index} for transfer.") from exc
        if len(data) != chunk.size:
            raise StorageIOError(f"File changed during transfer; chunk {chunk.index} is short.")
        return data

    def _new_session(
        self,
        *,
        user_id: str,
        path: pathlib.Path,
        file_size: int,
        content_type: str,
        chunk_size: int,
        remote_handle: dict[str, str],
    ) -> OutboundUploadSession:
        session = OutboundUploadSession(
            session_id=f"{self.platform.value}_{uuid.uuid4().hex}",
            platform=self.platform,
            user_id=user_id,
            file_path=path,
            file_name=path.name,
            file_size=file_size,
            content_type=content_type,
            chunk_size=chunk_size,
            chunks=calculate_chunks(file_size, chunk_size),
            remote_handle=remote_handle,
        )
        self._sessions[session.session_id] = session
        with log_context(transfer_id=session.session_id, platform=self.platform.value):
            logger.info(
                "transfer session initialized",
                extra={"file_size": file_size, "total_chunks": len(session.chunks)},
            )
        return session

    def _protocol_error(self, phase: str, status_code: int | None, detail: str | None = None) -> RemoteProtocolError:
        message = f"{self.platform.value} {phase} failed"
        if status_code is not None:
            message = f"{message}: HTTP {status_code}"
        if detail:
            message = f"{message} ({detail})"
        return RemoteProtocolError(message, platform=self.platform.value, status_code=status_code)

    def _fail(self, session: OutboundUploadSession, error: RemoteProtocolError | StorageIOError) -> None:
        session.status = "failed"
        session.error = error.detail
        with log_context(transfer_id=session.session_id, platform=self.platform.value):
            logger.warning("transfer failed", extra={"error_message": error.detail})

    def _complete(self, session: OutboundUploadSession, remote_media_id: str) -> None:
        session.status = "completed"
        session.remote_media_id = remote_media_id
        session.completed_at = datetime.now(UTC)
        with log_context(transfer_id=session.session_id, platform=self.platform.value):
            logger.info("transfer completed", extra={"remote_media_id": remote_media_id})

    async def _send(self, phase: str, request: httpx.Request) -> httpx.Response:
        """Send one request; transport failures surface as RemoteProtocolError without a status."""
        try:
            return await self.http.send(request)
        except httpx.HTTPError as exc:
            raise self._protocol_error(phase, None, type(exc).__name__) from exc

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import pathlib
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from clipforge.application.assembler import Assembler
from clipforge.application.sessions import SessionStore, UploadSession, UploadStatus
from clipforge.core.config import Settings
from clipforge.core.constants import UPLOAD_ID_RE
from clipforge.core.errors import (
    AppError,
    SessionNotFoundError,
    SizeLimitError,
    StorageIOError,
    UploadValidationError,
)
from clipforge.core.logging import log_context
from clipforge.services.chunk_store import ChunkStore
from clipforge.services.collaborators import UploadRecordSink
from clipforge.services.progress import compute_progress

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitializedUpload:
    upload_id: str
    chunk_size: int


@dataclass(frozen=True)
class ChunkReceipt:
    accepted: bool
    uploaded_chunks: int
    total_chunks: int
    progress: float
    eta_ms: int
    status: UploadStatus
    error: str | None = None


@dataclass(frozen=True)
class ResumeState:
    upload_id: str
    uploaded_chunks: list[int]
    total_chunks: int
    next_chunk: int


@dataclass(frozen=True)
class ProgressSnapshot:
    upload_id: str
    filename: str
    progress: float
    eta_ms: int
    status: UploadStatus
    bytes_uploaded: int
    total_bytes: int
    error: str | None = None
    record_id: str | None = None


def _extract_error(exc: Exception) -> str:
    if isinstance(exc, AppError):
        return exc.detail
    return str(exc) or "Failed to finalize upload."


class UploadSessionManager:
    """
    Owns every inbound upload session of the process.

    Sessions are created only by `initialize_upload`, mutated only through the
    methods below, and removed from the active table on finalize, cancel, or
    when the reaper finds them idle past `stale_timeout_seconds`.
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        assembler: Assembler,
        *,
        chunk_size: int,
        max_file_size: int,
        allowed_formats: Mapping[str, Sequence[str]],
        stale_timeout_seconds: float,
        reap_interval_seconds: float,
        store: SessionStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.chunk_store = chunk_store
        self.assembler = assembler
        self.chunk_size = chunk_size
        self.max_file_size = max_file_size
        self.allowed_formats = {category: tuple(exts) for category, exts in allowed_formats.items()}
        self.stale_timeout_seconds = stale_timeout_seconds
        self.reap_interval_seconds = reap_interval_seconds
        self.store = store if store is not None else SessionStore()
        self._clock = clock
        self._reaper_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def file_category(self, filename: str) -> str | None:
        extension = pathlib.PurePath(filename).suffix.lower()
        for category, extensions in self.allowed_formats.items():
            if extension in extensions:
                return category
        return None

    def _validate_init(self, filename: str, total_size: int, total_chunks: int) -> None:
        if not filename or not filename.strip():
            raise UploadValidationError("Missing required field: filename.")
        if self.file_category(filename) is None:
            allowed = ", ".join(ext for exts in self.allowed_formats.values() for ext in exts)
            raise UploadValidationError(f"Unsupported file format. Allowed: {allowed}")
        if total_size < 1:
            raise UploadValidationError("totalSize must be a positive number of bytes.")
        if total_size > self.max_file_size:
            max_gib = self.max_file_size / (1024**3)
            raise SizeLimitError(f"File too large. Maximum size: {max_gib:g}GB")
        if total_chunks < 1:
            raise UploadValidationError("totalChunks must be at least 1.")
        if total_chunks > total_size:
            raise UploadValidationError("totalChunks cannot exceed totalSize.")
        min_chunks = math.ceil(total_size / self.chunk_size)
        if total_chunks < min_chunks:
            raise UploadValidationError(
                f"totalChunks must be at least {min_chunks} for chunks of {self.chunk_size} bytes."
            )

    def _check_chunk_fits(self, session: UploadSession, chunk_index: int, size: int) -> None:
        previous = session.received_chunks.get(chunk_index, 0)
        if session.bytes_received - previous + size > session.declared_total_size:
            raise UploadValidationError("Chunk exceeds the declared upload size.")

    # ------------------------------------------------------------------
    # Session lookup
    # ------------------------------------------------------------------
    def _lookup(self, upload_id: str, user_id: str | None, *, active_only: bool) -> UploadSession | None:
        if not UPLOAD_ID_RE.match(upload_id):
            return None
        session = self.store.get_active(upload_id) if active_only else self.store.get(upload_id)
        # Another user's upload is reported exactly like a missing one.
        if session is not None and user_id is not None and session.user_id != user_id:
            return None
        return session

    def _get_active(self, upload_id: str, user_id: str | None = None) -> UploadSession:
        session = self._lookup(upload_id, user_id, active_only=True)
        if session is None or session.is_terminal:
            raise SessionNotFoundError("Upload session not found or expired.")
        return session

    def _is_accepting(self, session: UploadSession) -> bool:
        return session.status == "uploading" and self.store.get_active(session.session_id) is session

    def _elapsed_ms(self, session: UploadSession) -> float:
        return max(self._clock() - session.created_at, 0.0) * 1000

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def initialize_upload(
        self,
        filename: str,
        total_size: int,
        total_chunks: int,
        *,
        user_id: str,
    ) -> InitializedUpload:
        self._validate_init(filename, total_size, total_chunks)

        upload_id = uuid.uuid4().hex
        await self.chunk_store.provision(upload_id)

        now = self._clock()
        session = UploadSession(
            session_id=upload_id,
            user_id=user_id,
            filename=filename,
            declared_total_size=total_size,
            declared_total_chunks=total_chunks,
            created_at=now,
            last_activity_at=now,
        )
        self.store.add(session)

        with log_context(upload_id=upload_id, user_id=user_id):
            logger.info(
                "upload initialized",
                extra={"upload_filename": filename, "total_size": total_size, "total_chunks": total_chunks},
            )
        return InitializedUpload(upload_id=upload_id, chunk_size=self.chunk_size)

    async def accept_chunk(
        self,
        upload_id: str,
        chunk_index: int,
        data: bytes,
        *,
        user_id: str | None = None,
    ) -> ChunkReceipt:
        session = self._get_active(upload_id, user_id)

        with log_context(upload_id=upload_id, chunk_index=chunk_index):
            if chunk_index < 0 or chunk_index >= session.declared_total_chunks:
                raise UploadValidationError(
                    f"Invalid chunk number. Must be between 0 and {session.declared_total_chunks - 1}."
                )
            if not data:
                raise UploadValidationError("No chunk data received.")
            if len(data) > self.chunk_size:
                raise UploadValidationError(f"Chunk exceeds the chunk size of {self.chunk_size} bytes.")

            async with session.lock:
                if not self._is_accepting(session):
                    raise SessionNotFoundError("Upload session not found or expired.")
                self._check_chunk_fits(session, chunk_index, len(data))

            # The payload write is the slow part; it runs outside the lock so chunks of one upload land in parallel.
            try:
                await self.chunk_store.write_chunk(upload_id, chunk_index, data)
            except StorageIOError as exc:
                await self._fail_on_storage_error(session, exc)
                raise

            async with session.lock:
                if not self._is_accepting(session):
                    # Cancelled or finished while the write was in flight.
                    await self.chunk_store.purge(upload_id)
                    raise SessionNotFoundError("Upload session not found or expired.")
                try:
                    self._check_chunk_fits(session, chunk_index, len(data))
                except UploadValidationError:
                    session.received_chunks.pop(chunk_index, None)
                    await self.chunk_store.discard_chunk(upload_id, chunk_index)
                    raise

                session.received_chunks[chunk_index] = len(data)
                session.last_activity_at = self._clock()
                logger.debug(
                    "chunk accepted",
                    extra={"received": len(session.received_chunks), "total_chunks": session.declared_total_chunks},
                )

                if session.all_chunks_present and session.status == "uploading":
                    session.status = "finalizing"
                    await self._finalize(session)

                return self._receipt(session)

    async def _fail_on_storage_error(self, session: UploadSession, exc: StorageIOError) -> None:
        async with session.lock:
            if not self._is_accepting(session):
                # A cancel removed the directory under the write.
                await self.chunk_store.purge(session.session_id)
                raise SessionNotFoundError("Upload session not found or expired.") from exc
            session.status = "failed"
            session.error = exc.detail
            session.finished_at = self._clock()
            self.store.retire(session)
            logger.error("chunk write failed", extra={"error_message": exc.detail})
        await self.chunk_store.purge(session.session_id)

    async def _finalize(self, session: UploadSession) -> None:
        try:
            result = await self.assembler.assemble(session)
        except Exception as exc:
            session.status = "failed"
            session.error = _extract_error(exc)
            logger.error(
                "upload finalize failed",
                extra={"error_type": type(exc).__name__, "error_message": session.error},
            )
        else:
            session.status = "completed"
            session.file_path = str(result.path)
            session.record = result.record
            logger.info("upload completed", extra={"size_bytes": result.size, "mime_type": result.mime_type})
        finally:
            session.finished_at = self._clock()
            self.store.retire(session)

    def _receipt(self, session: UploadSession) -> ChunkReceipt:
        snapshot = self._snapshot(session)
        return ChunkReceipt(
            accepted=True,
            uploaded_chunks=len(session.received_chunks),
            total_chunks=session.declared_total_chunks,
            progress=snapshot.progress,
            eta_ms=snapshot.eta_ms,
            status=session.status,
            error=session.error,
        )

    def _snapshot(self, session: UploadSession) -> ProgressSnapshot:
        if session.status == "completed":
            progress, eta_ms = 100.0, 0
        else:
            computed = compute_progress(session.bytes_received, session.declared_total_size, self._elapsed_ms(session))
            progress, eta_ms = computed.progress, computed.eta_ms
            if session.is_terminal:
                eta_ms = 0

        record_id = None
        if session.record and session.record.get("id") is not None:
            record_id = str(session.record["id"])

        return ProgressSnapshot(
            upload_id=session.session_id,
            filename=session.filename,
            progress=progress,
            eta_ms=eta_ms,
            status=session.status,
            bytes_uploaded=session.bytes_received,
            total_bytes=session.declared_total_size,
            error=session.error,
            record_id=record_id,
        )

    async def resume_upload(self, upload_id: str, *, user_id: str | None = None) -> ResumeState:
        session = self._get_active(upload_id, user_id)
        async with session.lock:
            if not self._is_accepting(session):
                raise SessionNotFoundError("Upload session not found or expired.")
            session.last_activity_at = self._clock()
            return ResumeState(
                upload_id=upload_id,
                uploaded_chunks=sorted(session.received_chunks),
                total_chunks=session.declared_total_chunks,
                next_chunk=session.next_missing_chunk(),
            )

    def get_progress(self, upload_id: str, *, user_id: str | None = None) -> ProgressSnapshot:
        session = self._lookup(upload_id, user_id, active_only=False)
        if session is None:
            raise SessionNotFoundError("Upload not found.")
        return self._snapshot(session)

    async def cancel_upload(self, upload_id: str, *, user_id: str | None = None, reason: str = "client") -> None:
        """Cancel an upload. Unknown, foreign, already-cancelled and finished uploads are a no-op."""
        session = self._lookup(upload_id, user_id, active_only=True)
        if session is None:
            return

        async with session.lock:
            if session.is_terminal:
                return
            session.status = "cancelled"

        with log_context(upload_id=upload_id):
            if not await self.chunk_store.purge(upload_id):
                logger.warning("upload cancelled with leftover chunk files")
            session.finished_at = self._clock()
            self.store.retire(session)
            logger.info("upload cancelled", extra={"reason": reason})

    # ------------------------------------------------------------------
    # Staleness reaper
    # ------------------------------------------------------------------
    async def reap_stale_sessions(self) -> list[str]:
        cutoff = self._clock() - self.stale_timeout_seconds
        stale_ids = [
            session.session_id
            for session in self.store.active_sessions()
            if session.status == "uploading" and session.last_activity_at < cutoff
        ]
        for upload_id in stale_ids:
            await self.cancel_upload(upload_id, reason="stale")

        pruned = self.store.prune_retired(finished_before=cutoff)
        if stale_ids or pruned:
            logger.info("stale uploads reaped", extra={"reaped": len(stale_ids), "pruned": len(pruned)})
        return stale_ids

    async def _run_reaper(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval_seconds)
            try:
                await self.reap_stale_sessions()
            except Exception:
                logger.exception("stale upload reaper pass failed")

    def start(self) -> None:
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._run_reaper())

    async def stop(self) -> None:
        if self._reaper_task is None:
            return
        self._reaper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reaper_task
        self._reaper_task = None


def create_upload_manager(settings: Settings, sink: UploadRecordSink) -> UploadSessionManager:
    chunk_store = ChunkStore(settings.upload_dir)
    assembler = Assembler(chunk_store, sink, settings.completed_dir)
    return UploadSessionManager(
        chunk_store,
        assembler,
        chunk_size=settings.upload_chunk_size,
        max_file_size=settings.upload_max_file_size,
        allowed_formats=settings.upload_allowed_formats,
        stale_timeout_seconds=settings.upload_stale_timeout_seconds,
        reap_interval_seconds=settings.upload_reap_interval_seconds,
    )

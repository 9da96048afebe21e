"""On-disk holding area for inbound chunks, keyed by (upload id, chunk index)."""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import shutil
import uuid

from clipforge.core.constants import UPLOAD_ID_RE
from clipforge.core.errors import StorageIOError

logger = logging.getLogger(__name__)

CHUNK_FILE_PREFIX = "chunk_"


class ChunkStore:
    """
    Durable storage for partial uploads.

    Every upload owns one directory under ``root``; chunk ``n`` lives in
    ``chunk_<n>``. Writes go to a temporary file first and are renamed into
    place, so a re-sent chunk replaces the old one atomically.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = pathlib.Path(root)

    def session_dir(self, upload_id: str) -> pathlib.Path:
        if not UPLOAD_ID_RE.match(upload_id):
            raise ValueError(f"Invalid upload id: {upload_id!r}")
        return self.root / upload_id

    def chunk_path(self, upload_id: str, chunk_index: int) -> pathlib.Path:
        return self.session_dir(upload_id) / f"{CHUNK_FILE_PREFIX}{chunk_index}"

    # ------------------------------------------------------------------
    # Blocking primitives (run in a worker thread)
    # ------------------------------------------------------------------
    def _provision(self, upload_id: str) -> None:
        self.session_dir(upload_id).mkdir(parents=True, exist_ok=True)

    def _write(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        target = self.chunk_path(upload_id, chunk_index)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")
        try:
            with open(tmp_path, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        finally:
            tmp_path.unlink(missing_ok=True)

    def _discard_chunk(self, upload_id: str, chunk_index: int) -> None:
        self.chunk_path(upload_id, chunk_index).unlink(missing_ok=True)

    def _purge(self, upload_id: str) -> None:
        shutil.rmtree(self.session_dir(upload_id), ignore_errors=False)

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------
    async def provision(self, upload_id: str) -> None:
        try:
            await asyncio.to_thread(self._provision, upload_id)
        except OSError as exc:
            raise StorageIOError("Failed to create upload storage.") from exc

    async def write_chunk(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._write, upload_id, chunk_index, data)
        except OSError as exc:
            raise StorageIOError(f"Failed to store chunk {chunk_index}.") from exc

    async def discard_chunk(self, upload_id: str, chunk_index: int) -> None:
        try:
            await asyncio.to_thread(self._discard_chunk, upload_id, chunk_index)
        except OSError:
            logger.warning(
                "failed to discard chunk",
                extra={"upload_id": upload_id, "chunk_index": chunk_index},
                exc_info=True,
            )

    async def purge(self, upload_id: str) -> bool:
        """Remove every chunk of an upload. Returns False if deletion failed (logged, never raised)."""
        try:
            await asyncio.to_thread(self._purge, upload_id)
        except FileNotFoundError:
            return True
        except OSError:
            logger.warning("failed to purge upload storage", extra={"upload_id": upload_id}, exc_info=True)
            return False
        return True

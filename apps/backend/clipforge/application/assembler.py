from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import shutil
from dataclasses import dataclass
from typing import Any

from clipforge.application.sessions import UploadSession
from clipforge.core.constants import DEFAULT_MIME_TYPE, MIME_TYPES, UPLOAD_RECORD_STATUS
from clipforge.core.errors import StorageIOError, UploadValidationError
from clipforge.services.chunk_store import ChunkStore
from clipforge.services.collaborators import UploadRecord, UploadRecordSink

logger = logging.getLogger(__name__)

COPY_BUFFER_BYTES = 1024 * 1024


@dataclass(frozen=True)
class AssemblyResult:
    path: pathlib.Path
    size: int
    mime_type: str
    record: dict[str, Any]


def detect_mime_type(filename: str) -> str:
    return MIME_TYPES.get(pathlib.Path(filename).suffix.lower(), DEFAULT_MIME_TYPE)


def _safe_filename(filename: str) -> str:
    # Client-supplied names may carry directories; only the basename is used on disk.
    name = pathlib.PurePath(filename.replace("\\", "/")).name
    return name or "upload.bin"


class Assembler:
    """Concatenates the chunks of a complete upload into its final file."""

    def __init__(self, chunk_store: ChunkStore, sink: UploadRecordSink, completed_dir: str | os.PathLike[str]) -> None:
        self.chunk_store = chunk_store
        self.sink = sink
        self.completed_dir = pathlib.Path(completed_dir)

    def output_path(self, session: UploadSession) -> pathlib.Path:
        return self.completed_dir / session.session_id / _safe_filename(session.filename)

    def _concatenate(self, session: UploadSession, output_path: pathlib.Path) -> int:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        with open(output_path, "wb") as outfile:
            # Ascending index order is what makes the output byte-exact, whatever order chunks arrived in.
            for chunk_index in range(session.declared_total_chunks):
                chunk_path = self.chunk_store.chunk_path(session.session_id, chunk_index)
                with open(chunk_path, "rb") as infile:
                    shutil.copyfileobj(infile, outfile, COPY_BUFFER_BYTES)
                written = outfile.tell()
            outfile.flush()
            os.fsync(outfile.fileno())
        return written

    async def assemble(self, session: UploadSession) -> AssemblyResult:
        """
        Build the final file for a session whose chunks are all present.

        Chunk files are removed once the copy has finished, whether it
        succeeded or not. A partial output file is left in place on failure
        for diagnosis. The persistence sink is called once, only on success.

        Raises:
            StorageIOError: A chunk is missing or the disk failed.
            UploadValidationError: The chunks do not add up to the declared size.
        """
        output_path = self.output_path(session)
        try:
            written = await asyncio.to_thread(self._concatenate, session, output_path)
        except FileNotFoundError as exc:
            raise StorageIOError(f"Chunk file missing during assembly: {exc.filename}") from exc
        except OSError as exc:
            raise StorageIOError("Failed to assemble upload.") from exc
        finally:
            await self.chunk_store.purge(session.session_id)

        if written != session.declared_total_size:
            logger.warning(
                "assembled size mismatch",
                extra={"expected_bytes": session.declared_total_size, "written_bytes": written},
            )
            raise UploadValidationError(
                f"Assembled {written} bytes but {session.declared_total_size} bytes were declared."
            )

        mime_type = detect_mime_type(session.filename)
        record = await self.sink.create_upload_record(
            UploadRecord(
                user_id=session.user_id,
                filename=output_path.name,
                original_name=session.filename,
                file_path=str(output_path),
                file_size=written,
                mime_type=mime_type,
                status=UPLOAD_RECORD_STATUS,
            )
        )
        logger.info("upload assembled", extra={"path": str(output_path), "size_bytes": written})
        return AssemblyResult(path=output_path, size=written, mime_type=mime_type, record=record)

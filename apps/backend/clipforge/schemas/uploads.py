from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UploadStatus = Literal["uploading", "finalizing", "completed", "failed", "cancelled"]


class CamelModel(BaseModel):
    """JSON uses camelCase to match the web client; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitUploadRequest(CamelModel):
    filename: str = Field(min_length=1)
    total_size: int
    total_chunks: int


class InitUploadResponse(CamelModel):
    upload_id: str
    chunk_size: int


class ChunkUploadResponse(CamelModel):
    accepted: bool
    uploaded_chunks: int
    total_chunks: int
    progress: float
    eta: int
    status: UploadStatus
    error: str | None = None


class UploadProgressResponse(CamelModel):
    upload_id: str
    filename: str
    progress: float
    eta: int
    status: UploadStatus
    bytes_uploaded: int
    total_bytes: int
    error: str | None = None
    record_id: str | None = None


class CancelUploadResponse(CamelModel):
    success: bool


class ResumeUploadResponse(CamelModel):
    upload_id: str
    uploaded_chunks: list[int]
    total_chunks: int
    next_chunk: int

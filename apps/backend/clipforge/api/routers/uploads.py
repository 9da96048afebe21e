from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, UploadFile

from clipforge.api.deps.auth import AuthContext, get_auth_context
from clipforge.api.deps.uploads import get_upload_manager
from clipforge.application.uploads import UploadSessionManager
from clipforge.schemas.errors import ErrorResponse
from clipforge.schemas.uploads import (
    CancelUploadResponse,
    ChunkUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    ResumeUploadResponse,
    UploadProgressResponse,
)

router = APIRouter(prefix="/upload", tags=["uploads"])

_AUTH_RESPONSES: dict[int | str, dict[str, object]] = {
    401: {"model": ErrorResponse, "description": "Missing or invalid auth token."},
    500: {"model": ErrorResponse, "description": "Unexpected server error."},
}


@router.post(
    "/init",
    response_model=InitUploadResponse,
    responses={
        **_AUTH_RESPONSES,
        400: {"model": ErrorResponse, "description": "Invalid metadata, unsupported format or file too large."},
    },
)
async def init_upload(
    payload: InitUploadRequest,
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    manager: Annotated[UploadSessionManager, Depends(get_upload_manager)],
) -> InitUploadResponse:
    initialized = await manager.initialize_upload(
        payload.filename,
        payload.total_size,
        payload.total_chunks,
        user_id=auth.user_id,
    )
    return InitUploadResponse(upload_id=initialized.upload_id, chunk_size=initialized.chunk_size)


@router.post(
    "/{upload_id}/chunk",
    response_model=ChunkUploadResponse,
    responses={
        **_AUTH_RESPONSES,
        400: {"model": ErrorResponse, "description": "Missing or invalid chunk."},
        404: {"model": ErrorResponse, "description": "Upload session not found or expired."},
        413: {"model": ErrorResponse, "description": "Chunk request too large."},
    },
)
async def upload_chunk(
    upload_id: str,
    chunk_number: Annotated[int, Form(alias="chunkNumber")],
    chunk: Annotated[UploadFile, File()],
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    manager: Annotated[UploadSessionManager, Depends(get_upload_manager)],
) -> ChunkUploadResponse:
    data = await chunk.read()
    receipt = await manager.accept_chunk(upload_id, chunk_number, data, user_id=auth.user_id)
    return ChunkUploadResponse(
        accepted=receipt.accepted,
        uploaded_chunks=receipt.uploaded_chunks,
        total_chunks=receipt.total_chunks,
        progress=receipt.progress,
        eta=receipt.eta_ms,
        status=receipt.status,
        error=receipt.error,
    )


@router.get(
    "/{upload_id}/progress",
    response_model=UploadProgressResponse,
    responses={**_AUTH_RESPONSES, 404: {"model": ErrorResponse, "description": "Upload not found."}},
)
async def get_upload_progress(
    upload_id: str,
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    manager: Annotated[UploadSessionManager, Depends(get_upload_manager)],
) -> UploadProgressResponse:
    snapshot = manager.get_progress(upload_id, user_id=auth.user_id)
    return UploadProgressResponse(
        upload_id=snapshot.upload_id,
        filename=snapshot.filename,
        progress=snapshot.progress,
        eta=snapshot.eta_ms,
        status=snapshot.status,
        bytes_uploaded=snapshot.bytes_uploaded,
        total_bytes=snapshot.total_bytes,
        error=snapshot.error,
        record_id=snapshot.record_id,
    )


@router.post("/{upload_id}/cancel", response_model=CancelUploadResponse, responses=_AUTH_RESPONSES)
async def cancel_upload(
    upload_id: str,
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    manager: Annotated[UploadSessionManager, Depends(get_upload_manager)],
) -> CancelUploadResponse:
    await manager.cancel_upload(upload_id, user_id=auth.user_id)
    return CancelUploadResponse(success=True)


@router.get(
    "/{upload_id}/resume",
    response_model=ResumeUploadResponse,
    responses={**_AUTH_RESPONSES, 404: {"model": ErrorResponse, "description": "Upload session not found or expired."}},
)
async def resume_upload(
    upload_id: str,
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    manager: Annotated[UploadSessionManager, Depends(get_upload_manager)],
) -> ResumeUploadResponse:
    state = await manager.resume_upload(upload_id, user_id=auth.user_id)
    return ResumeUploadResponse(
        upload_id=state.upload_id,
        uploaded_chunks=state.uploaded_chunks,
        total_chunks=state.total_chunks,
        next_chunk=state.next_chunk,
    )

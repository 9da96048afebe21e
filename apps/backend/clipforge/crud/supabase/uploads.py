"""Supabase uploads CRUD."""

from __future__ import annotations

from typing import Any

from postgrest import APIError

from clipforge.services.supabase.helpers import first_row, raise_for_postgrest_error
from supabase import AsyncClient


async def create_upload(
    client: AsyncClient,
    *,
    user_id: str,
    filename: str,
    original_name: str,
    file_path: str,
    file_size: int,
    mime_type: str,
    status: str,
) -> dict[str, Any]:
    """Insert an assembled upload and return the stored row."""
    try:
        response = (
            await client.table("uploads")
            .insert(
                {
                    "user_id": user_id,
                    "filename": filename,
                    "original_name": original_name,
                    "file_path": file_path,
                    "file_size": file_size,
                    "mime_type": mime_type,
                    "status": status,
                }
            )
            .execute()
        )
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to create upload record.")

    return first_row(response.data, error_message="Failed to create upload record.")

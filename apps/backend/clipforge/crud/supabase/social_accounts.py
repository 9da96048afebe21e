"""Supabase social account CRUD."""

from __future__ import annotations

from typing import Any

from postgrest import APIError

from clipforge.services.supabase.helpers import raise_for_postgrest_error
from supabase import AsyncClient


async def fetch_active_social_account(client: AsyncClient, *, user_id: str, platform: str) -> dict[str, Any] | None:
    """Fetch the newest active account a user connected for a platform."""
    try:
        response = await (
            client.table("social_accounts")
            .select("id,platform,account_id,access_token,expires_at")
            .eq("user_id", user_id)
            .eq("platform", platform)
            .eq("is_active", True)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to fetch social account.")

    rows = response.data or []
    if not rows:
        return None
    return dict(rows[0])

"""Supabase client factories."""

from __future__ import annotations

from clipforge.core.config import Settings
from clipforge.core.errors import ConfigurationError
from supabase import AsyncClient, AsyncClientOptions, create_async_client


def _normalize_supabase_url(url: str) -> str:
    """Ensure the Supabase URL has a trailing slash (required by storage client)."""
    return url.rstrip("/") + "/"


async def create_supabase_admin_client(settings: Settings) -> AsyncClient:
    """Create a Supabase client with admin (service role) credentials."""
    if not settings.supabase_url or not settings.supabase_secret_key:
        raise ConfigurationError("Supabase admin client is not configured. Missing SUPABASE_URL or SUPABASE_SECRET_KEY.")

    supabase_url = _normalize_supabase_url(settings.supabase_url)
    return await create_async_client(supabase_url, settings.supabase_secret_key)


async def create_supabase_user_client(settings: Settings, access_token: str) -> AsyncClient:
    """Create a Supabase client scoped to a user's JWT for RLS."""
    if not settings.supabase_url or not settings.supabase_publishable_key:
        raise ConfigurationError(
            "Supabase user client is not configured. Missing SUPABASE_URL or SUPABASE_PUBLISHABLE_KEY."
        )

    options = AsyncClientOptions(
        headers={
            "Authorization": f"Bearer {access_token}",
        },
        persist_session=False,
    )
    supabase_url = _normalize_supabase_url(settings.supabase_url)
    return await create_async_client(supabase_url, settings.supabase_publishable_key, options)

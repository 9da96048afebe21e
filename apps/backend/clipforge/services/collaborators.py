"""
Contracts for the collaborators the upload core depends on.

The core only needs two things from the rest of the platform: somewhere to
persist an assembled upload, and a valid OAuth access token per
(user, platform). Both are Protocols so tests and other deployments can
supply their own; the Supabase-backed implementations below are the defaults.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from clipforge.core.config import Settings
from clipforge.crud.supabase.social_accounts import fetch_active_social_account
from clipforge.crud.supabase.uploads import create_upload
from clipforge.services.supabase import create_supabase_admin_client
from supabase import AsyncClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadRecord:
    user_id: str
    filename: str
    original_name: str
    file_path: str
    file_size: int
    mime_type: str
    status: str


class UploadRecordSink(Protocol):
    async def create_upload_record(self, record: UploadRecord) -> dict[str, Any]: ...


class TokenProvider(Protocol):
    async def get_valid_token(self, user_id: str, platform: str) -> str | None: ...


class _LazyAdminClient:
    """Creates the Supabase admin client on first use and reuses it afterwards."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client: AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> AsyncClient:
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = await create_supabase_admin_client(self._settings)
        return self._client


class SupabaseUploadSink:
    """Writes assembled uploads to the `uploads` table."""

    def __init__(self, settings: Settings) -> None:
        self._admin = _LazyAdminClient(settings)

    async def create_upload_record(self, record: UploadRecord) -> dict[str, Any]:
        client = await self._admin.get()
        return await create_upload(client, **asdict(record))


def _parse_expires_at(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class SupabaseTokenProvider:
    """Reads platform access tokens from the `social_accounts` table.

    Token refresh belongs to the OAuth flow; an expired token is reported as
    missing so the caller can ask the user to reconnect.
    """

    def __init__(self, settings: Settings) -> None:
        self._admin = _LazyAdminClient(settings)

    async def get_valid_token(self, user_id: str, platform: str) -> str | None:
        client = await self._admin.get()
        account = await fetch_active_social_account(client, user_id=user_id, platform=platform)
        if not account:
            return None

        access_token = account.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            return None

        expires_at = _parse_expires_at(account.get("expires_at"))
        if expires_at is not None and expires_at <= datetime.now(UTC):
            logger.info("social account token expired", extra={"platform": platform, "account_id": account.get("id")})
            return None

        return access_token

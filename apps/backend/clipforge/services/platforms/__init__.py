"""Outbound chunked-transfer adapters."""

import httpx

from clipforge.core.config import Settings
from clipforge.services.collaborators import TokenProvider
from clipforge.services.platforms.base import (
    ChunkResult,
    OutboundProgress,
    OutboundUploadSession,
    Platform,
    TransferAdapter,
    TransferResult,
    calculate_chunks,
)
from clipforge.services.platforms.tiktok import TikTokUploadAdapter
from clipforge.services.platforms.twitter import TwitterMediaAdapter
from clipforge.services.platforms.youtube import YouTubeResumableAdapter


def create_adapters(
    settings: Settings,
    http_client: httpx.AsyncClient,
    token_provider: TokenProvider,
) -> dict[Platform, TransferAdapter]:
    chunk_size = settings.outbound_chunk_size
    return {
        Platform.YOUTUBE: YouTubeResumableAdapter(
            http_client, token_provider, chunk_size=chunk_size, upload_url=settings.youtube_upload_url
        ),
        Platform.TWITTER: TwitterMediaAdapter(
            http_client, token_provider, chunk_size=chunk_size, upload_url=settings.twitter_upload_url
        ),
        Platform.TIKTOK: TikTokUploadAdapter(
            http_client, token_provider, chunk_size=chunk_size, api_url=settings.tiktok_api_url
        ),
    }


__all__ = [
    "ChunkResult",
    "OutboundProgress",
    "OutboundUploadSession",
    "Platform",
    "TikTokUploadAdapter",
    "TransferAdapter",
    "TransferResult",
    "TwitterMediaAdapter",
    "YouTubeResumableAdapter",
    "calculate_chunks",
    "create_adapters",
]

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from clipforge.core.errors import InvalidRequestError
from clipforge.core.logging import log_context
from clipforge.services.platforms import Platform, TransferAdapter, TransferResult

logger = logging.getLogger(__name__)


class OutboundTransferService:
    """Drives a complete outbound transfer through one platform adapter."""

    def __init__(self, adapters: Mapping[Platform, TransferAdapter]) -> None:
        self.adapters = dict(adapters)

    def adapter_for(self, platform: Platform | str) -> TransferAdapter:
        try:
            return self.adapters[Platform(platform)]
        except (KeyError, ValueError) as exc:
            raise InvalidRequestError(f"Unsupported platform: {platform}") from exc

    async def transfer(
        self,
        platform: Platform | str,
        user_id: str,
        file_path: str | os.PathLike[str],
        **options: Any,
    ) -> TransferResult:
        """
        Initialize, send every chunk in ascending order, then finalize.

        The first failure propagates. A chunk response that reports completion
        ends the chunk loop early. The adapter session is discarded either way.
        """
        adapter = self.adapter_for(platform)
        session = await adapter.initialize(user_id, file_path, **options)

        with log_context(transfer_id=session.session_id, platform=adapter.platform.value, user_id=user_id):
            try:
                logger.info("transfer started", extra={"total_chunks": len(session.chunks)})
                for chunk in session.chunks:
                    result = await adapter.upload_chunk(session.session_id, chunk.index)
                    if result.completed:
                        break
                transfer_result = await adapter.finalize(session.session_id)
                logger.info("transfer finished", extra={"remote_media_id": transfer_result.remote_media_id})
            except Exception:
                logger.warning("transfer failed", extra={"status": session.status})
                raise
            finally:
                adapter.discard(session.session_id)
        return transfer_result

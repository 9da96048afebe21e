from __future__ import annotations

from fastapi import Request

from clipforge.application.uploads import UploadSessionManager
from clipforge.core.errors import NotReadyError


def get_upload_manager(request: Request) -> UploadSessionManager:
    manager: UploadSessionManager | None = getattr(request.app.state, "upload_manager", None)
    if manager is None:
        raise NotReadyError("Upload service is not running.")
    return manager

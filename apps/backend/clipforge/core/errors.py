class AppError(Exception):
    """Base class for all application errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidRequestError(AppError):
    """Client sent a malformed or invalid request (400)."""

    status_code = 400
    code = "invalid_request"


class AuthenticationError(AppError):
    """Client is not authenticated or token is invalid/expired (401)."""

    status_code = 401
    code = "unauthorized"


class ForbiddenError(AppError):
    """Client is authenticated but lacks permission to access the resource (403)."""

    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    """Requested resource does not exist (404)."""

    status_code = 404
    code = "not_found"


class RequestTooLargeError(AppError):
    """Request body exceeds the allowed size (413)."""

    status_code = 413
    code = "request_too_large"


class ConfigurationError(AppError):
    """Server misconfiguration (500)."""

    status_code = 500
    code = "configuration_error"


class ExternalServiceError(AppError):
    """Upstream service failed or returned an invalid response (502)."""

    status_code = 502
    code = "external_service_error"


class NotReadyError(AppError):
    """Service is temporarily unavailable (503)."""

    status_code = 503
    code = "not_ready"


# ---------------------------------------------------------------------------
# Upload errors
# ---------------------------------------------------------------------------
class UploadValidationError(InvalidRequestError):
    """Unsupported file type or inconsistent upload/chunk metadata (400)."""

    code = "invalid_upload"


class SizeLimitError(InvalidRequestError):
    """Declared upload size exceeds the configured maximum (400)."""

    code = "file_too_large"


class SessionNotFoundError(NotFoundError):
    """Upload session is unknown, expired, or already finished (404).

    The client has to restart the upload from init.
    """

    code = "upload_session_not_found"


class StorageIOError(AppError):
    """Local disk read/write failed while handling chunks (500)."""

    status_code = 500
    code = "storage_io_error"


class PlatformNotConnectedError(InvalidRequestError):
    """No valid access token is available for the target platform (400)."""

    code = "platform_not_connected"


class RemoteProtocolError(ExternalServiceError):
    """A platform upload API answered with a non-success status (502)."""

    code = "remote_protocol_error"

    def __init__(self, detail: str, *, platform: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.platform = platform
        self.upstream_status = status_code

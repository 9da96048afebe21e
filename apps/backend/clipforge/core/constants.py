"""Application-wide constants."""

import re

# ---------------------------------------------------------------------------
# Inbound uploads
# ---------------------------------------------------------------------------
UPLOAD_ID_RE = re.compile(r"^[0-9a-f]{32}$")

DEFAULT_UPLOAD_CHUNK_SIZE = 5 * 1024 * 1024  # 5 MiB
DEFAULT_MAX_FILE_SIZE = 2 * 1024 * 1024 * 1024  # 2 GiB
DEFAULT_STALE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_REAP_INTERVAL_SECONDS = 5 * 60

DEFAULT_ALLOWED_FORMATS: dict[str, tuple[str, ...]] = {
    "video": (".mp4", ".mov", ".avi", ".mkv", ".webm"),
    "audio": (".mp3", ".wav", ".m4a", ".aac", ".flac"),
    "text": (".txt", ".rtf", ".md", ".docx"),
}

MIME_TYPES: dict[str, str] = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".flac": "audio/flac",
    ".txt": "text/plain",
    ".rtf": "application/rtf",
    ".md": "text/markdown",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

UPLOAD_RECORD_STATUS = "uploaded"

# ---------------------------------------------------------------------------
# Outbound transfers
# ---------------------------------------------------------------------------
DEFAULT_OUTBOUND_CHUNK_SIZE = 256 * 1024 * 1024  # 256 MiB
YOUTUBE_CHUNK_MULTIPLE = 256 * 1024  # resumable uploads require 256 KiB multiples

from __future__ import annotations

import pathlib
from dataclasses import asdict
from typing import Any

import pytest

from clipforge.application.assembler import Assembler
from clipforge.application.uploads import UploadSessionManager
from clipforge.services.chunk_store import ChunkStore
from clipforge.services.collaborators import UploadRecord

TEST_CHUNK_SIZE = 1024
ALLOWED_FORMATS = {
    "video": [".mp4", ".mov"],
    "audio": [".mp3", ".wav"],
    "text": [".txt"],
}


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    def __init__(self) -> None:
        self.records: list[UploadRecord] = []

    async def create_upload_record(self, record: UploadRecord) -> dict[str, Any]:
        self.records.append(record)
        return {"id": len(self.records), **asdict(record)}


class FailingSink:
    async def create_upload_record(self, record: UploadRecord) -> dict[str, Any]:
        raise RuntimeError("database unavailable")


class StaticTokenProvider:
    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self.tokens = tokens or {}
        self.calls: list[tuple[str, str]] = []

    async def get_valid_token(self, user_id: str, platform: str) -> str | None:
        self.calls.append((user_id, platform))
        return self.tokens.get(platform)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def upload_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "uploads"


@pytest.fixture
def completed_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "completed"


@pytest.fixture
def chunk_store(upload_dir: pathlib.Path) -> ChunkStore:
    return ChunkStore(upload_dir)


@pytest.fixture
def make_manager(chunk_store: ChunkStore, sink: RecordingSink, completed_dir: pathlib.Path, clock: FakeClock):
    def _make(**overrides: Any) -> UploadSessionManager:
        options: dict[str, Any] = {
            "chunk_size": TEST_CHUNK_SIZE,
            "max_file_size": 100 * TEST_CHUNK_SIZE,
            "allowed_formats": ALLOWED_FORMATS,
            "stale_timeout_seconds": 60.0,
            "reap_interval_seconds": 10.0,
            "clock": clock,
        }
        record_sink = overrides.pop("sink", sink)
        options.update(overrides)
        assembler = Assembler(chunk_store, record_sink, completed_dir)
        return UploadSessionManager(chunk_store, assembler, **options)

    return _make


@pytest.fixture
def manager(make_manager) -> UploadSessionManager:
    return make_manager()


@pytest.fixture
def token_provider() -> StaticTokenProvider:
    return StaticTokenProvider({"youtube": "yt-token", "twitter": "tw-token", "tiktok": "tt-token"})


@pytest.fixture
def media_file(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "clip.mp4"
    path.write_bytes(bytes(range(256)) * 10)  # 2560 bytes
    return path

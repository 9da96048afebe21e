"""Inbound upload session records and the table that owns them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal

UploadStatus = Literal["uploading", "finalizing", "completed", "failed", "cancelled"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


@dataclass
class UploadSession:
    session_id: str
    user_id: str
    filename: str
    declared_total_size: int
    declared_total_chunks: int
    created_at: float
    last_activity_at: float
    # chunk index -> byte length of the stored payload
    received_chunks: dict[int, int] = field(default_factory=dict)
    status: UploadStatus = "uploading"
    error: str | None = None
    file_path: str | None = None
    record: dict[str, Any] | None = None
    finished_at: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def bytes_received(self) -> int:
        return sum(self.received_chunks.values())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def all_chunks_present(self) -> bool:
        return len(self.received_chunks) == self.declared_total_chunks

    def next_missing_chunk(self) -> int:
        for index in range(self.declared_total_chunks):
            if index not in self.received_chunks:
                return index
        return -1


class SessionStore:
    """
    Session table for one UploadSessionManager.

    Active sessions accept chunks; retired ones are terminal snapshots kept
    only so progress stays queryable until the reaper prunes them.
    """

    def __init__(self) -> None:
        self._active: dict[str, UploadSession] = {}
        self._retired: dict[str, UploadSession] = {}

    def add(self, session: UploadSession) -> None:
        self._active[session.session_id] = session

    def get_active(self, session_id: str) -> UploadSession | None:
        return self._active.get(session_id)

    def get(self, session_id: str) -> UploadSession | None:
        return self._active.get(session_id) or self._retired.get(session_id)

    def retire(self, session: UploadSession) -> None:
        self._active.pop(session.session_id, None)
        self._retired[session.session_id] = session

    def active_sessions(self) -> list[UploadSession]:
        return list(self._active.values())

    def prune_retired(self, *, finished_before: float) -> list[str]:
        stale = [
            session_id
            for session_id, session in self._retired.items()
            if session.finished_at is not None and session.finished_at < finished_before
        ]
        for session_id in stale:
            self._retired.pop(session_id, None)
        return stale

    def __len__(self) -> int:
        return len(self._active)

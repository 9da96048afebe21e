import asyncio
import itertools
import os

import pytest
from conftest import TEST_CHUNK_SIZE, FailingSink

from clipforge.core.errors import SessionNotFoundError, SizeLimitError, StorageIOError, UploadValidationError


def _payloads(total_size: int, chunk_size: int = TEST_CHUNK_SIZE) -> list[bytes]:
    data = os.urandom(total_size)
    return [data[offset : offset + chunk_size] for offset in range(0, total_size, chunk_size)]


async def _init(manager, payloads: list[bytes], filename: str = "clip.mp4", user_id: str = "user-1") -> str:
    total = sum(len(p) for p in payloads)
    initialized = await manager.initialize_upload(filename, total, len(payloads), user_id=user_id)
    return initialized.upload_id


# ---------------------------------------------------------------------------
# initialize_upload
# ---------------------------------------------------------------------------
async def test_initialize_returns_id_and_chunk_size(manager, chunk_store):
    initialized = await manager.initialize_upload("clip.mp4", 3000, 3, user_id="user-1")

    assert len(initialized.upload_id) == 32
    assert initialized.chunk_size == TEST_CHUNK_SIZE
    assert chunk_store.session_dir(initialized.upload_id).is_dir()
    progress = manager.get_progress(initialized.upload_id)
    assert progress.status == "uploading"
    assert progress.progress == 0.0


@pytest.mark.parametrize(
    ("filename", "total_size", "total_chunks"),
    [
        ("", 100, 1),
        ("clip.exe", 100, 1),
        ("clip.mp4", 0, 1),
        ("clip.mp4", 100, 0),
        ("clip.mp4", 3, 5),
        ("clip.mp4", 3 * TEST_CHUNK_SIZE, 2),
    ],
)
async def test_initialize_rejects_invalid_metadata(manager, filename, total_size, total_chunks):
    with pytest.raises(UploadValidationError):
        await manager.initialize_upload(filename, total_size, total_chunks, user_id="user-1")
    assert len(manager.store) == 0


async def test_initialize_rejects_oversized_file(manager):
    with pytest.raises(SizeLimitError):
        await manager.initialize_upload("clip.mp4", 101 * TEST_CHUNK_SIZE, 101, user_id="user-1")


def test_file_category_is_case_insensitive(manager):
    assert manager.file_category("Track.MP3") == "audio"
    assert manager.file_category("notes.txt") == "text"
    assert manager.file_category("archive.zip") is None


# ---------------------------------------------------------------------------
# accept_chunk
# ---------------------------------------------------------------------------
async def test_duplicate_chunk_counts_once(manager):
    payloads = _payloads(3 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)

    first = await manager.accept_chunk(upload_id, 0, payloads[0])
    second = await manager.accept_chunk(upload_id, 0, payloads[0])

    assert first.uploaded_chunks == second.uploaded_chunks == 1
    assert manager.get_progress(upload_id).bytes_uploaded == TEST_CHUNK_SIZE


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
async def test_any_arrival_order_assembles_in_index_order(manager, sink, order):
    payloads = _payloads(2 * TEST_CHUNK_SIZE + 17)
    upload_id = await _init(manager, payloads)

    receipt = None
    for index in order:
        receipt = await manager.accept_chunk(upload_id, index, payloads[index])

    assert receipt is not None
    assert receipt.status == "completed"
    assert receipt.progress == 100.0
    assert receipt.uploaded_chunks == 3
    assert len(sink.records) == 1
    record = sink.records[0]
    with open(record.file_path, "rb") as handle:
        assert handle.read() == b"".join(payloads)


async def test_completion_cleans_up_chunks_and_retires_session(manager, chunk_store):
    payloads = _payloads(TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)

    await manager.accept_chunk(upload_id, 0, payloads[0])

    assert not chunk_store.session_dir(upload_id).exists()
    assert manager.store.get_active(upload_id) is None
    snapshot = manager.get_progress(upload_id)
    assert snapshot.status == "completed"
    assert snapshot.eta_ms == 0
    assert snapshot.record_id == "1"


async def test_chunk_for_completed_session_is_not_found(manager):
    payloads = _payloads(TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)
    await manager.accept_chunk(upload_id, 0, payloads[0])

    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk(upload_id, 0, payloads[0])


async def test_short_chunks_fail_assembly_with_size_mismatch(manager, sink):
    upload_id = (await manager.initialize_upload("clip.mp4", 2 * TEST_CHUNK_SIZE, 2, user_id="user-1")).upload_id

    await manager.accept_chunk(upload_id, 0, b"a" * TEST_CHUNK_SIZE)
    receipt = await manager.accept_chunk(upload_id, 1, b"b" * 10)

    assert receipt.accepted is True
    assert receipt.status == "failed"
    assert receipt.error is not None and "declared" in receipt.error
    assert sink.records == []


async def test_chunk_overflowing_declared_size_is_rejected(manager):
    upload_id = (await manager.initialize_upload("clip.mp4", TEST_CHUNK_SIZE + 10, 2, user_id="user-1")).upload_id
    await manager.accept_chunk(upload_id, 0, b"a" * TEST_CHUNK_SIZE)

    with pytest.raises(UploadValidationError):
        await manager.accept_chunk(upload_id, 1, b"b" * 11)
    assert manager.get_progress(upload_id).bytes_uploaded == TEST_CHUNK_SIZE


@pytest.mark.parametrize(("index", "data"), [(-1, b"x"), (3, b"x"), (0, b""), (0, b"x" * (TEST_CHUNK_SIZE + 1))])
async def test_invalid_chunks_are_rejected(manager, index, data):
    upload_id = (await manager.initialize_upload("clip.mp4", 3 * TEST_CHUNK_SIZE, 3, user_id="user-1")).upload_id

    with pytest.raises(UploadValidationError):
        await manager.accept_chunk(upload_id, index, data)


async def test_unknown_session_is_not_found(manager):
    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk("0" * 32, 0, b"x")
    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk("not-an-id", 0, b"x")


async def test_sink_failure_is_reported_in_band(make_manager):
    manager = make_manager(sink=FailingSink())
    payloads = _payloads(TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)

    receipt = await manager.accept_chunk(upload_id, 0, payloads[0])

    assert receipt.status == "failed"
    assert receipt.error == "database unavailable"


async def test_sessions_are_isolated(manager, chunk_store):
    payloads_a = _payloads(3 * TEST_CHUNK_SIZE)
    payloads_b = _payloads(2 * TEST_CHUNK_SIZE)
    upload_a = await _init(manager, payloads_a, user_id="user-a")
    upload_b = await _init(manager, payloads_b, user_id="user-b")

    await asyncio.gather(
        manager.accept_chunk(upload_a, 0, payloads_a[0]),
        manager.accept_chunk(upload_b, 1, payloads_b[1]),
        manager.accept_chunk(upload_a, 2, payloads_a[2]),
    )
    await manager.cancel_upload(upload_b)

    progress_a = manager.get_progress(upload_a)
    assert progress_a.status == "uploading"
    assert progress_a.bytes_uploaded == 2 * TEST_CHUNK_SIZE
    assert chunk_store.chunk_path(upload_a, 0).exists()
    assert not chunk_store.chunk_path(upload_a, 1).exists()
    assert chunk_store.chunk_path(upload_a, 2).exists()
    assert manager.get_progress(upload_b).status == "cancelled"


async def test_concurrent_final_chunks_assemble_once(manager, sink):
    payloads = _payloads(4 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)
    await manager.accept_chunk(upload_id, 0, payloads[0])
    await manager.accept_chunk(upload_id, 1, payloads[1])

    results = await asyncio.gather(
        manager.accept_chunk(upload_id, 2, payloads[2]),
        manager.accept_chunk(upload_id, 3, payloads[3]),
        return_exceptions=True,
    )

    completed = [r for r in results if not isinstance(r, BaseException) and r.status == "completed"]
    assert len(completed) == 1
    assert len(sink.records) == 1


async def test_resent_final_chunk_assembles_once(manager, sink, chunk_store):
    payloads = _payloads(4 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)
    for index in range(3):
        await manager.accept_chunk(upload_id, index, payloads[index])

    results = await asyncio.gather(
        manager.accept_chunk(upload_id, 3, payloads[3]),
        manager.accept_chunk(upload_id, 3, payloads[3]),
        return_exceptions=True,
    )

    completed = [r for r in results if not isinstance(r, BaseException) and r.status == "completed"]
    rejected = [r for r in results if isinstance(r, SessionNotFoundError)]
    assert len(completed) == 1
    assert len(rejected) == 1
    assert len(sink.records) == 1
    with open(sink.records[0].file_path, "rb") as handle:
        assert handle.read() == b"".join(payloads)
    assert not chunk_store.session_dir(upload_id).exists()


async def test_chunk_write_failure_fails_session(manager, chunk_store, monkeypatch):
    payloads = _payloads(2 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)
    await manager.accept_chunk(upload_id, 0, payloads[0])

    async def broken_write(upload_id: str, chunk_index: int, data: bytes) -> None:
        raise StorageIOError(f"Failed to store chunk {chunk_index}.")

    monkeypatch.setattr(chunk_store, "write_chunk", broken_write)

    with pytest.raises(StorageIOError):
        await manager.accept_chunk(upload_id, 1, payloads[1])

    progress = manager.get_progress(upload_id)
    assert progress.status == "failed"
    assert progress.error == "Failed to store chunk 1."
    assert progress.eta_ms == 0
    assert not chunk_store.session_dir(upload_id).exists()
    with pytest.raises(SessionNotFoundError):
        await manager.resume_upload(upload_id)
    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk(upload_id, 1, payloads[1])


async def test_write_failing_after_cancel_is_not_found(manager, chunk_store, monkeypatch):
    payloads = _payloads(2 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)

    async def write_after_cancel(upload_id: str, chunk_index: int, data: bytes) -> None:
        await manager.cancel_upload(upload_id)
        raise StorageIOError(f"Failed to store chunk {chunk_index}.")

    monkeypatch.setattr(chunk_store, "write_chunk", write_after_cancel)

    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk(upload_id, 0, payloads[0])

    progress = manager.get_progress(upload_id)
    assert progress.status == "cancelled"
    assert progress.error is None


async def test_sessions_are_hidden_from_other_users(manager):
    payloads = _payloads(2 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads, user_id="owner")

    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk(upload_id, 0, payloads[0], user_id="intruder")
    with pytest.raises(SessionNotFoundError):
        await manager.resume_upload(upload_id, user_id="intruder")
    with pytest.raises(SessionNotFoundError):
        manager.get_progress(upload_id, user_id="intruder")
    await manager.cancel_upload(upload_id, user_id="intruder")

    receipt = await manager.accept_chunk(upload_id, 0, payloads[0], user_id="owner")
    assert receipt.status == "uploading"
    assert manager.get_progress(upload_id, user_id="owner").bytes_uploaded == TEST_CHUNK_SIZE


# ---------------------------------------------------------------------------
# resume / cancel / reaper
# ---------------------------------------------------------------------------
async def test_resume_reports_missing_chunks(manager):
    payloads = _payloads(4 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)
    await manager.accept_chunk(upload_id, 0, payloads[0])
    await manager.accept_chunk(upload_id, 2, payloads[2])

    state = await manager.resume_upload(upload_id)

    assert state.uploaded_chunks == [0, 2]
    assert state.total_chunks == 4
    assert state.next_chunk == 1


async def test_cancel_is_idempotent_and_destructive(manager, chunk_store):
    payloads = _payloads(2 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)
    await manager.accept_chunk(upload_id, 0, payloads[0])

    await manager.cancel_upload(upload_id)
    await manager.cancel_upload(upload_id)
    await manager.cancel_upload("f" * 32)

    assert not chunk_store.session_dir(upload_id).exists()
    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk(upload_id, 1, payloads[1])
    with pytest.raises(SessionNotFoundError):
        await manager.resume_upload(upload_id)


async def test_reaper_cancels_idle_sessions_only(manager, chunk_store, clock):
    payloads = _payloads(2 * TEST_CHUNK_SIZE)
    idle = await _init(manager, payloads)
    busy = await _init(manager, payloads)
    await manager.accept_chunk(idle, 0, payloads[0])

    clock.advance(45)
    await manager.accept_chunk(busy, 0, payloads[0])
    clock.advance(30)

    reaped = await manager.reap_stale_sessions()

    assert reaped == [idle]
    assert not chunk_store.session_dir(idle).exists()
    assert manager.get_progress(idle).status == "cancelled"
    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk(idle, 1, payloads[1])
    with pytest.raises(SessionNotFoundError):
        await manager.resume_upload(idle)
    assert (await manager.resume_upload(busy)).next_chunk == 1


async def test_resume_keeps_session_alive(manager, clock):
    payloads = _payloads(2 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)

    clock.advance(50)
    await manager.resume_upload(upload_id)
    clock.advance(50)

    assert await manager.reap_stale_sessions() == []


async def test_reaper_prunes_retired_sessions(manager, clock):
    payloads = _payloads(TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)
    await manager.accept_chunk(upload_id, 0, payloads[0])

    clock.advance(61)
    await manager.reap_stale_sessions()

    with pytest.raises(SessionNotFoundError):
        manager.get_progress(upload_id)


async def test_reaper_task_cancels_idle_session_in_background(make_manager, chunk_store, clock):
    manager = make_manager(reap_interval_seconds=0.01)
    payloads = _payloads(2 * TEST_CHUNK_SIZE)
    upload_id = await _init(manager, payloads)
    clock.advance(61)

    manager.start()
    try:
        for _ in range(100):
            if manager.get_progress(upload_id).status == "cancelled":
                break
            await asyncio.sleep(0.01)
    finally:
        await manager.stop()
    await manager.stop()

    assert manager.get_progress(upload_id).status == "cancelled"
    assert not chunk_store.session_dir(upload_id).exists()
    with pytest.raises(SessionNotFoundError):
        await manager.accept_chunk(upload_id, 0, payloads[0])


async def test_end_to_end_out_of_order_scenario(make_manager, sink):
    chunk_size = 5_000_000
    manager = make_manager(chunk_size=chunk_size, max_file_size=20_000_000)
    data = os.urandom(15_000_000)
    chunks = [data[i * chunk_size : (i + 1) * chunk_size] for i in range(3)]

    upload_id = (await manager.initialize_upload("clip.mp4", 15_000_000, 3, user_id="user-1")).upload_id
    await manager.accept_chunk(upload_id, 1, chunks[1])
    await manager.accept_chunk(upload_id, 0, chunks[0])
    receipt = await manager.accept_chunk(upload_id, 2, chunks[2])

    assert receipt.progress == 100.0
    assert receipt.status == "completed"
    assert len(sink.records) == 1
    assert sink.records[0].file_size == 15_000_000
    assert sink.records[0].mime_type == "video/mp4"

"""Tests for the blob-backed upload session store."""
import hashlib
import os
from datetime import datetime, timedelta, timezone

import pytest

from facility_uploads.services.upload_errors import (
    AssemblyFailure,
    IncompleteUpload,
    SessionAlreadyExists,
    SessionNotFound,
    ValidationError,
)
from facility_uploads.services.upload_sessions import UploadSessionStore, compute_upload_id

from conftest import SMALL_CHUNK


async def _init(store, file_size, file_hash="abc123", name="dump.sql"):
    upload_id = compute_upload_id(name, file_size, file_hash)
    await store.initialize(upload_id, name, file_size, file_hash)
    return upload_id


def test_upload_id_is_deterministic():
    a = compute_upload_id("dump.sql", 12_000_000, "abc123")
    b = compute_upload_id("dump.sql", 12_000_000, "abc123")
    assert a == b
    assert len(a) == 64


def test_upload_id_changes_with_hash():
    assert compute_upload_id("dump.sql", 100, "abc123") != compute_upload_id("dump.sql", 100, "abc124")


async def test_initialize_computes_total_chunks(store):
    upload_id = compute_upload_id("dump.sql", 25, "h")
    session = await store.initialize(upload_id, "dump.sql", 25, "h")

    assert session.total_chunks == 3
    assert session.chunk_size == SMALL_CHUNK
    assert session.status.value == "in_progress"
    assert session.expected_chunk_size(3) == 5


async def test_initialize_twice_without_resume_fails(store):
    upload_id = await _init(store, 25)
    with pytest.raises(SessionAlreadyExists):
        await store.initialize(upload_id, "dump.sql", 25, "abc123")


async def test_initialize_with_resume_keeps_chunks(store):
    upload_id = await _init(store, 25)
    await store.save_chunk(upload_id, 1, b"a" * 10)

    session = await store.initialize(upload_id, "dump.sql", 25, "abc123", resume=True)
    progress = await store.get_progress(upload_id)

    assert session.upload_id == upload_id
    assert progress.uploaded_chunks == [1]


async def test_save_chunk_without_session(store):
    upload_id = compute_upload_id("missing.sql", 10, "x")
    with pytest.raises(SessionNotFound):
        await store.save_chunk(upload_id, 1, b"data")


async def test_save_chunk_rejects_out_of_range_number(store):
    upload_id = await _init(store, 25)
    with pytest.raises(ValidationError):
        await store.save_chunk(upload_id, 0, b"data")
    with pytest.raises(ValidationError):
        await store.save_chunk(upload_id, 4, b"data")


async def test_malformed_upload_id_is_unknown(store):
    assert await store.load("../../etc/passwd") is None
    assert await store.get_progress("not-a-real-id") is None
    assert await store.cancel("../../etc/passwd") is False
    with pytest.raises(SessionNotFound):
        await store.save_chunk("not-a-real-id", 1, b"data")


async def test_malformed_upload_id_cannot_be_initialized(store):
    with pytest.raises(ValidationError):
        await store.initialize("../escape", "dump.sql", 10, "x")


async def test_progress_is_derived_from_stored_chunks(store, blob_store):
    upload_id = await _init(store, 50)
    for n in (5, 1, 3):
        await store.save_chunk(upload_id, n, b"x" * 10)

    progress = await store.get_progress(upload_id)
    assert progress.uploaded_chunks == [1, 3, 5]
    assert progress.total_chunks == 5
    assert progress.uploaded_bytes == 30
    assert progress.percent == 60

    # A fresh store over the same storage sees the same state
    reopened = UploadSessionStore(blob_store, chunk_size=SMALL_CHUNK)
    again = await reopened.get_progress(upload_id)
    assert again.uploaded_chunks == [1, 3, 5]


async def test_progress_for_unknown_upload_is_none(store):
    assert await store.get_progress(compute_upload_id("nope.sql", 1, "x")) is None


async def test_chunk_overwrite_last_write_wins(store, tmp_path):
    upload_id = await _init(store, 20)
    await store.save_chunk(upload_id, 1, b"A" * 10)
    await store.save_chunk(upload_id, 1, b"B" * 10)
    await store.save_chunk(upload_id, 2, b"C" * 10)

    progress = await store.get_progress(upload_id)
    assert progress.uploaded_chunks == [1, 2]

    out = tmp_path / "out.sql"
    await store.assemble(upload_id, out)
    assert out.read_bytes() == b"B" * 10 + b"C" * 10


async def test_assemble_uses_numeric_order(store, tmp_path):
    upload_id = await _init(store, 25)
    await store.save_chunk(upload_id, 3, b"33333")
    await store.save_chunk(upload_id, 1, b"1111111111")
    await store.save_chunk(upload_id, 2, b"2222222222")

    out = tmp_path / "out.sql"
    result = await store.assemble(upload_id, out)

    assert result == str(out)
    assert out.read_bytes() == b"1111111111" + b"2222222222" + b"33333"


async def test_assemble_orders_past_nine_chunks_numerically(store, tmp_path):
    upload_id = await _init(store, 120)
    for n in range(12, 0, -1):
        await store.save_chunk(upload_id, n, bytes([n]) * 10)

    out = tmp_path / "out.bin"
    await store.assemble(upload_id, out)
    assert out.read_bytes() == b"".join(bytes([n]) * 10 for n in range(1, 13))


async def test_assemble_purges_session(store, blob_store, tmp_path):
    upload_id = await _init(store, 15)
    await store.save_chunk(upload_id, 1, b"x" * 10)
    await store.save_chunk(upload_id, 2, b"y" * 5)

    await store.assemble(upload_id, tmp_path / "out.sql")

    assert await store.get_progress(upload_id) is None
    assert await blob_store.list(f"chunks/{upload_id}/") == []
    assert await blob_store.list("sessions/") == []


async def test_assemble_incomplete_keeps_chunks(store, tmp_path):
    upload_id = await _init(store, 30)
    await store.save_chunk(upload_id, 1, b"x" * 10)
    await store.save_chunk(upload_id, 3, b"z" * 10)

    out = tmp_path / "out.sql"
    with pytest.raises(IncompleteUpload) as exc_info:
        await store.assemble(upload_id, out)

    assert exc_info.value.uploaded == 2
    assert exc_info.value.expected == 3
    assert not out.exists()
    assert (await store.get_progress(upload_id)).uploaded_chunks == [1, 3]


async def test_assemble_verifies_sha256(store, tmp_path):
    data = b"-- PostgreSQL database dump\nCREATE TABLE t (id int);\n"
    digest = hashlib.sha256(data).hexdigest()
    upload_id = await _init(store, len(data), file_hash=digest)
    for i in range(0, len(data), SMALL_CHUNK):
        await store.save_chunk(upload_id, i // SMALL_CHUNK + 1, data[i:i + SMALL_CHUNK])

    out = tmp_path / "ok.sql"
    await store.assemble(upload_id, out)
    assert out.read_bytes() == data


async def test_assemble_hash_mismatch_fails_and_keeps_chunks(store, tmp_path):
    wrong = hashlib.sha256(b"something else").hexdigest()
    upload_id = await _init(store, 20, file_hash=wrong)
    await store.save_chunk(upload_id, 1, b"a" * 10)
    await store.save_chunk(upload_id, 2, b"b" * 10)

    out = tmp_path / "bad.sql"
    with pytest.raises(AssemblyFailure):
        await store.assemble(upload_id, out)

    assert not out.exists()
    assert (await store.get_progress(upload_id)).uploaded_chunks == [1, 2]


async def test_assemble_skips_hash_check_when_disabled(store, tmp_path):
    wrong = hashlib.sha256(b"something else").hexdigest()
    upload_id = await _init(store, 10, file_hash=wrong)
    await store.save_chunk(upload_id, 1, b"a" * 10)

    out = tmp_path / "out.sql"
    await store.assemble(upload_id, out, verify_hash=False)
    assert out.read_bytes() == b"a" * 10


async def test_cancel_is_idempotent(store, blob_store):
    upload_id = await _init(store, 20)
    await store.save_chunk(upload_id, 1, b"a" * 10)

    assert await store.cancel(upload_id) is True
    assert await store.cancel(upload_id) is False
    assert await store.get_progress(upload_id) is None
    assert await blob_store.list(f"chunks/{upload_id}/") == []

    never_created = compute_upload_id("ghost.sql", 1, "x")
    assert await store.cancel(never_created) is False


async def test_sweep_removes_only_stale_sessions(store, blob_store):
    stale = await _init(store, 20, name="stale.sql")
    fresh = await _init(store, 20, name="fresh.sql")
    await store.save_chunk(stale, 1, b"a" * 10)

    long_ago = (datetime.now(timezone.utc) - timedelta(hours=30)).timestamp()
    os.utime(blob_store._path(f"sessions/{stale}.json"), (long_ago, long_ago))

    swept = await store.sweep_orphans(max_age_hours=24)

    assert swept == [stale]
    assert await store.get_progress(stale) is None
    assert await store.get_progress(fresh) is not None


async def test_sweep_uses_injected_clock(store):
    upload_id = await _init(store, 20)

    assert await store.sweep_orphans(24, now=datetime.now(timezone.utc) + timedelta(hours=1)) == []
    swept = await store.sweep_orphans(24, now=datetime.now(timezone.utc) + timedelta(hours=25))
    assert swept == [upload_id]


async def test_total_chunks_is_exact_for_huge_sizes(blob_store):
    store = UploadSessionStore(blob_store, chunk_size=3)
    size = 3 * 10**17 + 1
    upload_id = compute_upload_id("huge.sql", size, "h")

    session = await store.initialize(upload_id, "huge.sql", size, "h")

    assert session.total_chunks == 10**17 + 1


async def test_save_chunk_marks_activity_without_rewriting_metadata(store, blob_store):
    upload_id = await _init(store, 20)
    key = f"sessions/{upload_id}.json"
    before = await blob_store.get(key)
    long_ago = (datetime.now(timezone.utc) - timedelta(hours=30)).timestamp()
    os.utime(blob_store._path(key), (long_ago, long_ago))

    await store.save_chunk(upload_id, 1, b"a" * 10)

    assert await blob_store.get(key) == before
    session = await store.load(upload_id)
    assert session.last_touched_at > datetime.now(timezone.utc) - timedelta(minutes=5)


async def test_chunk_written_during_cancel_does_not_revive_session(store, blob_store, monkeypatch):
    upload_id = await _init(store, 20)
    real_put = blob_store.put

    async def put_after_cancel(key, data):
        if key.startswith("chunks/"):
            await store.cancel(upload_id)
        await real_put(key, data)

    monkeypatch.setattr(blob_store, "put", put_after_cancel)

    with pytest.raises(SessionNotFound):
        await store.save_chunk(upload_id, 1, b"a" * 10)

    assert await store.get_progress(upload_id) is None
    assert not await blob_store.exists(f"sessions/{upload_id}.json")
    assert await blob_store.list(f"chunks/{upload_id}/") == []


async def test_resume_during_cancel_starts_a_fresh_session(store, blob_store, monkeypatch):
    upload_id = await _init(store, 20)
    await store.save_chunk(upload_id, 1, b"a" * 10)
    real_touch = blob_store.touch

    async def touch_after_cancel(key):
        await store.cancel(upload_id)
        return await real_touch(key)

    monkeypatch.setattr(blob_store, "touch", touch_after_cancel)
    session = await store.initialize(upload_id, "dump.sql", 20, "abc123", resume=True)
    monkeypatch.undo()

    progress = await store.get_progress(upload_id)
    assert session.total_chunks == 2
    assert progress.uploaded_chunks == []


async def test_assemble_fails_when_chunk_vanishes_mid_read(store, blob_store, tmp_path, monkeypatch):
    upload_id = await _init(store, 25)
    for n, data in ((1, b"a" * 10), (2, b"b" * 10), (3, b"c" * 5)):
        await store.save_chunk(upload_id, n, data)
    real_iter_blocks = blob_store.iter_blocks

    async def iter_blocks_losing_chunk_two(key, block_size=1024):
        if key.endswith("/2.part"):
            await blob_store.delete(key)
        async for block in real_iter_blocks(key, block_size):
            yield block

    monkeypatch.setattr(blob_store, "iter_blocks", iter_blocks_losing_chunk_two)

    out = tmp_path / "out.sql"
    with pytest.raises(AssemblyFailure) as exc_info:
        await store.assemble(upload_id, out)

    assert exc_info.value.stage == "assemble"
    assert not out.exists()
    assert await store.load(upload_id) is not None
    progress = await store.get_progress(upload_id)
    assert progress.uploaded_chunks == [1, 3]

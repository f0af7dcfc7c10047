"""Durable bookkeeping for resumable uploads.

Session state lives entirely on the blob store: one JSON metadata blob per
upload and one blob per received chunk. Nothing is cached in memory, so a
process restart loses nothing and progress is always recomputed from which
chunk blobs exist.

Layout:
    sessions/<upload_id>.json
    chunks/<upload_id>/<chunk_number>.part
"""
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os

from facility_uploads.config import settings
from facility_uploads.services.blob_store import BlobStore, BlobNotFound
from facility_uploads.services.upload_errors import (
    AssemblyFailure,
    IncompleteUpload,
    SessionAlreadyExists,
    SessionNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

SESSIONS_PREFIX = "sessions/"
CHUNKS_PREFIX = "chunks/"

_UPLOAD_ID_RE = re.compile(r"^[0-9a-f]{64}$")
_SHA256_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_upload_id(file_name: str, file_size: int, file_hash: str) -> str:
    """Derive a stable upload id from the declared file identity.

    Re-initializing with the same name, size and hash yields the same id,
    which is what lets a client resume after a crash.
    """
    data = f"{file_name}-{file_size}-{file_hash}".encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def is_sha256_hex(value: str) -> bool:
    return bool(value) and bool(_SHA256_HEX_RE.match(value))


@dataclass
class UploadSession:
    upload_id: str
    file_name: str
    file_size: int
    file_hash: str
    chunk_size: int
    total_chunks: int
    status: SessionStatus = SessionStatus.IN_PROGRESS
    created_at: datetime = field(default_factory=_utcnow)
    last_touched_at: datetime = field(default_factory=_utcnow)

    def expected_chunk_size(self, chunk_number: int) -> int:
        """Byte length chunk_number should have; only the last one may be short."""
        if chunk_number < self.total_chunks:
            return self.chunk_size
        return self.file_size - self.chunk_size * (self.total_chunks - 1)

    def to_json(self) -> str:
        # last_touched_at is read back from the metadata blob's mtime
        data = asdict(self)
        data.pop("last_touched_at")
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        return json.dumps(data, indent=2)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "UploadSession":
        data = json.loads(raw)
        data["status"] = SessionStatus(data.get("status", SessionStatus.IN_PROGRESS.value))
        data.pop("last_touched_at", None)
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        return cls(**data, last_touched_at=data["created_at"])


@dataclass
class UploadProgress:
    upload_id: str
    uploaded_chunks: List[int]
    total_chunks: int
    uploaded_bytes: int
    total_bytes: int

    @property
    def percent(self) -> int:
        if self.total_chunks == 0:
            return 100
        return round(len(self.uploaded_chunks) / self.total_chunks * 100)

    @property
    def is_complete(self) -> bool:
        return len(self.uploaded_chunks) == self.total_chunks


@dataclass
class ChunkAck:
    upload_id: str
    chunk_number: int
    size: int


class UploadSessionStore:
    """File-system-as-database store for resumable upload sessions.

    Holds no per-session state of its own; construct one per request.
    """

    def __init__(self, blobs: BlobStore, chunk_size: Optional[int] = None):
        self.blobs = blobs
        self.chunk_size = chunk_size or settings.CHUNK_SIZE_BYTES
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

    # ── Keys ─────────────────────────────────────────────────────

    @staticmethod
    def _is_valid_id(upload_id: str) -> bool:
        return isinstance(upload_id, str) and bool(_UPLOAD_ID_RE.match(upload_id))

    @classmethod
    def _check_id(cls, upload_id: str) -> None:
        if not cls._is_valid_id(upload_id):
            raise ValidationError(f"Malformed upload id: {upload_id!r}")

    @staticmethod
    def _metadata_key(upload_id: str) -> str:
        return f"{SESSIONS_PREFIX}{upload_id}.json"

    @staticmethod
    def _chunks_prefix(upload_id: str) -> str:
        return f"{CHUNKS_PREFIX}{upload_id}/"

    @classmethod
    def _chunk_key(cls, upload_id: str, chunk_number: int) -> str:
        return f"{cls._chunks_prefix(upload_id)}{chunk_number}.part"

    # ── Metadata ─────────────────────────────────────────────────

    async def load(self, upload_id: str) -> Optional[UploadSession]:
        """Read the metadata record, or None if there is no live session.

        Ids that could never have been issued are simply unknown.
        """
        if not self._is_valid_id(upload_id):
            return None
        key = self._metadata_key(upload_id)
        try:
            raw = await self.blobs.get(key)
        except BlobNotFound:
            return None
        touched_at = await self.blobs.modified_at(key)
        if touched_at is None:
            return None
        session = UploadSession.from_json(raw)
        session.last_touched_at = touched_at
        return session

    async def _write(self, session: UploadSession) -> None:
        await self.blobs.put(self._metadata_key(session.upload_id), session.to_json().encode("utf-8"))

    async def list_sessions(self) -> List[str]:
        """Upload ids of every metadata record on the store."""
        ids = []
        for key in await self.blobs.list(SESSIONS_PREFIX):
            name = key[len(SESSIONS_PREFIX):]
            if name.endswith(".json"):
                ids.append(name[:-len(".json")])
        return ids

    # ── Operations ───────────────────────────────────────────────

    async def initialize(
        self,
        upload_id: str,
        file_name: str,
        file_size: int,
        file_hash: str,
        resume: bool = False,
    ) -> UploadSession:
        """Create the session record, or refresh it when resume is True."""
        self._check_id(upload_id)
        if file_size <= 0:
            raise ValidationError("fileSize must be a positive integer")

        existing = await self.load(upload_id)
        if existing is not None:
            if not resume:
                raise SessionAlreadyExists(upload_id)
            # touch never recreates metadata; if a cancel won the race, start over
            if await self.blobs.touch(self._metadata_key(upload_id)):
                existing.last_touched_at = _utcnow()
                logger.info(f"Resumed upload session {upload_id} ({existing.file_name})")
                return existing

        session = UploadSession(
            upload_id=upload_id,
            file_name=file_name,
            file_size=file_size,
            file_hash=file_hash,
            chunk_size=self.chunk_size,
            total_chunks=-(-file_size // self.chunk_size),
        )
        await self._write(session)
        logger.info(
            f"Initialized upload session {upload_id} for {file_name} "
            f"({file_size} bytes, {session.total_chunks} chunks)"
        )
        return session

    async def save_chunk(self, upload_id: str, chunk_number: int, data: bytes) -> ChunkAck:
        """Write one chunk. Re-sending a chunk overwrites it."""
        session = await self.load(upload_id)
        if session is None:
            raise SessionNotFound(upload_id, stage="save_chunk")
        if not 1 <= chunk_number <= session.total_chunks:
            raise ValidationError(
                f"chunkNumber must be between 1 and {session.total_chunks}, got {chunk_number}"
            )
        if not data:
            raise ValidationError("Chunk payload is empty")

        await self.blobs.put(self._chunk_key(upload_id, chunk_number), data)

        # Marks activity for the orphan sweep. Fails if a cancel removed the
        # metadata meanwhile, in which case the chunk must not outlive it.
        if not await self.blobs.touch(self._metadata_key(upload_id)):
            await self.blobs.delete(self._chunk_key(upload_id, chunk_number))
            raise SessionNotFound(upload_id, stage="save_chunk")

        return ChunkAck(upload_id=upload_id, chunk_number=chunk_number, size=len(data))

    async def _present_chunks(self, session: UploadSession) -> List[int]:
        present = []
        for chunk_number in range(1, session.total_chunks + 1):
            if await self.blobs.exists(self._chunk_key(session.upload_id, chunk_number)):
                present.append(chunk_number)
        return present

    async def get_progress(self, upload_id: str) -> Optional[UploadProgress]:
        """Recompute progress by probing each expected chunk blob."""
        session = await self.load(upload_id)
        if session is None:
            return None
        uploaded = await self._present_chunks(session)
        return UploadProgress(
            upload_id=upload_id,
            uploaded_chunks=uploaded,
            total_chunks=session.total_chunks,
            uploaded_bytes=sum(session.expected_chunk_size(n) for n in uploaded),
            total_bytes=session.file_size,
        )

    async def assemble(self, upload_id: str, output_path: str | Path, verify_hash: bool = True) -> str:
        """Concatenate chunks 1..N into output_path, then purge the session.

        Completeness is re-checked here regardless of what the caller saw.
        On failure the partial output is removed and chunks are kept, so
        finalize can be retried.
        """
        session = await self.load(upload_id)
        if session is None:
            raise SessionNotFound(upload_id, stage="assemble")
        present = await self._present_chunks(session)
        if len(present) != session.total_chunks:
            raise IncompleteUpload(upload_id, len(present), session.total_chunks, stage="assemble")

        output_path = Path(output_path)
        await aiofiles.os.makedirs(output_path.parent, exist_ok=True)
        hasher = hashlib.sha256()
        written = 0
        try:
            async with aiofiles.open(output_path, "wb") as out:
                for chunk_number in range(1, session.total_chunks + 1):
                    async for block in self.blobs.iter_blocks(self._chunk_key(upload_id, chunk_number)):
                        hasher.update(block)
                        await out.write(block)
                        written += len(block)
        except BlobNotFound as e:
            await _discard(output_path)
            raise AssemblyFailure(
                f"Chunk disappeared during assembly of {upload_id}: {e.key}", stage="assemble"
            ) from e
        except OSError as e:
            await _discard(output_path)
            raise AssemblyFailure(f"I/O error assembling {upload_id}: {e}", stage="assemble") from e

        if verify_hash and is_sha256_hex(session.file_hash):
            digest = hasher.hexdigest()
            if digest != session.file_hash.lower():
                await _discard(output_path)
                raise AssemblyFailure(
                    f"Content hash mismatch for {upload_id}: declared {session.file_hash}, got {digest}",
                    stage="verify",
                )

        if written != session.file_size:
            logger.warning(
                f"Assembled {upload_id} is {written} bytes, declared size was {session.file_size}"
            )

        await self._purge(upload_id)
        logger.info(f"Assembled upload {upload_id} into {output_path} ({written} bytes)")
        return str(output_path)

    async def _purge(self, upload_id: str) -> bool:
        # Metadata goes first so a concurrent save_chunk sees the session as
        # gone before its chunk could slip past the prefix delete
        removed_meta = await self.blobs.delete(self._metadata_key(upload_id))
        removed_chunks = await self.blobs.delete_prefix(self._chunks_prefix(upload_id))
        return removed_meta or removed_chunks > 0

    async def cancel(self, upload_id: str) -> bool:
        """Delete every trace of the session. Safe to call repeatedly.

        Returns whether anything was actually removed.
        """
        if not self._is_valid_id(upload_id):
            return False
        removed = await self._purge(upload_id)
        if removed:
            logger.info(f"Cancelled upload session {upload_id}")
        return removed

    async def sweep_orphans(self, max_age_hours: Optional[float] = None, now: Optional[datetime] = None) -> List[str]:
        """Cancel every session untouched for longer than max_age_hours.

        Not scheduled by anything in this package; run it from cron or the
        facility-uploads-sweep command.
        """
        if max_age_hours is None:
            max_age_hours = settings.ORPHAN_MAX_AGE_HOURS
        now = now or _utcnow()
        cutoff = now - timedelta(hours=max_age_hours)

        swept = []
        for upload_id in await self.list_sessions():
            try:
                session = await self.load(upload_id)
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Unreadable metadata for upload {upload_id}, skipping: {e}")
                continue
            if session is None or session.last_touched_at >= cutoff:
                continue
            await self._purge(upload_id)
            swept.append(upload_id)
            logger.info(
                f"Swept orphaned upload {upload_id} ({session.file_name}, "
                f"last touched {session.last_touched_at.isoformat()})"
            )
        if swept:
            logger.info(f"Swept {len(swept)} orphaned upload session(s)")
        return swept


async def _discard(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass

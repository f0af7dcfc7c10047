"""Resumable upload protocol: init -> chunks -> progress -> complete | cancel.

The coordinator sequences UploadSessionStore primitives and hands finished
artifacts to the facility registry. It never trusts a previous check or the
client's view of completeness; every call re-reads store state.

Finalize is serialized per upload id with an in-process lock so two
concurrent completes cannot both assemble. The lock map is weak-valued, so
entries vanish once nobody holds them.
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Optional

from facility_uploads.config import settings
from facility_uploads.models.facility import Facility
from facility_uploads.services.artifact_storage import ArtifactStorage
from facility_uploads.services.facility_registry import FacilityRegistry
from facility_uploads.services.upload_errors import (
    IncompleteUpload,
    RegistryWriteFailure,
    SessionNotFound,
    UploadError,
    ValidationError,
)
from facility_uploads.services.upload_sessions import (
    ChunkAck,
    UploadProgress,
    UploadSession,
    UploadSessionStore,
    compute_upload_id,
)
from facility_uploads.services.validation import (
    sanitize_text,
    validate_facility_code,
    validate_facility_name,
)

logger = logging.getLogger(__name__)

_finalize_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _finalize_lock(upload_id: str) -> asyncio.Lock:
    lock = _finalize_locks.get(upload_id)
    if lock is None:
        lock = asyncio.Lock()
        _finalize_locks[upload_id] = lock
    return lock


@dataclass
class InitResult:
    upload_id: str
    chunk_size: int
    total_chunks: int
    resumed: bool


class UploadCoordinator:
    """Per-request orchestrator; holds no session state between calls."""

    def __init__(
        self,
        store: UploadSessionStore,
        registry: FacilityRegistry,
        artifacts: ArtifactStorage,
        max_facilities: Optional[int] = None,
        verify_hash: Optional[bool] = None,
    ):
        self.store = store
        self.registry = registry
        self.artifacts = artifacts
        self.max_facilities = max_facilities if max_facilities is not None else settings.MAX_FACILITIES
        self.verify_hash = settings.VERIFY_CONTENT_HASH if verify_hash is None else verify_hash

    # ── Protocol ─────────────────────────────────────────────────

    async def initialize(self, file_name: Optional[str], file_size: Optional[int], file_hash: Optional[str]) -> InitResult:
        """Start a session, or resume the existing one for the same file identity."""
        file_name = sanitize_text(file_name)
        if not file_name:
            raise ValidationError("fileName is required")
        if file_size is None or isinstance(file_size, bool) or not isinstance(file_size, int) or file_size <= 0:
            raise ValidationError("fileSize must be a positive integer")
        if not file_hash or not file_hash.strip():
            raise ValidationError("fileHash is required")
        file_hash = file_hash.strip()

        upload_id = compute_upload_id(file_name, file_size, file_hash)
        existed = await self.store.load(upload_id) is not None
        session = await self.store.initialize(upload_id, file_name, file_size, file_hash, resume=True)
        return InitResult(
            upload_id=session.upload_id,
            chunk_size=session.chunk_size,
            total_chunks=session.total_chunks,
            resumed=existed,
        )

    async def accept_chunk(
        self,
        upload_id: str,
        chunk_number: int,
        data: bytes,
        total_chunks: Optional[int] = None,
    ) -> ChunkAck:
        session = await self._require_session(upload_id, stage="chunk")
        if total_chunks is not None and total_chunks != session.total_chunks:
            raise ValidationError(
                f"totalChunks mismatch: client sent {total_chunks}, session expects {session.total_chunks}"
            )
        return await self.store.save_chunk(upload_id, chunk_number, data)

    async def get_progress(self, upload_id: str) -> UploadProgress:
        progress = await self.store.get_progress(upload_id)
        if progress is None:
            raise SessionNotFound(upload_id, stage="progress")
        return progress

    async def finalize(
        self,
        upload_id: str,
        facility_name: Optional[str],
        facility_code: Optional[str],
        description: Optional[str] = None,
    ) -> Facility:
        """Assemble a complete upload and register it for the facility."""
        facility_name = validate_facility_name(facility_name)
        facility_code = validate_facility_code(facility_code)
        description = sanitize_text(description)

        async with _finalize_lock(upload_id):
            session = await self._require_session(upload_id, stage="complete")
            progress = await self.get_progress(upload_id)
            if not progress.is_complete:
                raise IncompleteUpload(
                    upload_id, len(progress.uploaded_chunks), progress.total_chunks, stage="complete"
                )

            output_path = await self.artifacts.path_for(facility_code, session.file_name)
            try:
                artifact_path = await self.store.assemble(upload_id, output_path, verify_hash=self.verify_hash)
            except UploadError as e:
                logger.error(f"Finalize of upload {upload_id} failed during assembly: {e}")
                raise

        logger.info(f"Upload {upload_id} assembled for facility {facility_code}")
        return await self.register_artifact(facility_name, facility_code, description, artifact_path)

    async def cancel(self, upload_id: str) -> None:
        await self.store.cancel(upload_id)

    # ── Registry hand-off ────────────────────────────────────────

    async def register_artifact(
        self,
        facility_name: str,
        facility_code: str,
        description: Optional[str],
        artifact_path: str,
    ) -> Facility:
        """Upsert the facility, drop the file it replaced, then enforce the ceiling.

        Also used by single-shot uploads. If the upsert fails the artifact is
        left on disk and the caller gets RegistryWriteFailure.
        """
        try:
            facility, previous_path = await self.registry.upsert(
                facility_name, facility_code, description, artifact_path
            )
        except Exception as e:
            logger.error(
                f"Registry write for {facility_code} failed; artifact kept at {artifact_path}: {e}"
            )
            raise RegistryWriteFailure(
                f"Could not record upload for facility {facility_code}: {e}",
                artifact_path=artifact_path,
                stage="register",
            ) from e

        if previous_path and previous_path != artifact_path:
            await self.artifacts.delete(previous_path)
            logger.info(f"Replaced artifact for facility {facility_code}")

        await self._enforce_ceiling(keep_code=facility_code)
        return facility

    async def _enforce_ceiling(self, keep_code: str) -> None:
        """Evict the single oldest facility once the count exceeds the maximum."""
        if await self.registry.count() <= self.max_facilities:
            return
        oldest = await self.registry.oldest()
        if oldest is None or oldest.facility_code == keep_code:
            return
        await self.registry.delete(oldest)
        await self.artifacts.delete(oldest.file_path)
        logger.warning(
            f"Facility limit ({self.max_facilities}) exceeded; evicted {oldest.facility_code} "
            f"uploaded at {oldest.uploaded_at}"
        )

    # ── Helpers ──────────────────────────────────────────────────

    async def _require_session(self, upload_id: str, stage: str) -> UploadSession:
        session = await self.store.load(upload_id)
        if session is None:
            raise SessionNotFound(upload_id, stage=stage)
        return session

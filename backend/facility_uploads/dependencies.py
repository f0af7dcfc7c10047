"""FastAPI dependencies wiring the upload services per request.

Nothing here caches session state: a fresh store and coordinator are built
for every request, and all truth lives on disk and in the database.
"""
from pathlib import Path

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from facility_uploads.config import settings
from facility_uploads.database import get_db
from facility_uploads.services.artifact_storage import ArtifactStorage
from facility_uploads.services.blob_store import BlobStore, LocalBlobStore
from facility_uploads.services.facility_registry import FacilityRegistry
from facility_uploads.services.upload_coordinator import UploadCoordinator
from facility_uploads.services.upload_sessions import UploadSessionStore

RESUMABLE_SUBDIR = "resumable"


def get_blob_store() -> BlobStore:
    return LocalBlobStore(Path(settings.UPLOAD_FOLDER) / RESUMABLE_SUBDIR)


def get_session_store(blobs: BlobStore = Depends(get_blob_store)) -> UploadSessionStore:
    return UploadSessionStore(blobs, chunk_size=settings.CHUNK_SIZE_BYTES)


def get_artifact_storage() -> ArtifactStorage:
    return ArtifactStorage(settings.UPLOAD_FOLDER)


def get_registry(db: AsyncSession = Depends(get_db)) -> FacilityRegistry:
    return FacilityRegistry(db)


def get_coordinator(
    store: UploadSessionStore = Depends(get_session_store),
    registry: FacilityRegistry = Depends(get_registry),
    artifacts: ArtifactStorage = Depends(get_artifact_storage),
) -> UploadCoordinator:
    return UploadCoordinator(
        store,
        registry,
        artifacts,
        max_facilities=settings.MAX_FACILITIES,
        verify_hash=settings.VERIFY_CONTENT_HASH,
    )

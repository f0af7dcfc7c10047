"""Pytest configuration and fixtures for facility upload tests."""
import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient

from facility_uploads.services.artifact_storage import ArtifactStorage
from facility_uploads.services.blob_store import LocalBlobStore
from facility_uploads.services.upload_coordinator import UploadCoordinator
from facility_uploads.services.upload_sessions import UploadSessionStore

SMALL_CHUNK = 10


@dataclass
class FakeFacility:
    id: int
    facility_name: str
    facility_code: str
    description: Optional[str]
    file_path: str
    uploaded_at: datetime
    updated_at: Optional[datetime] = None


@dataclass
class FakeDirectoryEntry:
    id: int
    facility_name: str
    facility_code: str


class InMemoryFacilityRegistry:
    """Stands in for FacilityRegistry without a database.

    uploaded_at comes from a fake clock that advances one second per write,
    so upload order is unambiguous.
    """

    def __init__(self):
        self.facilities: dict[int, FakeFacility] = {}
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.fail_writes = False
        self.directory_entries: list[FakeDirectoryEntry] = []

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def get(self, facility_id: int) -> Optional[FakeFacility]:
        return self.facilities.get(facility_id)

    async def get_by_code(self, facility_code: str) -> Optional[FakeFacility]:
        for facility in self.facilities.values():
            if facility.facility_code == facility_code:
                return facility
        return None

    async def list(self):
        return sorted(self.facilities.values(), key=lambda f: f.uploaded_at, reverse=True)

    async def count(self) -> int:
        return len(self.facilities)

    async def oldest(self) -> Optional[FakeFacility]:
        if not self.facilities:
            return None
        return min(self.facilities.values(), key=lambda f: (f.uploaded_at, f.id))

    async def upsert(self, facility_name, facility_code, description, file_path):
        if self.fail_writes:
            raise RuntimeError("database unavailable")
        existing = await self.get_by_code(facility_code)
        now = self._tick()
        if existing:
            previous = existing.file_path
            existing.facility_name = facility_name
            existing.description = description
            existing.file_path = file_path
            existing.uploaded_at = now
            existing.updated_at = now
            return existing, previous
        facility = FakeFacility(
            id=next(self._ids),
            facility_name=facility_name,
            facility_code=facility_code,
            description=description,
            file_path=file_path,
            uploaded_at=now,
            updated_at=now,
        )
        self.facilities[facility.id] = facility
        return facility, None

    async def update(self, facility, facility_name=None, facility_code=None, description=None):
        if facility_name is not None:
            facility.facility_name = facility_name
        if facility_code is not None:
            facility.facility_code = facility_code
        if description is not None:
            facility.description = description
        facility.updated_at = self._tick()
        return facility

    async def directory(self):
        return sorted(self.directory_entries, key=lambda e: e.facility_name)

    async def delete(self, facility) -> None:
        self.facilities.pop(facility.id, None)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "resumable")


@pytest.fixture
def store(blob_store):
    return UploadSessionStore(blob_store, chunk_size=SMALL_CHUNK)


@pytest.fixture
def artifacts(tmp_path):
    return ArtifactStorage(tmp_path / "facilities")


@pytest.fixture
def registry():
    return InMemoryFacilityRegistry()


@pytest.fixture
def coordinator(store, registry, artifacts):
    return UploadCoordinator(store, registry, artifacts, max_facilities=11, verify_hash=True)


@pytest.fixture
async def client(blob_store, registry, artifacts):
    """HTTP client against the app with storage and registry swapped for test doubles."""
    from facility_uploads import dependencies
    from facility_uploads.main import app

    app.dependency_overrides[dependencies.get_blob_store] = lambda: blob_store
    app.dependency_overrides[dependencies.get_session_store] = (
        lambda: UploadSessionStore(blob_store, chunk_size=SMALL_CHUNK)
    )
    app.dependency_overrides[dependencies.get_registry] = lambda: registry
    app.dependency_overrides[dependencies.get_artifact_storage] = lambda: artifacts
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()

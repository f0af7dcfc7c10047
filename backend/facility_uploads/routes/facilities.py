"""Facility API routes: single-shot upload, listing, download, update, delete, dump check."""
import logging

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile, File
from fastapi.responses import FileResponse

from facility_uploads.dependencies import get_artifact_storage, get_coordinator, get_registry
from facility_uploads.schemas.facility import (
    DeleteResponse,
    DumpCheckResponse,
    DumpMetadata,
    FacilityListEntryResponse,
    FacilityResponse,
    FacilityUpdate,
)
from facility_uploads.services import pgdump
from facility_uploads.services.artifact_storage import ArtifactStorage
from facility_uploads.services.facility_registry import FacilityRegistry
from facility_uploads.services.upload_coordinator import UploadCoordinator
from facility_uploads.services.upload_errors import ValidationError
from facility_uploads.services.validation import (
    sanitize_text,
    validate_facility_code,
    validate_facility_name,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/facilities", tags=["facilities"])


@router.post("/upload", response_model=FacilityResponse, status_code=201)
async def upload_database(
    file: UploadFile | None = File(None),
    facility_name: str | None = Form(None),
    facility_code: str | None = Form(None),
    description: str | None = Form(None),
    artifacts: ArtifactStorage = Depends(get_artifact_storage),
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """Single-shot multipart upload of a whole dump file."""
    facility_name = validate_facility_name(facility_name)
    facility_code = validate_facility_code(facility_code)
    description = sanitize_text(description)
    if file is None or not file.filename:
        raise ValidationError("file is required")
    artifacts.check_extension(file.filename)

    destination = await artifacts.path_for(facility_code, file.filename)
    size = await artifacts.save_upload(file, destination)
    logger.info(f"Single-shot upload for {facility_code}: {file.filename} ({size} bytes)")
    return await coordinator.register_artifact(
        facility_name, facility_code, description, str(destination)
    )


@router.get("/list", response_model=list[FacilityResponse])
async def list_facilities(registry: FacilityRegistry = Depends(get_registry)):
    """All facilities, most recent upload first."""
    return await registry.list()


@router.get("/facility-list", response_model=list[FacilityListEntryResponse])
async def facility_directory(registry: FacilityRegistry = Depends(get_registry)):
    """Master facility list for the upload form dropdown."""
    return await registry.directory()


@router.get("/download/{facility_id}")
async def download_database(
    facility_id: int,
    registry: FacilityRegistry = Depends(get_registry),
    artifacts: ArtifactStorage = Depends(get_artifact_storage),
):
    """Download a facility's dump as <code>-dump.sql."""
    facility = await registry.get(facility_id)
    if not facility:
        raise HTTPException(status_code=404, detail="Facility not found")
    if not await artifacts.exists(facility.file_path):
        raise HTTPException(status_code=400, detail="Database file not found")

    return FileResponse(
        path=facility.file_path,
        filename=f"{facility.facility_code}-dump.sql",
        media_type="application/octet-stream",
    )


@router.post("/{facility_id}/restore-dump", response_model=DumpCheckResponse)
async def check_dump(
    facility_id: int,
    registry: FacilityRegistry = Depends(get_registry),
    artifacts: ArtifactStorage = Depends(get_artifact_storage),
):
    """Validate the stored file looks like a pg_dump and report its header metadata.

    Nothing is restored; running the SQL is left to an operator with psql.
    """
    facility = await registry.get(facility_id)
    if not facility:
        raise HTTPException(status_code=404, detail="Facility not found")
    if not await artifacts.exists(facility.file_path):
        raise HTTPException(status_code=400, detail="Database file not found")
    if not await pgdump.is_pg_dump(facility.file_path):
        raise HTTPException(status_code=400, detail="File is not a valid PostgreSQL dump file")

    metadata = await pgdump.read_dump_metadata(facility.file_path)
    size = await artifacts.size(facility.file_path)
    return DumpCheckResponse(
        facility=FacilityResponse.model_validate(facility),
        metadata=DumpMetadata(**metadata),
        file_size=pgdump.human_size(size),
    )


@router.get("/{facility_id}", response_model=FacilityResponse)
async def get_facility(
    facility_id: int,
    registry: FacilityRegistry = Depends(get_registry),
):
    facility = await registry.get(facility_id)
    if not facility:
        raise HTTPException(status_code=404, detail="Facility not found")
    return facility


@router.put("/{facility_id}", response_model=FacilityResponse)
async def update_facility(
    facility_id: int,
    body: FacilityUpdate,
    registry: FacilityRegistry = Depends(get_registry),
):
    """Update a facility's name, code or description. The dump file is untouched."""
    facility = await registry.get(facility_id)
    if not facility:
        raise HTTPException(status_code=404, detail="Facility not found")

    facility_name = sanitize_text(body.facility_name)
    facility_code = sanitize_text(body.facility_code)
    if facility_name:
        facility_name = validate_facility_name(facility_name)
    if facility_code:
        facility_code = validate_facility_code(facility_code)
        if facility_code != facility.facility_code and await registry.get_by_code(facility_code):
            raise HTTPException(status_code=409, detail=f"Facility code {facility_code} is already in use")

    return await registry.update(
        facility,
        facility_name=facility_name,
        facility_code=facility_code,
        description=sanitize_text(body.description),
    )


@router.delete("/{facility_id}", response_model=DeleteResponse)
async def delete_facility(
    facility_id: int,
    registry: FacilityRegistry = Depends(get_registry),
    artifacts: ArtifactStorage = Depends(get_artifact_storage),
):
    """Delete a facility record and its dump file."""
    facility = await registry.get(facility_id)
    if not facility:
        raise HTTPException(status_code=404, detail="Facility not found")

    await artifacts.delete(facility.file_path)
    await registry.delete(facility)
    return DeleteResponse(deleted=True, id=facility_id)

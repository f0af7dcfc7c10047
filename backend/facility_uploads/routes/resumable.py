"""Resumable upload API routes.

Upload errors raised by the coordinator are turned into JSON responses by
the handler registered in main.py.
"""
from fastapi import APIRouter, Depends, File, Form, UploadFile

from facility_uploads.dependencies import get_coordinator
from facility_uploads.schemas.facility import FacilityResponse
from facility_uploads.schemas.resumable import (
    CancelResponse,
    ChunkResponse,
    CompleteUploadRequest,
    InitUploadRequest,
    InitUploadResponse,
    ProgressResponse,
)
from facility_uploads.services.upload_coordinator import UploadCoordinator
from facility_uploads.services.upload_errors import ValidationError

router = APIRouter(prefix="/api/facilities/resumable", tags=["resumable-uploads"])


@router.post("/init", response_model=InitUploadResponse)
async def init_upload(
    body: InitUploadRequest,
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """Start or resume an upload session for a file identity."""
    result = await coordinator.initialize(body.file_name, body.file_size, body.file_hash)
    return InitUploadResponse(
        upload_id=result.upload_id,
        chunk_size=result.chunk_size,
        total_chunks=result.total_chunks,
        resumed=result.resumed,
    )


@router.get("/{upload_id}/progress", response_model=ProgressResponse)
async def get_progress(
    upload_id: str,
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """Which chunks are on the server, recomputed from storage."""
    progress = await coordinator.get_progress(upload_id)
    return ProgressResponse(
        upload_id=upload_id,
        uploaded_chunks=progress.uploaded_chunks,
        total_chunks=progress.total_chunks,
        uploaded_bytes=progress.uploaded_bytes,
        total_bytes=progress.total_bytes,
        percent=progress.percent,
    )


@router.post("/{upload_id}/chunk", response_model=ChunkResponse)
async def upload_chunk(
    upload_id: str,
    chunk: UploadFile | None = File(None),
    chunk_number: int | None = Form(None, alias="chunkNumber"),
    total_chunks: int | None = Form(None, alias="totalChunks"),
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """Store one chunk. Retrying the same chunk number overwrites it."""
    if chunk is None:
        raise ValidationError("Missing chunk payload")
    if chunk_number is None:
        raise ValidationError("chunkNumber is required")
    data = await chunk.read()
    await coordinator.accept_chunk(upload_id, chunk_number, data, total_chunks=total_chunks)
    progress = await coordinator.get_progress(upload_id)
    return ChunkResponse(
        chunk_number=chunk_number,
        uploaded_chunks=progress.uploaded_chunks,
        total_chunks=progress.total_chunks,
    )


@router.post("/{upload_id}/complete", response_model=FacilityResponse, status_code=201)
async def complete_upload(
    upload_id: str,
    body: CompleteUploadRequest,
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """Assemble the chunks and record the artifact against the facility."""
    if body.upload_id and body.upload_id != upload_id:
        raise ValidationError("uploadId in body does not match the URL")
    return await coordinator.finalize(
        upload_id,
        facility_name=body.facility_name,
        facility_code=body.facility_code,
        description=body.description,
    )


@router.delete("/{upload_id}/cancel", response_model=CancelResponse)
async def cancel_upload(
    upload_id: str,
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """Discard all chunks and metadata. Always succeeds."""
    await coordinator.cancel(upload_id)
    return CancelResponse(upload_id=upload_id, cancelled=True)

"""Resumable upload request/response schemas.

Request fields are optional at the schema level; the coordinator reports
missing values as a 400 with a readable reason instead of a 422.
"""
from typing import Optional
from facility_uploads.schemas.base import CamelModel


class InitUploadRequest(CamelModel):
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_hash: Optional[str] = None


class InitUploadResponse(CamelModel):
    upload_id: str
    chunk_size: int
    total_chunks: int
    resumed: bool = False


class ProgressResponse(CamelModel):
    upload_id: str
    uploaded_chunks: list[int]
    total_chunks: int
    uploaded_bytes: int
    total_bytes: int
    percent: int


class ChunkResponse(CamelModel):
    chunk_number: int
    uploaded_chunks: list[int]
    total_chunks: int


class CompleteUploadRequest(CamelModel):
    upload_id: Optional[str] = None
    facility_name: Optional[str] = None
    facility_code: Optional[str] = None
    description: Optional[str] = None


class CancelResponse(CamelModel):
    upload_id: str
    cancelled: bool = True

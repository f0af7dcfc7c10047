"""Facility response schemas."""
from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class FacilityResponse(BaseModel):
    id: int
    facility_name: str
    facility_code: str
    description: Optional[str] = None
    file_path: str
    uploaded_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FacilityUpdate(BaseModel):
    """PUT body. Omitted or blank fields keep their stored value."""
    facility_name: Optional[str] = None
    facility_code: Optional[str] = None
    description: Optional[str] = None


class FacilityListEntryResponse(BaseModel):
    id: int
    facility_name: str
    facility_code: str

    model_config = {"from_attributes": True}


class DumpMetadata(BaseModel):
    is_valid: bool = False
    version: Optional[str] = None
    dump_date: Optional[str] = None
    tables: list[str] = []


class DumpCheckResponse(BaseModel):
    facility: FacilityResponse
    metadata: DumpMetadata
    file_size: str


class DeleteResponse(BaseModel):
    deleted: bool = True
    id: int

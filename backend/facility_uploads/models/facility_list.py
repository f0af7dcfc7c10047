"""Facility directory - the master list of facilities offered for upload.

Seeded by operators; the API only reads it.
"""
from datetime import datetime
from sqlalchemy import String, DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column
from facility_uploads.models.base import Base


class FacilityListEntry(Base):
    __tablename__ = "facility_list"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    facility_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    facility_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

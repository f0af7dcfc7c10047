"""Facility model - one uploaded database artifact per facility code.

Rows are only ever written after the artifact is fully on disk, so
file_path is never null.
"""
from datetime import datetime
from sqlalchemy import String, Text, DateTime, Integer, Index, func
from sqlalchemy.orm import Mapped, mapped_column
from facility_uploads.models.base import Base


class Facility(Base):
    __tablename__ = "facilities"
    __table_args__ = (
        Index("idx_uploaded_at", "uploaded_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    facility_name: Mapped[str] = mapped_column(String(255), nullable=False)
    facility_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

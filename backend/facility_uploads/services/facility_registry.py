"""Facility registry - the relational record of each facility's latest artifact."""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, func, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from facility_uploads.models.facility import Facility
from facility_uploads.models.facility_list import FacilityListEntry

logger = logging.getLogger(__name__)


class FacilityRegistry:
    """Facility CRUD over an AsyncSession. Every write commits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, facility_id: int) -> Optional[Facility]:
        return await self.db.get(Facility, facility_id)

    async def get_by_code(self, facility_code: str) -> Optional[Facility]:
        result = await self.db.execute(
            select(Facility).where(Facility.facility_code == facility_code)
        )
        return result.scalar_one_or_none()

    async def list(self) -> List[Facility]:
        result = await self.db.execute(select(Facility).order_by(Facility.uploaded_at.desc()))
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(Facility))
        return result.scalar_one()

    async def oldest(self) -> Optional[Facility]:
        result = await self.db.execute(
            select(Facility).order_by(Facility.uploaded_at.asc(), Facility.id.asc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        facility_name: str,
        facility_code: str,
        description: Optional[str],
        file_path: str,
    ) -> Tuple[Facility, Optional[str]]:
        """Insert or replace the record for facility_code.

        Returns the stored facility and the file path it replaced, if any.
        """
        existing = await self.get_by_code(facility_code)
        previous_path = existing.file_path if existing else None

        stmt = pg_insert(Facility).values(
            facility_name=facility_name,
            facility_code=facility_code,
            description=description,
            file_path=file_path,
        ).on_conflict_do_update(
            index_elements=[Facility.facility_code],
            set_={
                "facility_name": facility_name,
                "description": description,
                "file_path": file_path,
                "uploaded_at": func.now(),
                "updated_at": func.now(),
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()

        facility = await self.get_by_code(facility_code)
        if existing is not None:
            await self.db.refresh(facility)
        return facility, previous_path

    async def update(
        self,
        facility: Facility,
        facility_name: Optional[str] = None,
        facility_code: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Facility:
        """Partial update: None leaves the stored value unchanged."""
        if facility_name is not None:
            facility.facility_name = facility_name
        if facility_code is not None:
            facility.facility_code = facility_code
        if description is not None:
            facility.description = description
        await self.db.commit()
        await self.db.refresh(facility)
        return facility

    async def directory(self) -> List[FacilityListEntry]:
        """Master facility list for pickers, alphabetical by name."""
        result = await self.db.execute(
            select(FacilityListEntry).order_by(FacilityListEntry.facility_name)
        )
        return list(result.scalars().all())

    async def delete(self, facility: Facility) -> None:
        await self.db.execute(delete(Facility).where(Facility.id == facility.id))
        await self.db.commit()

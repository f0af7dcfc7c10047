"""Import all models so SQLAlchemy metadata knows about them."""
from facility_uploads.models.base import Base
from facility_uploads.models.facility import Facility
from facility_uploads.models.facility_list import FacilityListEntry

__all__ = ["Base", "Facility", "FacilityListEntry"]

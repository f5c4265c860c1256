"""SQLAlchemy models."""

from crataegus.models.base import Base
from crataegus.models.location import LocationRecord
from crataegus.models.user import UserRecord

__all__ = [
    "Base",
    "LocationRecord",
    "UserRecord",
]

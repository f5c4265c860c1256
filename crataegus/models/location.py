"""Location model, one row per GPS fix, keyed by (username, time_utc)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Enum, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from crataegus.models.base import Base, OffsetDateTime, UtcDateTime
from crataegus.schemas.location import USERNAME_MAX_LENGTH, Location, Source


class LocationRecord(Base):
    __tablename__ = "locations"

    username: Mapped[str] = mapped_column(
        String(USERNAME_MAX_LENGTH),
        ForeignKey("users.username", onupdate="CASCADE", ondelete="CASCADE"),
        primary_key=True,
    )
    time_utc: Mapped[datetime] = mapped_column(UtcDateTime, primary_key=True)
    time_local: Mapped[datetime] = mapped_column(OffsetDateTime, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    altitude: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy: Mapped[float | None] = mapped_column(Float, default=None)
    source: Mapped[Source] = mapped_column(
        Enum(
            Source,
            native_enum=False,
            length=16,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )

    @staticmethod
    def row_values(location: Location) -> dict:
        """Column values for a Core ``insert()``."""
        return {
            "username": location.username,
            "time_utc": location.time_utc,
            "time_local": location.time_local,
            "latitude": location.latitude,
            "longitude": location.longitude,
            "altitude": location.altitude,
            "accuracy": location.accuracy,
            "source": location.source,
        }

"""Canonical user and location records, plus their validation."""

from __future__ import annotations

import enum
from datetime import timezone

import pydantic
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator

from crataegus.errors import ValidationError

USERNAME_MAX_LENGTH = 32
PASSWORD_MAX_LENGTH = 64


class Source(str, enum.Enum):
    """Where a location entered the system."""

    GPSLOGGER_HTTP = "gpslogger_http"  # pushed live by the GPSLogger app
    GPSLOGGER_CSV = "gpslogger_csv"  # imported from a GPSLogger CSV export
    EXIF = "exif"  # recovered from photo metadata


class User(BaseModel):
    """A user allowed to push locations.

    The password is stored exactly as received. Hashing it would change the
    credential contract with existing clients, so it is left as a known
    weakness rather than fixed here.
    """

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1, max_length=USERNAME_MAX_LENGTH)
    password: str = Field(max_length=PASSWORD_MAX_LENGTH)


class Location(BaseModel):
    """A single GPS fix for a user.

    ``(username, time_utc)`` is the identity of a location. ``time_local``
    carries the device's UTC offset and must name the same instant as
    ``time_utc``. Altitude is the WGS84 ellipsoidal height in meters.
    """

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1, max_length=USERNAME_MAX_LENGTH)
    time_utc: AwareDatetime
    time_local: AwareDatetime
    latitude: float = Field(ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(ge=-180.0, le=180.0, allow_inf_nan=False)
    altitude: float = Field(ge=-1000.0, le=10000.0, allow_inf_nan=False)
    accuracy: float | None = Field(default=None, ge=0.0, le=100.0, allow_inf_nan=False)
    source: Source

    @field_validator("time_utc")
    @classmethod
    def _normalize_utc(cls, value):
        try:
            return value.astimezone(timezone.utc)
        except OverflowError as e:
            raise ValueError(f"{value.isoformat()} is outside the representable UTC range") from e

    @model_validator(mode="after")
    def _check_same_instant(self) -> Location:
        if self.time_utc != self.time_local:
            raise ValueError(
                f"time_local {self.time_local.isoformat()} is not the same instant "
                f"as time_utc {self.time_utc.isoformat()}"
            )
        return self

    def is_identical(self, other: Location) -> bool:
        """Field-for-field equality, including the UTC offset of ``time_local``.

        Aware datetimes compare by instant, so a plain field comparison treats
        12:00+02:00 and 10:00+00:00 as the same local time.
        """
        return (
            self.model_dump() == other.model_dump()
            and self.time_local.utcoffset() == other.time_local.utcoffset()
        )


def validate_location(location: Location) -> Location:
    """Re-run every check on ``location`` and return the normalized copy.

    Catches values built with ``model_construct`` or otherwise bypassing
    construction-time validation.
    """
    try:
        return Location.model_validate(location.model_dump())
    except (pydantic.ValidationError, AttributeError, OverflowError) as e:
        raise ValidationError(f"invalid location: {e}") from e


def validate_user(user: User) -> User:
    """Re-run the length checks on ``user``."""
    try:
        return User.model_validate(user.model_dump())
    except (pydantic.ValidationError, AttributeError) as e:
        raise ValidationError(f"invalid user: {e}") from e

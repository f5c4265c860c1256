"""GPSLogger live push payload.

The app is configured to send the ``%ALL`` template, which arrives as
URL-encoded key/value pairs::

    lat=41.74108695983887&lon=-91.84490871429443&sat=0&desc=&alt=1387.0&acc=6.0
    &dir=170.8125&prov=gps&spd_kph=0.0&spd=0.0&timestamp=1736999691
    &timeoffset=2025-01-15T20:54:51.000-07:00&time=2025-01-16T03:54:51.000Z
    &starttimestamp=1737000139&date=2025-01-16&batt=27.0&ischarging=false
    &aid=4ca9e1da592aca9b&ser=4ca9e1da592aca9b&act=&filename=20250115
    &profile=Default+Profile&hdop=&vdop=&pdop=&dist=0

Parsing the default template server-side means the phone only has to be
set to ``%ALL``; app updates that add keys are absorbed here. Altitude is
WGS84 only if "MSL" is switched off in the app settings.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from urllib.parse import parse_qsl

import pydantic
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator

from crataegus.errors import PayloadError
from crataegus.ingest._fields import empty_to_none, from_unix_seconds
from crataegus.schemas.location import Location, Source, validate_location


class GpsLoggerPayload(BaseModel):
    """One ``%ALL`` push. Only the position and time fields are required."""

    model_config = ConfigDict(extra="ignore")

    lat: float
    lon: float
    alt: float
    acc: float | None = None
    time: AwareDatetime  # UTC, e.g. 2025-01-16T03:54:51.000Z
    timeoffset: AwareDatetime  # same instant with the phone's offset

    sat: int | None = None
    desc: str = ""
    dir: float | None = None  # presumed heading of travel, degrees
    prov: str = ""  # "gps", "network", ...
    spd_kph: float | None = None
    spd: float | None = None
    timestamp: datetime | None = None  # unix seconds, same as ``time``
    starttimestamp: datetime | None = None  # start of the logging session
    session_date: date | None = Field(default=None, alias="date")
    batt: float | None = None
    ischarging: bool | None = None
    aid: str = ""  # Android ID
    ser: str = ""  # serial number
    filename: str = ""
    profile: str = ""
    hdop: float | None = None
    vdop: float | None = None
    pdop: float | None = None
    dist: float | None = None

    @field_validator(
        "acc", "sat", "dir", "spd_kph", "spd", "session_date", "batt", "ischarging",
        "hdop", "vdop", "pdop", "dist",
        mode="before",
    )
    @classmethod
    def _blank_is_missing(cls, value):
        return empty_to_none(value)

    @field_validator("timestamp", "starttimestamp", mode="before")
    @classmethod
    def _parse_unix_seconds(cls, value):
        return from_unix_seconds(value)

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> GpsLoggerPayload:
        try:
            return cls.model_validate(dict(params))
        except pydantic.ValidationError as e:
            raise PayloadError(f"invalid GPSLogger payload: {e}") from e

    @classmethod
    def from_body(cls, body: str) -> GpsLoggerPayload:
        """Parse a raw URL-encoded ``%ALL`` body."""
        return cls.from_params(dict(parse_qsl(body, keep_blank_values=True)))

    def to_location(self, username: str) -> Location:
        return validate_location(
            Location.model_construct(
                username=username,
                time_utc=self.time,
                time_local=self.timeoffset,
                latitude=self.lat,
                longitude=self.lon,
                altitude=self.alt,
                accuracy=self.acc,
                source=Source.GPSLOGGER_HTTP,
            )
        )

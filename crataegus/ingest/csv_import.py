"""GPSLogger CSV export import.

Header and a sample row as written by the app::

    time,lat,lon,elevation,accuracy,bearing,speed,satellites,provider,hdop,vdop,pdop,
    geoidheight,ageofdgpsdata,dgpsid,activity,battery,annotation,timestamp_ms,
    time_offset,distance,starttimestamp_ms,profile_name,battery_charging
    2025-01-24T07:02:29.168Z,24.240779519081116,-11.84485614299774,1476.0,48.0,,0.0,0,
    gps,,,,,,,,64,,1737702149168,2025-01-24T00:02:29.168-07:00,14780.376051140634,
    1737686054899,Default Profile,false

Location fields map from ``time``, ``time_offset``, ``lat``, ``lon``,
``elevation`` and ``accuracy``. The file is read one row at a time.
"""

from __future__ import annotations

import csv
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

import pydantic
import structlog
from pydantic import AwareDatetime, BaseModel, ConfigDict, field_validator

from crataegus.errors import PayloadError
from crataegus.ingest._fields import empty_to_none, from_unix_millis
from crataegus.schemas.location import Location, Source, validate_location
from crataegus.store import LocationStore

logger = structlog.get_logger()


class GpsLoggerCsvRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    time: AwareDatetime
    lat: float
    lon: float
    elevation: float
    accuracy: float | None = None
    time_offset: AwareDatetime

    bearing: float | None = None
    speed: float | None = None
    satellites: int | None = None
    provider: str | None = None
    hdop: float | None = None
    vdop: float | None = None
    pdop: float | None = None
    geoidheight: float | None = None  # geoid height above the WGS84 ellipsoid
    ageofdgpsdata: float | None = None
    dgpsid: int | None = None
    activity: str | None = None
    battery: int | None = None
    annotation: str | None = None
    timestamp_ms: datetime | None = None
    distance: float | None = None
    starttimestamp_ms: datetime | None = None
    profile_name: str | None = None
    battery_charging: bool | None = None

    @field_validator(
        "accuracy", "bearing", "speed", "satellites", "provider", "hdop", "vdop", "pdop",
        "geoidheight", "ageofdgpsdata", "dgpsid", "activity", "battery", "annotation",
        "distance", "profile_name", "battery_charging",
        mode="before",
    )
    @classmethod
    def _blank_is_missing(cls, value):
        return empty_to_none(value)

    @field_validator("timestamp_ms", "starttimestamp_ms", mode="before")
    @classmethod
    def _parse_unix_millis(cls, value):
        return from_unix_millis(value)

    def to_location(self, username: str) -> Location:
        return validate_location(
            Location.model_construct(
                username=username,
                time_utc=self.time,
                time_local=self.time_offset,
                latitude=self.lat,
                longitude=self.lon,
                altitude=self.elevation,
                accuracy=self.accuracy,
                source=Source.GPSLOGGER_CSV,
            )
        )


def read_csv(path: Path, username: str) -> Iterator[Location]:
    """Lazily yield a Location per CSV row.

    Raises:
        PayloadError: a row does not parse; the message carries its line number.
        ValidationError: a row parses but is not a valid location.
    """
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for row in reader:
            try:
                parsed = GpsLoggerCsvRow.model_validate(row)
            except pydantic.ValidationError as e:
                raise PayloadError(f"{path}:{reader.line_num}: {e}") from e
            yield parsed.to_location(username)


async def import_csv(store: LocationStore, path: Path, username: str) -> tuple[int, int]:
    """Insert every row of a GPSLogger CSV for ``username``.

    Returns:
        ``(added, skipped)`` where skipped rows were already stored verbatim.
    """
    added = 0
    skipped = 0
    for location in read_csv(path, username):
        if await store.insert(location):
            added += 1
        else:
            skipped += 1
    logger.info("csv_imported", path=str(path), username=username, added=added, skipped=skipped)
    return added, skipped

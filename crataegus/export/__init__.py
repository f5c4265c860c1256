"""File exporters fed from the time-ordered location stream."""

from __future__ import annotations

import enum
from collections.abc import AsyncIterable
from pathlib import Path
from typing import Protocol

from crataegus.export.gpx import GpxExporter
from crataegus.schemas.location import Location


class Format(str, enum.Enum):
    GPX = "gpx"


class Exporter(Protocol):
    def write_location(self, location: Location) -> None: ...

    def finish(self) -> None:
        """Close the document. Skipping this leaves a truncated file."""
        ...


def create_exporter(fmt: Format, name: str, path: Path) -> Exporter:
    if fmt is Format.GPX:
        return GpxExporter(name, path)
    raise ValueError(f"unsupported export format: {fmt}")


async def export_stream(locations: AsyncIterable[Location], exporter: Exporter) -> int:
    """Write every location from ``locations`` and finish the file.

    Returns:
        The number of locations written.
    """
    written = 0
    try:
        async for location in locations:
            exporter.write_location(location)
            written += 1
    finally:
        exporter.finish()
    return written

"""Streaming GPX 1.1 writer.

The document is written piecewise (header, one ``<trkpt>`` per location,
footer) so an export of any length never sits in memory. Example output::

    <?xml version="1.0" encoding="UTF-8"?>
    <gpx version="1.1" creator="crataegus" xmlns="http://www.topografix.com/GPX/1/1">
      <trk>
        <name>Track Name</name>
        <trkseg>
          <trkpt lat="48.1173" lon="11.5167">
            <ele>545.4</ele>
            <time>2023-10-07T12:35:19+02:00</time>
          </trkpt>
        </trkseg>
      </trk>
    </gpx>
"""

from __future__ import annotations

from pathlib import Path
from xml.sax.saxutils import escape, quoteattr

from crataegus.schemas.location import Location

_HEADER = """<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="crataegus" xmlns="http://www.topografix.com/GPX/1/1">
  <trk>
    <name>{name}</name>
    <trkseg>
"""

_POINT = """      <trkpt lat={lat} lon={lon}>
        <ele>{ele}</ele>
        <time>{time}</time>
      </trkpt>
"""

_FOOTER = """    </trkseg>
  </trk>
</gpx>
"""


class GpxExporter:
    """Writes one track segment; ``finish()`` must be called to close the document."""

    def __init__(self, name: str, path: Path) -> None:
        self.path = path
        self._file = path.open("w", encoding="utf-8")
        self._file.write(_HEADER.format(name=escape(name)))

    def write_location(self, location: Location) -> None:
        self._file.write(
            _POINT.format(
                lat=quoteattr(repr(location.latitude)),
                lon=quoteattr(repr(location.longitude)),
                ele=repr(location.altitude),
                time=location.time_local.isoformat(),
            )
        )

    def finish(self) -> None:
        if self._file.closed:
            return
        self._file.write(_FOOTER)
        self._file.close()

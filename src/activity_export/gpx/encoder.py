"""
GPX 1.1 encoder: one track with one segment, one point per sample.

  elevation  only where the altitude sample is present, one decimal place
  time       only when the time stream is present: start + elapsed seconds

The document itself (namespaces, escaping, number formatting) is produced by
gpxpy. Names are stripped of characters XML 1.0 cannot carry first, so the
output is well-formed for any activity name.
"""
import logging
import re
from datetime import timedelta
from typing import List, Optional
from xml.etree import ElementTree

import gpxpy
import gpxpy.gpx

from activity_export.analysis.geodesy import round_half_up
from activity_export.analysis.streams import require_minimum
from activity_export.config import Settings, get_settings
from activity_export.errors import EncodingInternalError
from activity_export.models.request import ActivityExportRequest

logger = logging.getLogger(__name__)

GPX_VERSION = "1.1"

# Characters not allowed anywhere in an XML 1.0 document
_INVALID_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def clean_text(text: str) -> str:
    """Drop characters that XML 1.0 cannot represent, even escaped."""
    return _INVALID_XML_CHARS.sub("", text)


def _trackpoints(request: ActivityExportRequest) -> List[gpxpy.gpx.GPXTrackPoint]:
    bundle = request.streams
    altitude = bundle.altitude_meters
    points = []
    for i, (lat, lon) in enumerate(bundle.positions):
        elevation = None
        if altitude is not None and altitude[i] is not None:
            elevation = round(altitude[i], 1)
        time = None
        if bundle.has_time:
            time = request.start_time_utc + timedelta(seconds=bundle.elapsed_seconds[i])
        points.append(gpxpy.gpx.GPXTrackPoint(latitude=lat, longitude=lon, elevation=elevation, time=time))
    return points


def _calories_extension(calories: float) -> ElementTree.Element:
    node = ElementTree.Element("calories")
    node.text = str(round_half_up(calories))
    return node


def encode_gpx(
    request: ActivityExportRequest,
    settings: Optional[Settings] = None,
) -> str:
    """
    Render the request as a GPX 1.1 document.

    A positive request.calories adds <extensions><calories> to <metadata>.

    Raises:
        InsufficientDataError: fewer than two GPS points.
        EncodingInternalError: unexpected failure rendering the document.
    """
    require_minimum(request.streams)
    settings = settings or get_settings()

    try:
        name = clean_text(request.activity_name or settings.default_activity_name)

        gpx = gpxpy.gpx.GPX()
        gpx.creator = clean_text(settings.product_name)
        gpx.name = name
        gpx.time = request.start_time_utc
        if request.calories is not None and request.calories > 0:
            gpx.metadata_extensions.append(_calories_extension(request.calories))

        track = gpxpy.gpx.GPXTrack()
        track.name = name
        gpx.tracks.append(track)

        segment = gpxpy.gpx.GPXTrackSegment()
        track.segments.append(segment)
        segment.points.extend(_trackpoints(request))

        document = gpx.to_xml(version=GPX_VERSION)
    except Exception as exc:
        logger.exception("GPX encoding failed for %r", request.activity_name)
        raise EncodingInternalError(f"GPX encoding failed: {exc}") from exc

    logger.debug("Encoded GPX: %d points, %d chars", len(request.streams), len(document))
    return document

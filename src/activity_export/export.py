"""
Export orchestration: pick the encoder for a format, name the file, and hand
back a complete artifact.

This is the only surface callers (CLI, web handlers) need:

  check_availability(payload)     -> per-format "can this be exported?"
  export_activity(request, fmt)   -> ExportArtifact(filename, media_type, content)
"""
import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from activity_export.analysis.streams import MIN_POSITIONS, StreamBundle, coerce_stream
from activity_export.config import Settings, get_settings
from activity_export.errors import (
    ActivityExportError,
    EncodingInternalError,
    UnsupportedFormatError,
)
from activity_export.fit.encoder import encode_fit
from activity_export.gpx.encoder import encode_gpx
from activity_export.models.request import ActivityExportRequest

logger = logging.getLogger(__name__)

NO_GPS_REASON = "No GPS track available for this activity."


class ExportFormat(str, enum.Enum):
    GPX = "gpx"
    FIT = "fit"

    @property
    def media_type(self) -> str:
        return _MEDIA_TYPES[self]

    @property
    def extension(self) -> str:
        return self.value


_MEDIA_TYPES = {
    ExportFormat.GPX: "application/gpx+xml",
    ExportFormat.FIT: "application/vnd.ant.fit",
}


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    media_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def parse_format(value: Union[str, ExportFormat]) -> ExportFormat:
    """Accept "gpx"/"fit" in any case. Raises UnsupportedFormatError otherwise."""
    if isinstance(value, ExportFormat):
        return value
    try:
        return ExportFormat(str(value).strip().lower())
    except ValueError:
        raise UnsupportedFormatError(f"Unsupported export format: {value!r}") from None


def media_type_for(fmt: Union[str, ExportFormat]) -> str:
    return parse_format(fmt).media_type


def _slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:64].rstrip("-")


def build_filename(
    fmt: Union[str, ExportFormat],
    activity_id: Optional[Union[int, str]] = None,
    activity_name: str = "",
    settings: Optional[Settings] = None,
) -> str:
    """
    "<prefix>-<id>.<ext>" when an id is known, else a slug of the activity
    name, else just "<prefix>.<ext>".

    Ids are used verbatim as strings so large numeric ids keep every digit.
    """
    fmt = parse_format(fmt)
    settings = settings or get_settings()
    prefix = settings.filename_prefix

    stem = _slugify(str(activity_id)) if activity_id is not None else _slugify(activity_name)
    base = f"{prefix}-{stem}" if stem else prefix
    return f"{base}.{fmt.extension}"


def check_availability(streams: Union[StreamBundle, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Report whether each format can be exported, from either a built bundle
    or raw upstream streams.

    Both formats need a latlng stream with at least two points.
    """
    if isinstance(streams, StreamBundle):
        has_gps = len(streams) >= MIN_POSITIONS
    else:
        latlng = coerce_stream(streams.get("latlng"))
        has_gps = latlng is not None and len(latlng) >= MIN_POSITIONS
    entry: Dict[str, Any] = {"available": True} if has_gps else {"available": False, "reason": NO_GPS_REASON}
    return {fmt.value: dict(entry) for fmt in ExportFormat}


def export_activity(
    request: ActivityExportRequest,
    fmt: Union[str, ExportFormat],
    activity_id: Optional[Union[int, str]] = None,
    settings: Optional[Settings] = None,
) -> ExportArtifact:
    """
    Encode `request` in the requested format.

    Returns:
        ExportArtifact with filename, media type and the complete content
        (UTF-8 bytes for GPX).

    Raises:
        UnsupportedFormatError: unknown format.
        InsufficientDataError: fewer than two GPS points.
        EncodingInternalError: unexpected encoder failure.
    """
    fmt = parse_format(fmt)
    settings = settings or get_settings()

    try:
        if fmt is ExportFormat.GPX:
            content = encode_gpx(request, settings=settings).encode("utf-8")
        else:
            content = encode_fit(request, settings=settings)
    except ActivityExportError:
        raise
    except Exception as exc:
        logger.exception("Export to %s failed", fmt.value)
        raise EncodingInternalError(f"Export to {fmt.value} failed: {exc}") from exc

    artifact = ExportArtifact(
        filename=build_filename(fmt, activity_id, request.activity_name, settings),
        media_type=fmt.media_type,
        content=content,
    )
    logger.info(
        "Exported %s (%d samples, %d bytes) as %s",
        artifact.filename, len(request.streams), artifact.size, fmt.value,
    )
    return artifact

"""
FIT activity file encoder.

Message sequence (each exactly once unless noted):

  FILE_ID -> DEVICE_INFO -> EVENT(timer start) -> RECORD x n
    -> EVENT(timer stop) -> LAP -> SESSION -> ACTIVITY

RECORD distance/speed and the LAP/SESSION totals all come from one
aggregation pass, so per-sample and summary numbers agree.

Bytes are only returned once the whole file has been assembled and passed a
structural check; any failure before that raises and nothing is returned.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from activity_export.analysis.aggregation import ActivityMetrics, aggregate
from activity_export.analysis.geodesy import (
    datetime_to_fit_timestamp,
    degrees_to_fit_semicircles,
    round_half_up,
)
from activity_export.analysis.streams import Samples, StreamBundle, require_minimum
from activity_export.config import Settings, get_settings
from activity_export.errors import ActivityExportError, EncodingInternalError
from activity_export.fit import profile
from activity_export.fit.profile import (
    ActivityType,
    DeviceIndex,
    Event,
    EventType,
    FileType,
    LapTrigger,
    SessionTrigger,
    fit_sport,
    fit_sub_sport,
)
from activity_export.fit.writer import FitWriter, verify_fit_bytes
from activity_export.models.request import ActivityExportRequest

logger = logging.getLogger(__name__)

_SEMICIRCLE_WRAP = 2**31


def _semicircles(degrees: float) -> int:
    """Semicircles clamped into sint32; +180 degrees folds onto -180 (same meridian)."""
    value = degrees_to_fit_semicircles(degrees)
    if value >= _SEMICIRCLE_WRAP:
        value -= 2 * _SEMICIRCLE_WRAP
    return value


def _local_offset(moment: datetime) -> timedelta:
    """UTC offset of the host's local timezone at `moment`."""
    return moment.astimezone().utcoffset() or timedelta(0)


def _record_timestamps(bundle: StreamBundle, start_timestamp: int) -> List[int]:
    return [
        start_timestamp + round_half_up(bundle.elapsed_at(i))
        for i in range(len(bundle))
    ]


def _sample(stream: Optional[Samples], i: int) -> Optional[float]:
    return stream[i] if stream is not None else None


def _rounded_sample(stream: Optional[Samples], i: int) -> Optional[int]:
    value = _sample(stream, i)
    return round_half_up(value) if value is not None else None


def _record_messages(
    bundle: StreamBundle,
    metrics: ActivityMetrics,
    timestamps: List[int],
) -> List[Dict[str, Any]]:
    """One RECORD per sample; missing sensor samples leave their field out."""
    records = []
    for i, (lat, lon) in enumerate(bundle.positions):
        record: Dict[str, Any] = {
            "timestamp": timestamps[i],
            "position_lat": _semicircles(lat),
            "position_long": _semicircles(lon),
            "distance": metrics.distance_meters[i],
            "enhanced_altitude": _sample(bundle.altitude_meters, i),
            "heart_rate": _rounded_sample(bundle.heart_rate_bpm, i),
            "cadence": _rounded_sample(bundle.cadence_rpm, i),
            "power": _rounded_sample(bundle.power_watts, i),
        }
        if metrics.speed_mps[i] > 0:
            record["speed"] = metrics.speed_mps[i]
        records.append(record)
    return records


def _summary_fields(
    request: ActivityExportRequest,
    metrics: ActivityMetrics,
    start_timestamp: int,
    end_timestamp: int,
) -> Dict[str, Any]:
    """Fields LAP and SESSION have in common."""
    summary = metrics.summary
    first_lat, first_lon = request.streams.positions[0]
    fields: Dict[str, Any] = {
        "message_index": 0,
        "timestamp": end_timestamp,
        "start_time": start_timestamp,
        "start_position_lat": _semicircles(first_lat),
        "start_position_long": _semicircles(first_lon),
        "total_elapsed_time": summary.total_elapsed_seconds,
        "total_timer_time": summary.total_elapsed_seconds,
        "total_distance": summary.total_distance_meters,
        "avg_speed": summary.average_speed_mps,
        "max_speed": summary.max_speed_mps,
        "sport": fit_sport(request.sport),
        "sub_sport": fit_sub_sport(request.sub_sport),
    }
    if request.streams.has_altitude:
        fields["total_ascent"] = round_half_up(summary.total_elevation_gain_meters)
    if summary.average_heart_rate_bpm is not None:
        fields["avg_heart_rate"] = summary.average_heart_rate_bpm
    return fields


def encode_fit(
    request: ActivityExportRequest,
    settings: Optional[Settings] = None,
    utc_offset: Optional[timedelta] = None,
) -> bytes:
    """
    Encode an activity as a complete FIT file.

    Args:
        request: validated export request
        settings: device identity and defaults (get_settings() if omitted)
        utc_offset: offset used for ACTIVITY.local_timestamp; defaults to the
            host's local timezone offset at the activity's end

    Returns:
        The FIT file bytes: 14-byte header, records, 2-byte CRC.

    Raises:
        InsufficientDataError: fewer than two GPS points.
        EncodingInternalError: unexpected failure assembling the file.
    """
    bundle = request.streams
    require_minimum(bundle)
    settings = settings or get_settings()

    try:
        data = _encode(request, settings, utc_offset)
    except ActivityExportError:
        raise
    except Exception as exc:
        logger.exception("FIT encoding failed for %r", request.activity_name)
        raise EncodingInternalError(f"FIT encoding failed: {exc}") from exc

    problem = verify_fit_bytes(data)
    if problem is not None:
        logger.error("FIT self-check failed: %s", problem)
        raise EncodingInternalError(f"FIT self-check failed: {problem}")
    return data


def _encode(
    request: ActivityExportRequest,
    settings: Settings,
    utc_offset: Optional[timedelta],
) -> bytes:
    bundle = request.streams
    metrics = aggregate(bundle)
    summary = metrics.summary

    start_timestamp = datetime_to_fit_timestamp(request.start_time_utc)
    timestamps = _record_timestamps(bundle, start_timestamp)
    end_timestamp = timestamps[-1]

    writer = FitWriter()

    writer.write(profile.FILE_ID, {
        "type": FileType.ACTIVITY,
        "manufacturer": settings.manufacturer_id,
        "product": settings.product_id,
        "serial_number": settings.serial_number,
        "time_created": start_timestamp,
    })

    writer.write(profile.DEVICE_INFO, {
        "timestamp": start_timestamp,
        "device_index": DeviceIndex.CREATOR,
        "manufacturer": settings.manufacturer_id,
        "serial_number": settings.serial_number,
        "product": settings.product_id,
        "software_version": settings.software_version,
        "product_name": settings.product_name or None,
    })

    writer.write(profile.EVENT, {
        "timestamp": start_timestamp,
        "event": Event.TIMER,
        "event_type": EventType.START,
    })

    for record in _record_messages(bundle, metrics, timestamps):
        writer.write(profile.RECORD, record)

    writer.write(profile.EVENT, {
        "timestamp": end_timestamp,
        "event": Event.TIMER,
        "event_type": EventType.STOP,
    })

    common = _summary_fields(request, metrics, start_timestamp, end_timestamp)
    last_lat, last_lon = bundle.positions[-1]

    lap = dict(common)
    lap.update({
        "event": Event.LAP,
        "event_type": EventType.STOP,
        "end_position_lat": _semicircles(last_lat),
        "end_position_long": _semicircles(last_lon),
        "lap_trigger": LapTrigger.SESSION_END,
    })
    writer.write(profile.LAP, lap)

    session = dict(common)
    session.update({
        "event": Event.SESSION,
        "event_type": EventType.STOP,
        "first_lap_index": 0,
        "num_laps": 1,
        "trigger": SessionTrigger.ACTIVITY_END,
    })
    writer.write(profile.SESSION, session)

    if utc_offset is None:
        utc_offset = _local_offset(request.start_time_utc + timedelta(seconds=summary.total_elapsed_seconds))
    writer.write(profile.ACTIVITY, {
        "timestamp": end_timestamp,
        "total_timer_time": summary.total_elapsed_seconds,
        "num_sessions": 1,
        "type": ActivityType.MANUAL,
        "event": Event.ACTIVITY,
        "event_type": EventType.STOP,
        "local_timestamp": end_timestamp + int(utc_offset.total_seconds()),
    })

    data = writer.finish()
    logger.debug(
        "Encoded FIT: %d bytes, messages=%s, sport=%s",
        len(data), writer.message_counts, fit_sport(request.sport).name.lower(),
    )
    return data

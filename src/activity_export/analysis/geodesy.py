"""
Geodesy and unit conversions shared by the FIT and GPX encoders.

All functions are pure and expect finite floats; non-finite coordinates are
rejected earlier by the stream validation layer.

FIT conventions used here:
  - positions are "semicircles": signed 32-bit, degrees * 2^31 / 180
  - timestamps are unsigned 32-bit seconds since 1989-12-31T00:00:00Z
  - speeds are m/s, stored as mm/s (scale 1000) in most messages
"""
import math
from datetime import datetime, timedelta, timezone

EARTH_RADIUS_METERS = 6371000.0

# Garmin semicircle <-> degree conversion constants
SEMICIRCLES_PER_DEGREE = (2**31) / 180.0
_DEGREES_PER_SEMICIRCLE = 180.0 / (2**31)

# FIT epoch: 1989-12-31T00:00:00Z, 631065600 seconds after the UNIX epoch
FIT_EPOCH = datetime(1989, 12, 31, tzinfo=timezone.utc)
FIT_EPOCH_UNIX_OFFSET = 631065600


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up.

    Python's round() uses banker's rounding (2.5 -> 2); FIT consumers expect
    2.5 -> 3, the same as device firmware.
    """
    return int(math.floor(value + 0.5))


def haversine_distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points on a spherical Earth.

    Args:
        lat1, lon1: first point in decimal degrees
        lat2, lon2: second point in decimal degrees

    Returns:
        Distance in meters (always >= 0).
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    # Float error can push a a hair past 1.0 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def degrees_to_fit_semicircles(degrees: float) -> int:
    """Convert decimal degrees to FIT semicircles (rounded, not truncated).

    +180 degrees maps to 2^31, one past the sint32 range; the FIT encoder folds
    it onto -2^31 (the same meridian) when packing a longitude.
    """
    return round_half_up(degrees * SEMICIRCLES_PER_DEGREE)


def fit_semicircles_to_degrees(semicircles: int) -> float:
    return semicircles * _DEGREES_PER_SEMICIRCLE


def datetime_to_fit_timestamp(dt: datetime) -> int:
    """
    Seconds since the FIT epoch for an aware (or naive-UTC) datetime.

    Sub-second precision is rounded to the nearest second.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return round_half_up((dt - FIT_EPOCH).total_seconds())


def fit_timestamp_to_datetime(timestamp: int) -> datetime:
    return FIT_EPOCH + timedelta(seconds=timestamp)

"""
Single forward pass over a StreamBundle producing per-sample cumulative
distance and speed, plus whole-activity summary statistics.

Both the per-sample arrays and the summary come out of the same loop, so the
RECORD messages and the LAP/SESSION totals of a FIT file can never disagree.

Speed precedence for sample i:
  1. sensor velocity, if velocity[i] is present and > 0
  2. segment distance / segment time, if a time stream is present and the
     time advanced since sample i-1
  3. 0
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple

from activity_export.analysis.geodesy import haversine_distance_meters, round_half_up
from activity_export.analysis.streams import StreamBundle


@dataclass(frozen=True)
class AggregateSummary:
    """Whole-activity statistics derived during the aggregation pass."""

    total_distance_meters: float
    total_elapsed_seconds: float
    max_speed_mps: float
    average_speed_mps: float
    total_elevation_gain_meters: float
    average_heart_rate_bpm: Optional[int] = None  # None when no positive HR samples


@dataclass(frozen=True)
class ActivityMetrics:
    """Per-sample series plus the summary computed from them."""

    distance_meters: Tuple[float, ...]  # cumulative, non-decreasing
    speed_mps: Tuple[float, ...]  # 0.0 where unknown
    summary: AggregateSummary


def aggregate(bundle: StreamBundle) -> ActivityMetrics:
    """
    Run the aggregation pass over a validated bundle. O(n), no backtracking.

    Elevation gain sums only positive altitude deltas between consecutive
    samples where both are present. Average heart rate ignores missing and
    zero readings (no contact, not 0 bpm).
    Average speed is total distance over total elapsed time, or 0 when no
    time elapsed.
    """
    positions = bundle.positions
    times = bundle.elapsed_seconds
    altitude = bundle.altitude_meters
    heart_rate = bundle.heart_rate_bpm
    velocity = bundle.velocity_mps

    n = len(positions)
    distances: List[float] = [0.0] * n
    speeds: List[float] = [0.0] * n

    total_distance = 0.0
    max_speed = 0.0
    elevation_gain = 0.0
    hr_total = 0.0
    hr_count = 0

    for i in range(n):
        segment = 0.0
        if i > 0:
            prev_lat, prev_lon = positions[i - 1]
            lat, lon = positions[i]
            segment = haversine_distance_meters(prev_lat, prev_lon, lat, lon)
            total_distance += segment
        distances[i] = total_distance

        speed = 0.0
        sensor = velocity[i] if velocity is not None else None
        if sensor is not None and sensor > 0:
            speed = sensor
        elif times is not None and i > 0:
            dt = times[i] - times[i - 1]
            if dt > 0:
                speed = segment / dt
        speeds[i] = speed
        if speed > max_speed:
            max_speed = speed

        # a gap in the altitude stream breaks the climb: both ends must be present
        if altitude is not None and i > 0 and altitude[i] is not None and altitude[i - 1] is not None:
            climb = altitude[i] - altitude[i - 1]
            if climb > 0:
                elevation_gain += climb

        bpm = heart_rate[i] if heart_rate is not None else None
        if bpm is not None and bpm > 0:
            hr_total += bpm
            hr_count += 1

    total_elapsed = bundle.total_elapsed_seconds
    average_speed = total_distance / total_elapsed if total_elapsed > 0 else 0.0
    average_hr = round_half_up(hr_total / hr_count) if hr_count else None

    summary = AggregateSummary(
        total_distance_meters=total_distance,
        total_elapsed_seconds=total_elapsed,
        max_speed_mps=max_speed,
        average_speed_mps=average_speed,
        total_elevation_gain_meters=elevation_gain,
        average_heart_rate_bpm=average_hr,
    )
    return ActivityMetrics(
        distance_meters=tuple(distances),
        speed_mps=tuple(speeds),
        summary=summary,
    )

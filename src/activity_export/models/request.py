"""Export request models: the validated core input and the raw upstream payload."""
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from activity_export.analysis.geodesy import FIT_EPOCH
from activity_export.analysis.streams import (
    StreamBundle,
    build_stream_bundle,
    coerce_numbers,
    coerce_positions,
)
from activity_export.config import Settings, get_settings
from activity_export.errors import InvalidTimestampError
from activity_export.sports import resolve_sport

# Last instant representable as a uint32 FIT timestamp (0xFFFFFFFF is invalid)
_FIT_MAX_SECONDS = 0xFFFFFFFE


@dataclass(frozen=True)
class ActivityExportRequest:
    """
    Everything an encoder needs. Immutable and request-scoped.

    start_time_utc is normalized to aware UTC on construction (naive values
    are taken as UTC); out-of-range times raise InvalidTimestampError.
    """

    activity_name: str
    start_time_utc: datetime
    streams: StreamBundle
    sport: int = 2  # cycling
    sub_sport: int = 0
    calories: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start_time_utc", normalize_start_time(self.start_time_utc))


def normalize_start_time(value: Union[datetime, str, None]) -> datetime:
    """
    Parse and validate an activity start time.

    Accepts an aware or naive (assumed UTC) datetime, or an ISO-8601 string
    (a trailing "Z" is accepted). The result is aware UTC.

    Raises:
        InvalidTimestampError: missing, unparseable, or outside the range a
            FIT uint32 timestamp can represent.
    """
    if value is None:
        raise InvalidTimestampError("Activity start time is missing.")

    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidTimestampError(f"Could not parse start time {value!r}") from exc

    if not isinstance(value, datetime):
        raise InvalidTimestampError(f"Start time must be a datetime, got {type(value).__name__}")

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)

    seconds = (value - FIT_EPOCH).total_seconds()
    if not math.isfinite(seconds) or seconds < 0 or seconds > _FIT_MAX_SECONDS:
        raise InvalidTimestampError(f"Start time {value.isoformat()} is outside the FIT time range")
    return value


class ActivityPayload(BaseModel):
    """
    Upstream activity JSON: summary metadata plus streams keyed by type.

    Each stream may be a bare list or {"data": [...]}. Recognised stream
    keys: latlng, time, altitude, heartrate, cadence, watts, velocity_smooth.
    """

    id: Optional[Union[int, str]] = None
    name: str = ""
    start_date: Optional[str] = None
    sport_type: Optional[Union[int, str]] = None
    calories: Optional[float] = None
    streams: Dict[str, Any] = Field(default_factory=dict)

    def to_request(
        self,
        settings: Optional[Settings] = None,
        sport_override: Optional[Union[int, str]] = None,
    ) -> ActivityExportRequest:
        """
        Validate the payload into an ActivityExportRequest.

        Raises:
            InvalidTimestampError: start_date missing or unparseable.
            InsufficientDataError: fewer than two GPS points.
            InvalidStreamError: malformed latlng stream.
        """
        settings = settings or get_settings()
        start = normalize_start_time(self.start_date)

        streams = self.streams
        bundle = build_stream_bundle(
            coerce_positions(streams.get("latlng")),
            elapsed_seconds=coerce_numbers(streams.get("time")),
            altitude_meters=coerce_numbers(streams.get("altitude")),
            heart_rate_bpm=coerce_numbers(streams.get("heartrate")),
            cadence_rpm=coerce_numbers(streams.get("cadence")),
            power_watts=coerce_numbers(streams.get("watts")),
            velocity_mps=coerce_numbers(streams.get("velocity_smooth")),
        )

        chosen = sport_override if sport_override is not None else self.sport_type
        sport, sub_sport = resolve_sport(chosen, settings.default_sport)

        return ActivityExportRequest(
            activity_name=self.name,
            start_time_utc=start,
            streams=bundle,
            sport=sport,
            sub_sport=sub_sport,
            calories=self.calories,
        )

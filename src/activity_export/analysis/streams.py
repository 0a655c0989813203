"""
StreamBundle: the validated, index-aligned sample streams every encoder consumes.

Upstream data is frequently partial, so validation favours graceful
degradation: an optional stream whose length differs from the position count
is dropped (treated as not provided) instead of failing the export. A single
null or non-finite sample only marks that sample as missing (None); the rest
of the stream is kept. Only the position stream is mandatory, and the time
stream must be complete since every RECORD timestamp comes from it.

Stream presence is decided once here. Downstream code checks
`bundle.altitude_meters is None` (or the has_* properties), never compares
lengths, and then checks each sample for None.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from activity_export.errors import InsufficientDataError, InvalidStreamError

logger = logging.getLogger(__name__)

MIN_POSITIONS = 2

LatLon = Tuple[float, float]
Samples = Tuple[Optional[float], ...]


@dataclass(frozen=True)
class StreamBundle:
    """
    Aligned per-sample streams. Every present optional stream has exactly
    len(positions) entries; an entry is None where that sample is missing.

    elapsed_seconds are seconds since the activity start and never contain
    gaps; when absent, sample i is taken to occur at second i.
    """

    positions: Tuple[LatLon, ...]
    elapsed_seconds: Optional[Tuple[float, ...]] = None
    altitude_meters: Optional[Samples] = None
    heart_rate_bpm: Optional[Samples] = None
    cadence_rpm: Optional[Samples] = None
    power_watts: Optional[Samples] = None
    velocity_mps: Optional[Samples] = None

    def __len__(self) -> int:
        return len(self.positions)

    @property
    def has_time(self) -> bool:
        return self.elapsed_seconds is not None

    @property
    def has_altitude(self) -> bool:
        return self.altitude_meters is not None

    def elapsed_at(self, i: int) -> float:
        """Seconds since start for sample i (index itself without a time stream)."""
        if self.elapsed_seconds is None:
            return float(i)
        return self.elapsed_seconds[i]

    @property
    def total_elapsed_seconds(self) -> float:
        return self.elapsed_at(len(self.positions) - 1)


def coerce_stream(value: Any) -> Optional[List[Any]]:
    """
    Unwrap an upstream stream value.

    Streams arrive either as a bare list or as an object {"data": [...]}
    (the key_by_type shape). Anything else is treated as missing.
    """
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("data")
    if isinstance(value, (list, tuple)):
        return list(value)
    return None


def coerce_positions(value: Any) -> Optional[List[LatLon]]:
    """
    Convert a raw latlng stream into (lat, lon) float pairs.

    Returns None if the stream is missing. Raises InvalidStreamError if any
    entry is not a 2-element pair of finite numbers within coordinate bounds.
    """
    items = coerce_stream(value)
    if items is None:
        return None

    pairs: List[LatLon] = []
    for i, item in enumerate(items):
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise InvalidStreamError(f"Position {i} is not a [lat, lon] pair: {item!r}")
        try:
            lat = float(item[0])
            lon = float(item[1])
        except (TypeError, ValueError) as exc:
            raise InvalidStreamError(f"Position {i} is not numeric: {item!r}") from exc
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise InvalidStreamError(f"Position {i} has a non-finite coordinate: {item!r}")
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            raise InvalidStreamError(f"Position {i} is out of range: {item!r}")
        pairs.append((lat, lon))
    return pairs


def coerce_sample(item: Any) -> Optional[float]:
    """A finite float, or None for null, boolean, non-numeric or non-finite entries."""
    if item is None or isinstance(item, bool):
        return None
    try:
        number = float(item)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def coerce_numbers(value: Any) -> Optional[List[Optional[float]]]:
    """
    Convert a raw numeric stream into floats, sample by sample.

    Returns None if the stream is missing. Unusable entries become None
    without affecting their neighbours.
    """
    items = coerce_stream(value)
    if items is None:
        return None
    return [coerce_sample(item) for item in items]


def _aligned(
    name: str,
    values: Optional[Sequence[Any]],
    n: int,
) -> Optional[Samples]:
    if values is None:
        return None
    if len(values) != n:
        logger.debug("Dropping %s stream: %d samples, expected %d", name, len(values), n)
        return None
    samples = tuple(coerce_sample(v) for v in values)
    if all(s is None for s in samples):
        logger.debug("Dropping %s stream: no usable samples", name)
        return None
    missing = sum(1 for s in samples if s is None)
    if missing:
        logger.debug("%s stream has %d missing samples", name, missing)
    return samples


def _monotonic_time(values: Optional[Samples]) -> Optional[Tuple[float, ...]]:
    """Time streams must be complete, start >= 0 and never go backwards."""
    if values is None:
        return None
    if any(v is None for v in values):
        logger.debug("Dropping time stream: missing samples")
        return None
    if values[0] < 0:
        logger.debug("Dropping time stream: negative first offset %s", values[0])
        return None
    for prev, cur in zip(values, values[1:]):
        if cur < prev:
            logger.debug("Dropping time stream: offset decreases %s -> %s", prev, cur)
            return None
    return values


def build_stream_bundle(
    positions: Optional[Sequence[Sequence[float]]],
    elapsed_seconds: Optional[Sequence[Optional[float]]] = None,
    altitude_meters: Optional[Sequence[Optional[float]]] = None,
    heart_rate_bpm: Optional[Sequence[Optional[float]]] = None,
    cadence_rpm: Optional[Sequence[Optional[float]]] = None,
    power_watts: Optional[Sequence[Optional[float]]] = None,
    velocity_mps: Optional[Sequence[Optional[float]]] = None,
) -> StreamBundle:
    """
    Validate and align raw streams into a StreamBundle.

    n is fixed to the number of positions. Optional streams of any other
    length are dropped. A time stream that is negative at the start or
    decreases anywhere is dropped too, so RECORD timestamps stay ascending.

    Raises:
        InsufficientDataError: fewer than two positions.
        InvalidStreamError: a position is malformed or non-finite.
    """
    pairs = coerce_positions(positions) if positions is not None else None
    if pairs is None or len(pairs) < MIN_POSITIONS:
        count = 0 if pairs is None else len(pairs)
        raise InsufficientDataError(
            f"At least {MIN_POSITIONS} GPS points are required, got {count}."
        )

    n = len(pairs)
    bundle = StreamBundle(
        positions=tuple(pairs),
        elapsed_seconds=_monotonic_time(_aligned("time", elapsed_seconds, n)),
        altitude_meters=_aligned("altitude", altitude_meters, n),
        heart_rate_bpm=_aligned("heart_rate", heart_rate_bpm, n),
        cadence_rpm=_aligned("cadence", cadence_rpm, n),
        power_watts=_aligned("power", power_watts, n),
        velocity_mps=_aligned("velocity", velocity_mps, n),
    )
    logger.debug(
        "Built stream bundle: %d samples (time=%s altitude=%s hr=%s cadence=%s power=%s velocity=%s)",
        n,
        bundle.elapsed_seconds is not None,
        bundle.altitude_meters is not None,
        bundle.heart_rate_bpm is not None,
        bundle.cadence_rpm is not None,
        bundle.power_watts is not None,
        bundle.velocity_mps is not None,
    )
    return bundle


def require_minimum(bundle: StreamBundle) -> None:
    """Re-check the two-point minimum at encoder entry."""
    if len(bundle.positions) < MIN_POSITIONS:
        raise InsufficientDataError(
            f"At least {MIN_POSITIONS} GPS points are required, got {len(bundle.positions)}."
        )

"""
Map free-text sport labels ("Ride", "Trail Run", "EBikeRide", ...) onto the
FIT sport enumeration.

The label is lowercased and stripped of whitespace, then matched against an
ordered list of substring rules. First match wins, so order is precedence:

  1. e-bike     ebike, e-bike, emountain          -> 21 e-biking
  2. cycling    ride, cycling, bike, gravel,
                mountain, velomobile              -> 2  cycling
  3. running    run, trail, track                 -> 1  running
  4. walking    walk                              -> 11 walking
  5. hiking     hike                              -> 17 hiking
  6. swimming   swim                              -> 5  swimming
  7. rowing     row, kayak, canoe                 -> 15 rowing
  8. training   workout, crossfit, yoga, gym      -> 10 training

Anything else is generic (0). E-bike must precede cycling because every
e-bike label also contains "bike".
"""
import re
from typing import Optional, Tuple, Union

from activity_export.fit.profile import SPORT_NAMES, Sport, SubSport, fit_sport

_SPORT_RULES: Tuple[Tuple[Sport, Tuple[str, ...]], ...] = (
    (Sport.E_BIKING, ("ebike", "e-bike", "emountain")),
    (Sport.CYCLING, ("ride", "cycling", "bike", "gravel", "mountain", "velomobile")),
    (Sport.RUNNING, ("run", "trail", "track")),
    (Sport.WALKING, ("walk",)),
    (Sport.HIKING, ("hike",)),
    (Sport.SWIMMING, ("swim",)),
    (Sport.ROWING, ("row", "kayak", "canoe")),
    (Sport.TRAINING, ("workout", "crossfit", "yoga", "gym")),
)

# Sub-sport hints, checked only within the matching sport
_SUB_SPORT_RULES: Tuple[Tuple[Sport, str, SubSport], ...] = (
    (Sport.RUNNING, "trail", SubSport.TRAIL),
    (Sport.RUNNING, "track", SubSport.TRACK),
    (Sport.RUNNING, "treadmill", SubSport.TREADMILL),
    (Sport.RUNNING, "virtual", SubSport.VIRTUAL_ACTIVITY),
    (Sport.CYCLING, "gravel", SubSport.GRAVEL_CYCLING),
    (Sport.CYCLING, "mountain", SubSport.MOUNTAIN),
    (Sport.CYCLING, "virtual", SubSport.VIRTUAL_ACTIVITY),
    (Sport.CYCLING, "indoor", SubSport.INDOOR_CYCLING),
    (Sport.CYCLING, "road", SubSport.ROAD),
)


def _normalize(label: str) -> str:
    return re.sub(r"\s+", "", label.lower())


def map_sport_label_to_fit(label: Optional[str]) -> int:
    """Map a sport label to a FIT sport integer. Unmatched or empty -> 0 (generic)."""
    if not label:
        return Sport.GENERIC.value
    normalized = _normalize(label)
    for sport, needles in _SPORT_RULES:
        if any(needle in normalized for needle in needles):
            return sport.value
    return Sport.GENERIC.value


def map_sport_label_to_sub_sport(label: Optional[str], sport: int) -> int:
    """FIT sub-sport for a label already classified as `sport`; 0 when nothing specific applies."""
    if not label:
        return SubSport.GENERIC.value
    normalized = _normalize(label)
    for rule_sport, needle, sub_sport in _SUB_SPORT_RULES:
        if rule_sport == sport and needle in normalized:
            return sub_sport.value
    return SubSport.GENERIC.value


def resolve_sport(value: Union[str, int, None], default: int) -> Tuple[int, int]:
    """
    Resolve a caller-supplied sport (label, integer, or numeric string)
    into (sport, sub_sport).

    Integers are taken as FIT sport numbers; labels go through the substring
    rules. None yields (default, generic).
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return fit_sport(default).value, SubSport.GENERIC.value
    if isinstance(value, bool):
        raise TypeError("sport must be a label or an integer")
    if isinstance(value, int):
        return fit_sport(value).value, SubSport.GENERIC.value
    if value.strip().isdigit():
        return fit_sport(int(value.strip())).value, SubSport.GENERIC.value
    sport = map_sport_label_to_fit(value)
    return sport, map_sport_label_to_sub_sport(value, sport)


def sport_name(sport: int) -> str:
    return SPORT_NAMES.get(fit_sport(sport), "generic")

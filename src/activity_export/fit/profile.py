"""
The subset of the FIT profile needed to write an activity file.

Message and field numbers, base types, scales and offsets come from the
profile tables fitparse ships (fitparse.profile.MESSAGE_TYPES); this module
only lists, per message, which fields the encoder writes and in what order.
Stored values are (value + offset) * scale, as in the Garmin profile
spreadsheet.
"""
from enum import IntEnum
from typing import Dict, Iterable, Tuple

from fitparse.profile import FIELD_TYPE_TIMESTAMP, FIELD_TYPES, MESSAGE_TYPES
from fitparse.records import BaseType

PROTOCOL_VERSION = 0x10  # 1.0: no developer fields, readable by every decoder
PROFILE_VERSION = 2140  # 21.40
HEADER_SIZE = 14

_INTEGER_FORMATS = "bBhHiIqQ"

_MESSAGES_BY_NAME = {m.name: m for m in MESSAGE_TYPES.values()}


class FieldDef:
    """One writable field, resolved against the fitparse profile."""

    __slots__ = ("number", "name", "base_type", "scale", "offset", "units")

    def __init__(self, number: int, name: str, base_type: BaseType, scale=None, offset=None, units=None):
        self.number = number
        self.name = name
        self.base_type = base_type
        self.scale = scale or 1
        self.offset = offset or 0
        self.units = units or ""

    @property
    def size(self) -> int:
        """Bytes per value (per character for strings)."""
        return self.base_type.size

    @property
    def is_string(self) -> bool:
        return self.base_type.name == "string"

    @property
    def is_integer(self) -> bool:
        return self.base_type.fmt in _INTEGER_FORMATS

    @property
    def invalid(self) -> int:
        """The FIT invalid value: all ones, the signed maximum, or zero for z types."""
        bits = self.size * 8
        if self.base_type.fmt.islower():
            return 2 ** (bits - 1) - 1
        if self.base_type.name.endswith("z"):
            return 0
        return 2 ** bits - 1

    @property
    def minimum(self) -> int:
        if self.base_type.fmt.islower():
            return -(2 ** (self.size * 8 - 1))
        return 1 if self.base_type.name.endswith("z") else 0

    @property
    def maximum(self) -> int:
        if self.base_type.name.endswith("z"):
            return 2 ** (self.size * 8) - 1
        return self.invalid - 1

    def __repr__(self) -> str:
        return f"FieldDef({self.number}, {self.name!r}, {self.base_type.name})"


def _profile_field(message_type, name: str) -> FieldDef:
    for field in message_type.fields.values():
        if field.name == name:
            break
    else:
        if name != FIELD_TYPE_TIMESTAMP.name:
            raise KeyError(f"FIT profile message {message_type.name!r} has no field {name!r}")
        field = FIELD_TYPE_TIMESTAMP
    return FieldDef(field.def_num, field.name, field.base_type, field.scale, field.offset, field.units)


class MessageDef:
    """Global message schema: number plus fields keyed by name, in write order."""

    def __init__(self, name: str, field_names: Iterable[str]):
        message_type = _MESSAGES_BY_NAME[name]
        self.name = name
        self.global_number = message_type.mesg_num
        self.fields: Dict[str, FieldDef] = {
            field_name: _profile_field(message_type, field_name) for field_name in field_names
        }

    def field(self, name: str) -> FieldDef:
        try:
            return self.fields[name]
        except KeyError:
            raise KeyError(f"Message {self.name!r} has no field {name!r}") from None

    def __repr__(self) -> str:
        return f"MessageDef({self.name!r}, {self.global_number})"


# ─── Enums ─────────────────────────────────────────────────────────────────────

class FileType(IntEnum):
    ACTIVITY = 4


class Event(IntEnum):
    TIMER = 0
    LAP = 9
    SESSION = 8
    ACTIVITY = 26


class EventType(IntEnum):
    START = 0
    STOP = 1


class DeviceIndex(IntEnum):
    CREATOR = 0


class ActivityType(IntEnum):
    MANUAL = 0


class LapTrigger(IntEnum):
    SESSION_END = 7


class SessionTrigger(IntEnum):
    ACTIVITY_END = 0


class Sport(IntEnum):
    GENERIC = 0
    RUNNING = 1
    CYCLING = 2
    SWIMMING = 5
    TRAINING = 10
    WALKING = 11
    ROWING = 15
    HIKING = 17
    E_BIKING = 21


class SubSport(IntEnum):
    GENERIC = 0
    TREADMILL = 1
    STREET = 2
    TRAIL = 3
    TRACK = 4
    INDOOR_CYCLING = 6
    ROAD = 7
    MOUNTAIN = 8
    GRAVEL_CYCLING = 46
    VIRTUAL_ACTIVITY = 58


# ─── Messages ──────────────────────────────────────────────────────────────────

FILE_ID = MessageDef("file_id", [
    "type",
    "manufacturer",
    "product",
    "serial_number",
    "time_created",
])

DEVICE_INFO = MessageDef("device_info", [
    "timestamp",
    "device_index",
    "manufacturer",
    "serial_number",
    "product",
    "software_version",
    "product_name",
])

EVENT = MessageDef("event", ["timestamp", "event", "event_type"])

RECORD = MessageDef("record", [
    "timestamp",
    "position_lat",
    "position_long",
    "distance",
    "enhanced_altitude",
    "heart_rate",
    "cadence",
    "power",
    "speed",
])

# Lap and session share their summary fields but number them differently.
_SUMMARY_FIELDS = [
    "total_elapsed_time",
    "total_timer_time",
    "total_distance",
    "avg_speed",
    "max_speed",
    "avg_heart_rate",
    "total_ascent",
]

LAP = MessageDef("lap", [
    "message_index",
    "timestamp",
    "event",
    "event_type",
    "start_time",
    "start_position_lat",
    "start_position_long",
    "end_position_lat",
    "end_position_long",
    *_SUMMARY_FIELDS,
    "lap_trigger",
    "sport",
    "sub_sport",
])

SESSION = MessageDef("session", [
    "message_index",
    "timestamp",
    "event",
    "event_type",
    "start_time",
    "start_position_lat",
    "start_position_long",
    "sport",
    "sub_sport",
    *_SUMMARY_FIELDS,
    "first_lap_index",
    "num_laps",
    "trigger",
])

ACTIVITY = MessageDef("activity", [
    "timestamp",
    "total_timer_time",
    "num_sessions",
    "type",
    "event",
    "event_type",
    "local_timestamp",
])

# Sport integer -> FIT profile name
SPORT_NAMES: Dict[int, str] = {
    sport: FIELD_TYPES["sport"].values[sport] for sport in Sport
}


def fit_sport(value: int) -> Sport:
    """Coerce an integer to a supported Sport; anything unknown is generic."""
    try:
        return Sport(value)
    except ValueError:
        return Sport.GENERIC


def fit_sub_sport(value: int) -> SubSport:
    try:
        return SubSport(value)
    except ValueError:
        return SubSport.GENERIC


def layout_key(message: MessageDef, fields: Tuple[Tuple[int, int, int], ...]) -> Tuple:
    """Identity of a local definition: global number plus (number, size, type) per field."""
    return (message.global_number,) + fields

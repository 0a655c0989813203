"""
Low-level FIT file writer.

Turns (message schema, {field name: physical value}) pairs into FIT records:

  - a definition record is emitted before the first data record of every
    field layout; later messages with the same layout reuse it
  - at most 16 local message numbers are live at once; when they run out the
    least recently used slot is redefined
  - finish() prepends the 14-byte header (with header CRC) and appends the
    file CRC over header + records

Values of None are omitted from the layout entirely. Values that do not fit
their base type are written as the FIT invalid value for that type.
"""
import logging
import struct
from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from fitparse.records import Crc

from activity_export.analysis.geodesy import round_half_up
from activity_export.errors import EncodingInternalError
from activity_export.fit.profile import (
    HEADER_SIZE,
    PROFILE_VERSION,
    PROTOCOL_VERSION,
    FieldDef,
    MessageDef,
    layout_key,
)

logger = logging.getLogger(__name__)

MAX_LOCAL_MESSAGES = 16
_DEFINITION_FLAG = 0x40
_LITTLE_ENDIAN = 0
_MAX_STRING_BYTES = 255


class _LocalDefinition:
    __slots__ = ("local_number", "message", "fields", "sizes")

    def __init__(self, local_number: int, message: MessageDef, fields: List[FieldDef], sizes: List[int]):
        self.local_number = local_number
        self.message = message
        self.fields = fields
        self.sizes = sizes


def _encode_string(value: Any) -> bytes:
    raw = str(value).encode("utf-8")[: _MAX_STRING_BYTES - 1]
    # Never cut a multi-byte character in half
    raw = raw.decode("utf-8", "ignore").encode("utf-8")
    return raw + b"\x00"


def _to_stored(field: FieldDef, value: Any) -> Any:
    """Apply FIT offset and scale: stored = (value + offset) * scale."""
    if field.scale != 1 or field.offset != 0:
        value = (float(value) + field.offset) * field.scale
    if field.is_integer:
        return round_half_up(float(value))
    return float(value)


def _pack_value(field: FieldDef, value: Any, size: int) -> bytes:
    if field.is_string:
        return _encode_string(value).ljust(size, b"\x00")

    stored = _to_stored(field, value)
    if field.is_integer and not (field.minimum <= stored <= field.maximum):
        logger.debug(
            "Field %s=%r out of range for %s, writing invalid value",
            field.name, value, field.base_type.name,
        )
        stored = field.invalid
    return struct.pack("<" + field.base_type.fmt, stored)


class FitWriter:
    """Accumulates FIT records; finish() returns the complete file bytes."""

    def __init__(self) -> None:
        self._records = bytearray()
        # layout key -> live local definition, least recently used first
        self._definitions: "OrderedDict[Tuple, _LocalDefinition]" = OrderedDict()
        self._free_locals = list(range(MAX_LOCAL_MESSAGES))
        self._message_counts: Dict[str, int] = {}
        self._finished = False

    @property
    def message_counts(self) -> Dict[str, int]:
        return dict(self._message_counts)

    @property
    def data_size(self) -> int:
        return len(self._records)

    def write(self, message: MessageDef, values: Mapping[str, Any]) -> None:
        """
        Append one data message, emitting a definition first if this field
        layout has no live local message number.

        Field order follows the message schema; unknown field names raise
        KeyError (a programming error, not bad input).
        """
        if self._finished:
            raise EncodingInternalError("FIT writer already finished")

        present = {name: v for name, v in values.items() if v is not None}
        for name in present:
            message.field(name)

        fields = [f for f in message.fields.values() if f.name in present]
        sizes = []
        for f in fields:
            if f.is_string:
                sizes.append(len(_encode_string(present[f.name])))
            else:
                sizes.append(f.size)

        key = layout_key(
            message,
            tuple((f.number, size, f.base_type.identifier) for f, size in zip(fields, sizes)),
        )
        definition = self._definitions.get(key)
        if definition is None:
            definition = self._define(key, message, fields, sizes)
        else:
            self._definitions.move_to_end(key)

        out = bytearray([definition.local_number])
        for f, size in zip(fields, sizes):
            out += _pack_value(f, present[f.name], size)
        self._records += out
        self._message_counts[message.name] = self._message_counts.get(message.name, 0) + 1

    def _define(
        self,
        key: Tuple,
        message: MessageDef,
        fields: List[FieldDef],
        sizes: List[int],
    ) -> _LocalDefinition:
        if self._free_locals:
            local_number = self._free_locals.pop(0)
        else:
            _, evicted = self._definitions.popitem(last=False)
            local_number = evicted.local_number
            logger.debug("Reusing local message %d for %s", local_number, message.name)

        header = struct.pack(
            "<BBBHB",
            _DEFINITION_FLAG | local_number,
            0,  # reserved
            _LITTLE_ENDIAN,
            message.global_number,
            len(fields),
        )
        body = b"".join(
            struct.pack("<BBB", f.number, size, f.base_type.identifier)
            for f, size in zip(fields, sizes)
        )
        self._records += header + body

        definition = _LocalDefinition(local_number, message, fields, sizes)
        self._definitions[key] = definition
        return definition

    def finish(self) -> bytes:
        """Return header + records + file CRC. The writer cannot be used afterwards."""
        if self._finished:
            raise EncodingInternalError("FIT writer already finished")
        self._finished = True

        header = build_header(len(self._records))
        crc = Crc.calculate(bytes(self._records), Crc.calculate(header))
        return header + bytes(self._records) + struct.pack("<H", crc)


def build_header(data_size: int) -> bytes:
    """14-byte FIT header: size, protocol, profile, data size, ".FIT", header CRC."""
    header = struct.pack(
        "<BBHI4s",
        HEADER_SIZE,
        PROTOCOL_VERSION,
        PROFILE_VERSION,
        data_size,
        b".FIT",
    )
    return header + struct.pack("<H", Crc.calculate(header))


def verify_fit_bytes(data: bytes) -> Optional[str]:
    """
    Structural check of a complete FIT file: header signature, header CRC,
    declared data size against actual length, and trailing file CRC.

    Returns None when the file is valid, otherwise a description of the
    first problem found.
    """
    if len(data) < HEADER_SIZE + 2:
        return f"file too short ({len(data)} bytes)"

    header_size, _, _, data_size, signature = struct.unpack("<BBHI4s", data[:12])
    if signature != b".FIT":
        return f"bad signature {signature!r}"
    if header_size != HEADER_SIZE:
        return f"unexpected header size {header_size}"

    (header_crc,) = struct.unpack("<H", data[12:14])
    if header_crc != Crc.calculate(data[:12]):
        return "header CRC mismatch"

    expected_len = header_size + data_size + 2
    if len(data) != expected_len:
        return f"declared data size {data_size} does not match file length {len(data)}"

    (file_crc,) = struct.unpack("<H", data[-2:])
    if file_crc != Crc.calculate(data[:-2]):
        return "file CRC mismatch"
    return None

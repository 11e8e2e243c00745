"""Custom mapping of raw bytes into flow message fields."""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import Any, Optional

from .numbers import decode_number, decode_number_le, decode_unumber, decode_unumber_le

UNKNOWN_FIELDS = "unknown_fields"

_WIRE_VARINT = 0
_WIRE_BYTES = 2


class EndianType(str, enum.Enum):
    """Byte order of a mapped value."""

    BIG = "big"
    LITTLE = "little"


class ProtoType(str, enum.Enum):
    """Wire type used for values stored in numbered extra fields."""

    STRING = "string"
    VARINT = "varint"


PROTO_TYPE_MAP: dict[str, ProtoType] = {
    "string": ProtoType.STRING,
    "varint": ProtoType.VARINT,
    "bytes": ProtoType.STRING,
}


@dataclass
class MapConfigBase:
    """Where a mapped value goes.

    destination names a field of the flow message; when there is no such
    field, proto_index > 0 stores the value as a numbered extra field.
    """

    destination: str = ""
    endianness: EndianType = EndianType.BIG
    proto_index: int = 0
    proto_type: Optional[ProtoType] = None
    proto_array: bool = False


def get_bytes(data: bytes, offset: int, length: int) -> bytes:
    """Extract length bits starting at bit offset, left-aligned in bytes."""
    if length == 0 or offset < 0:
        return b""
    if length < 0:
        raise ValueError("length cannot be negative")
    left = offset // 8
    right = (offset + length) // 8
    if (offset + length) % 8:
        right += 1
    if left >= len(data):
        return b""
    right = min(right, len(data))

    shift = offset % 8
    carry_mask = 0xFF >> (8 - shift)
    chunk = bytearray(right - left)
    carried = 0
    for j in reversed(range(len(chunk))):
        current = data[j + left]
        chunk[j] = ((current << shift) & 0xFF) | carried
        carried = carry_mask & current
    chunk[-1] &= (0xFF << ((8 - ((offset + length) % 8)) % 8)) & 0xFF
    return bytes(chunk)


def _decode(value: bytes, bits: int, signed: bool, little: bool) -> int:
    if signed:
        return (decode_number_le if little else decode_number)(value, bits)
    return (decode_unumber_le if little else decode_unumber)(value, bits)


def _destination_field(flow_message: Any, name: str) -> Optional[dataclasses.Field]:
    if not name or name.startswith("_") or name == UNKNOWN_FIELDS:
        return None
    if not dataclasses.is_dataclass(flow_message):
        return None
    for item in dataclasses.fields(flow_message):
        if item.name == name:
            return item
    return None


def _varint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _tag(number: int, wire_type: int) -> bytes:
    return _varint((number << 3) | wire_type)


def map_custom(flow_message: Any, value: bytes, cfg: MapConfigBase) -> None:
    """Store value into the flow message as cfg describes.

    Fields of a dataclass flow message are typed by their current value and
    their metadata: "bits" (default 64) and "signed" (default False) give the
    integer type of an int field or of the items of a list field; a list
    field without "bits" holds byte strings. Extra numbered fields are
    appended, protobuf-encoded, to the message's unknown_fields bytes.
    """
    value = bytes(value)
    little = cfg.endianness == EndianType.LITTLE
    target = _destination_field(flow_message, cfg.destination)

    if target is not None:
        current = getattr(flow_message, target.name)
        bits = target.metadata.get("bits")
        signed = bool(target.metadata.get("signed", False))
        if isinstance(current, (bytes, bytearray)):
            setattr(flow_message, target.name, value)
        elif isinstance(current, list):
            item: Any = b"" if bits is None else _decode(value, bits, signed, little)
            current.append(item)
        elif isinstance(current, enum.Enum):
            raise ValueError(f"field {target.name} cannot hold a decoded integer")
        elif isinstance(current, int) and not isinstance(current, bool):
            decoded = _decode(value, 64 if bits is None else bits, signed, little)
            setattr(flow_message, target.name, decoded)
        return

    if cfg.proto_index <= 0:
        return

    unknown = bytes(getattr(flow_message, UNKNOWN_FIELDS, b"") or b"")
    if cfg.proto_type == ProtoType.VARINT:
        number = _decode(value, 64, False, little)
        unknown += _tag(cfg.proto_index, _WIRE_VARINT) + _varint(number)
    elif cfg.proto_type == ProtoType.STRING:
        unknown += _tag(cfg.proto_index, _WIRE_BYTES) + _varint(len(value)) + value
    else:
        raise ValueError("could not insert into protobuf unknown")
    setattr(flow_message, UNKNOWN_FIELDS, unknown)


def map_custom_netflow(flow_message: Any, field: Any, mapper: Any) -> None:
    """Apply the mapping configured for a NetFlow/IPFIX data field, if any."""
    if mapper is None:
        return
    mapped = mapper.map(field)
    if mapped is not None:
        map_custom(flow_message, bytes(field.value), mapped)
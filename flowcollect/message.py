"""Flow messages and their text, JSON and binary forms."""

from __future__ import annotations

import dataclasses
import enum
import functools
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Tuple, Union

from .render import nil_renderer

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_BYTES = 2
_WIRE_FIXED32 = 5

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193


class FlowType(enum.IntEnum):
    """Protocol a flow message was produced from."""

    FLOWUNKNOWN = 0
    SFLOW_5 = 1
    NETFLOW_V5 = 2
    NETFLOW_V9 = 3
    IPFIX = 4


def _uint(number: int, bits: int = 32) -> Any:
    return field(default=0, metadata={"number": number, "bits": bits, "kind": "varint"})


def _raw(number: int) -> Any:
    return field(default=b"", metadata={"number": number, "kind": "bytes"})


def _packed(number: int) -> Any:
    return field(default_factory=list, metadata={"number": number, "bits": 32, "kind": "packed"})


def _repeated_bytes(number: int) -> Any:
    return field(default_factory=list, metadata={"number": number, "kind": "repeated_bytes"})


@dataclass
class FlowMessage:
    """A flow sample with the formatter that decides how it is rendered."""

    type: FlowType = field(default=FlowType.FLOWUNKNOWN, metadata={"number": 1, "kind": "enum"})
    time_received_ns: int = _uint(110, 64)
    sequence_num: int = _uint(4)
    sampling_rate: int = _uint(3, 64)
    sampler_address: bytes = _raw(11)
    time_flow_start_ns: int = _uint(111, 64)
    time_flow_end_ns: int = _uint(112, 64)
    bytes: int = _uint(9, 64)
    packets: int = _uint(10, 64)
    src_addr: bytes = _raw(6)
    dst_addr: bytes = _raw(7)
    etype: int = _uint(30)
    proto: int = _uint(20)
    src_port: int = _uint(21)
    dst_port: int = _uint(22)
    in_if: int = _uint(18)
    out_if: int = _uint(19)
    src_mac: int = _uint(27, 64)
    dst_mac: int = _uint(28, 64)
    src_vlan: int = _uint(33)
    dst_vlan: int = _uint(34)
    vlan_id: int = _uint(29)
    ip_tos: int = _uint(23)
    forwarding_status: int = _uint(24)
    ip_ttl: int = _uint(25)
    ip_flags: int = _uint(38)
    tcp_flags: int = _uint(26)
    icmp_type: int = _uint(31)
    icmp_code: int = _uint(32)
    ipv6_flow_label: int = _uint(37)
    fragment_id: int = _uint(35)
    fragment_offset: int = _uint(36)
    src_as: int = _uint(14)
    dst_as: int = _uint(15)
    next_hop: bytes = _raw(12)
    next_hop_as: int = _uint(13)
    src_net: int = _uint(16)
    dst_net: int = _uint(17)
    bgp_next_hop: bytes = _raw(100)
    bgp_communities: list = _packed(101)
    as_path: list = _packed(102)
    mpls_ttl: list = _packed(80)
    mpls_label: list = _packed(81)
    mpls_ip: list = _repeated_bytes(82)
    observation_domain_id: int = _uint(70)
    observation_point_id: int = _uint(71)
    unknown_fields: Union[bytes, bytearray] = b""
    formatter: Any = field(default=None, repr=False, compare=False)

    def reset(self) -> None:
        """Clear every field except the formatter."""
        for item in dataclasses.fields(self):
            if item.name == "formatter":
                continue
            if item.default_factory is not dataclasses.MISSING:
                setattr(self, item.name, item.default_factory())
            else:
                setattr(self, item.name, item.default)

    def _active_formatter(self) -> Any:
        return self.formatter if self.formatter is not None else _default_formatter()

    def _map_unknown(self, formatter: Any) -> dict[str, Any]:
        mapped: dict[str, Any] = {}
        for number, wire_type, value in _iter_fields(bytes(self.unknown_fields or b"")):
            pb_field = formatter.num_to_pb.get(number)
            if pb_field is None:
                continue
            if wire_type == _WIRE_VARINT:
                decoded: Any = value
            elif wire_type == _WIRE_BYTES:
                decoded = value.hex()
            else:
                continue
            if pb_field.array:
                existing = mapped.get(pb_field.name)
                if not isinstance(existing, list):
                    existing = []
                existing.append(decoded)
                mapped[pb_field.name] = existing
            else:
                mapped[pb_field.name] = decoded
        return mapped

    def key(self) -> Optional[bytes]:
        """FNV-1 32-bit hash of the configured key fields, or None without any."""
        formatter = self.formatter
        if formatter is None or not formatter.key:
            return None
        unknown = self._map_unknown(formatter)
        digest = _FNV32_OFFSET
        for name in formatter.key:
            attr = formatter.re_map.get(name) or name
            if attr in FIELD_NAMES:
                value = getattr(self, attr)
            elif name in unknown:
                value = unknown[name]
            else:
                continue
            for byte in _go_text(value).encode("utf-8"):
                digest = (digest * _FNV32_PRIME) & 0xFFFFFFFF
                digest ^= byte
        return digest.to_bytes(4, "big")

    def to_json(self) -> str:
        return "{" + self.format_custom('"', ",", ":", True) + "}"

    def to_text(self) -> str:
        return self.format_custom("", " ", "=", False)

    def marshal_text(self) -> str:
        return self.to_text()

    def format_custom(self, quotes: str, sep: str, sign: str, null: bool) -> str:
        """Render the formatter's fields as name/value pairs joined by sep."""
        formatter = self._active_formatter()
        unknown = self._map_unknown(formatter)
        parts: list[str] = []

        for name in formatter.fields:
            final_name = formatter.rename.get(name) or name
            attr = formatter.re_map.get(name) or name

            renderer = formatter.render.get(attr)
            has_renderer = renderer is not None
            if renderer is None:
                renderer = nil_renderer

            if attr in FIELD_NAMES:
                value = getattr(self, attr)
            elif name in unknown:
                value = unknown[name]
            elif not has_renderer:
                continue
            else:
                value = None

            label = f"{quotes}{final_name}{quotes}{sign}"
            if formatter.is_slice.get(attr, False):
                items = _as_items(value)
                count = len(items)
                text = "["
                for index, item in enumerate(items):
                    rendered = renderer(self, attr, item)
                    if rendered is None:
                        continue
                    text += _render_value(rendered, quotes)
                    if index < count - 1:
                        text += ","
                text += "]"
                parts.append(label + text)
            else:
                rendered = renderer(self, attr, value)
                if rendered is None:
                    continue
                parts.append(label + _render_value(rendered, quotes))

        return sep.join(parts)

    def marshal_binary(self) -> bytes:
        """Length-prefixed protobuf encoding of the message."""
        encoded = [
            (item.metadata["number"], _encode_field(item, getattr(self, item.name)))
            for item in dataclasses.fields(self)
            if "number" in item.metadata
        ]
        body = b"".join(chunk for _, chunk in sorted(encoded, key=lambda pair: pair[0]))
        body += bytes(self.unknown_fields or b"")
        return _varint(len(body)) + body


FIELD_NAMES: Tuple[str, ...] = tuple(
    item.name for item in dataclasses.fields(FlowMessage) if "number" in item.metadata
)


@functools.lru_cache(maxsize=None)
def _default_formatter() -> Any:
    from .config import map_format

    return map_format(None)


def _as_items(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, bytes, bytearray)):
        return list(value)
    return [value]


def _render_value(rendered: Any, quotes: str) -> str:
    if isinstance(rendered, str):
        return f"{quotes}{rendered}{quotes}"
    return _go_text(rendered)


def _go_text(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, enum.Enum):
        return value.name
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "[" + " ".join(str(byte) for byte in bytes(value)) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_go_text(item) for item in value) + "]"
    return str(value)


def _varint(value: int) -> bytes:
    out = bytearray()
    value &= (1 << 64) - 1
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _tag(number: int, wire_type: int) -> bytes:
    return _varint((number << 3) | wire_type)


def _encode_field(item: dataclasses.Field, value: Any) -> bytes:
    number = item.metadata["number"]
    kind = item.metadata["kind"]
    if kind in ("varint", "enum"):
        number_value = int(value)
        return _tag(number, _WIRE_VARINT) + _varint(number_value) if number_value else b""
    if kind == "bytes":
        raw = bytes(value)
        return _tag(number, _WIRE_BYTES) + _varint(len(raw)) + raw if raw else b""
    if kind == "packed":
        if not value:
            return b""
        payload = b"".join(_varint(int(entry)) for entry in value)
        return _tag(number, _WIRE_BYTES) + _varint(len(payload)) + payload
    return b"".join(
        _tag(number, _WIRE_BYTES) + _varint(len(bytes(entry))) + bytes(entry) for entry in value
    )


def _read_varint(data: bytes, pos: int) -> Tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data) or shift >= 70:
            raise ValueError("malformed unknown fields: truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & ((1 << 64) - 1), pos
        shift += 7


def _iter_fields(data: bytes) -> Iterator[Tuple[int, int, Any]]:
    pos = 0
    while pos < len(data):
        tag, pos = _read_varint(data, pos)
        number, wire_type = tag >> 3, tag & 7
        if wire_type == _WIRE_VARINT:
            value, pos = _read_varint(data, pos)
            yield number, wire_type, value
            continue
        if wire_type == _WIRE_BYTES:
            length, pos = _read_varint(data, pos)
        elif wire_type == _WIRE_FIXED64:
            length = 8
        elif wire_type == _WIRE_FIXED32:
            length = 4
        else:
            raise ValueError(f"malformed unknown fields: unsupported wire type {wire_type}")
        if pos + length > len(data):
            raise ValueError("malformed unknown fields: truncated value")
        yield number, wire_type, data[pos : pos + length]
        pos += length
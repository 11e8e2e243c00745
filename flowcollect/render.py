"""Renderers that turn flow message field values into readable values."""

from __future__ import annotations

import enum
import ipaddress
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

RenderFunc = Callable[[Any, str, Any], Any]
IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_ETYPE_NAMES = {
    0x806: "ARP",
    0x800: "IPv4",
    0x86DD: "IPv6",
}
_PROTO_NAMES = {
    1: "ICMP",
    6: "TCP",
    17: "UDP",
    58: "ICMPv6",
    132: "SCTP",
}
_ICMP_TYPE_NAMES = {
    0: "EchoReply",
    3: "DestinationUnreachable",
    8: "Echo",
    9: "RouterAdvertisement",
    10: "RouterSolicitation",
    11: "TimeExceeded",
}
_ICMP6_TYPE_NAMES = {
    1: "DestinationUnreachable",
    2: "PacketTooBig",
    3: "TimeExceeded",
    128: "EchoRequest",
    129: "EchoReply",
    133: "RouterSolicitation",
    134: "RouterAdvertisement",
}


class RendererID(str, enum.Enum):
    """Names of the renderers that a configuration may select."""

    NONE = "none"
    IP = "ip"
    MAC = "mac"
    ETYPE = "etype"
    PROTO = "proto"
    TYPE = "type"
    NETWORK = "network"
    DATETIME = "datetime"
    DATETIME_NANO = "datetimenano"


def _is_int(data: Any) -> bool:
    return isinstance(data, int) and not isinstance(data, (bool, enum.Enum))


def _as_int64(value: int) -> int:
    if value >= 1 << 63:
        value -= 1 << 64
    return value


def _format_rfc3339_nano(seconds: int, nanos: int) -> str:
    moment = _EPOCH + timedelta(seconds=seconds)
    text = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if nanos:
        text += "." + f"{nanos:09d}".rstrip("0")
    return text + "Z"


def _parse_addr(raw: Any) -> Optional[IPAddress]:
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        return None
    raw = bytes(raw)
    if len(raw) not in (4, 16):
        return None
    return ipaddress.ip_address(raw)


def _addr_text(addr: IPAddress) -> str:
    if addr.version == 6 and addr.ipv4_mapped is not None:
        return f"::ffff:{addr.ipv4_mapped}"
    return str(addr)


def nil_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render byte strings as hex, enums by name and addresses as text."""
    if isinstance(data, enum.Enum):
        return data.name
    if isinstance(data, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return _addr_text(data)
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data).hex()
    return data


def datetime_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render seconds since the epoch as an RFC 3339 UTC timestamp."""
    if _is_int(data):
        try:
            return _format_rfc3339_nano(_as_int64(data), 0)
        except (OverflowError, ValueError):
            pass
    return nil_renderer(msg, field_name, data)


def datetime_nano_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render nanoseconds since the epoch as an RFC 3339 UTC timestamp."""
    if _is_int(data):
        seconds, nanos = divmod(_as_int64(data), 1_000_000_000)
        try:
            return _format_rfc3339_nano(seconds, nanos)
        except (OverflowError, ValueError):
            pass
    return nil_renderer(msg, field_name, data)


def mac_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render the low six bytes of an integer as a MAC address."""
    if _is_int(data):
        raw = (data & 0xFFFF_FFFF_FFFF).to_bytes(6, "big")
        return ":".join(f"{byte:02x}" for byte in raw)
    return nil_renderer(msg, field_name, data)


def render_ip(addr: Any) -> str:
    """Render a 4- or 16-byte address; anything else renders as empty."""
    parsed = _parse_addr(addr)
    return "" if parsed is None else _addr_text(parsed)


def ip_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render byte strings as IP addresses."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return render_ip(data)
    return nil_renderer(msg, field_name, data)


def etype_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render an EtherType by name."""
    if _is_int(data):
        return _ETYPE_NAMES.get(data, "")
    return "unknown"


def proto_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render an IP protocol number by name."""
    if _is_int(data):
        return _PROTO_NAMES.get(data, "")
    return "unknown"


def network_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render a mask length as the network of the matching address."""
    raw = None
    if field_name == "src_net":
        raw = getattr(msg, "src_addr", None)
    elif field_name == "dst_net":
        raw = getattr(msg, "dst_addr", None)
    if not _is_int(data):
        return "unknown"
    addr = _parse_addr(raw)
    if addr is None or not 0 <= data <= addr.max_prefixlen:
        return "invalid Prefix"
    network = ipaddress.ip_network(f"{addr}/{data}", strict=False)
    return f"{_addr_text(network.network_address)}/{network.prefixlen}"


def icmp_code_type(proto: int, icmp_code: int, icmp_type: int) -> str:
    """Name of an ICMP or ICMPv6 message type."""
    if proto == 1:
        return _ICMP_TYPE_NAMES.get(icmp_type, "")
    if proto == 58:
        return _ICMP6_TYPE_NAMES.get(icmp_type, "")
    return "unknown"


def icmp_renderer(msg: Any, field_name: str, data: Any) -> Any:
    """Render the ICMP type name of a message."""
    return icmp_code_type(
        int(getattr(msg, "proto", 0)),
        int(getattr(msg, "icmp_code", 0)),
        int(getattr(msg, "icmp_type", 0)),
    )


RENDERERS: dict[RendererID, RenderFunc] = {
    RendererID.NONE: nil_renderer,
    RendererID.IP: ip_renderer,
    RendererID.MAC: mac_renderer,
    RendererID.ETYPE: etype_renderer,
    RendererID.PROTO: proto_renderer,
    RendererID.DATETIME: datetime_renderer,
    RendererID.DATETIME_NANO: datetime_nano_renderer,
}

DEFAULT_RENDERERS: dict[str, RenderFunc] = {
    "src_mac": mac_renderer,
    "dst_mac": mac_renderer,
    "src_addr": ip_renderer,
    "dst_addr": ip_renderer,
    "sampler_address": ip_renderer,
    "next_hop": ip_renderer,
    "bgp_next_hop": ip_renderer,
    "mpls_label_ip": ip_renderer,
    "etype": etype_renderer,
    "proto": proto_renderer,
    "src_net": network_renderer,
    "dst_net": network_renderer,
    "icmp_name": icmp_renderer,
}
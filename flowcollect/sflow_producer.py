"""Conversion of sFlow flow samples, and of raw frames, into flow messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .config import SFlowMapper
from .mapping import get_bytes, map_custom
from .message import FlowMessage, FlowType

_ETHER_MPLS = b"\x88\x47"
_ETHER_8021Q = b"\x81\x00"
_ETHER_IPV4 = b"\x08\x00"
_ETHER_IPV6 = b"\x86\xdd"
_ETHER_ARP = b"\x08\x06"

_IPV6_FRAGMENT_HEADER = 44


@dataclass
class SampledHeader:
    """A copy of the first bytes of a sampled frame."""

    protocol: int = 0
    frame_length: int = 0
    stripped: int = 0
    original_length: int = 0
    header_data: bytes = b""


@dataclass
class SampledIPv4:
    length: int = 0
    protocol: int = 0
    src_ip: bytes = b""
    dst_ip: bytes = b""
    src_port: int = 0
    dst_port: int = 0
    tcp_flags: int = 0
    tos: int = 0


@dataclass
class SampledIPv6:
    length: int = 0
    protocol: int = 0
    src_ip: bytes = b""
    dst_ip: bytes = b""
    src_port: int = 0
    dst_port: int = 0
    tcp_flags: int = 0
    priority: int = 0


@dataclass
class ExtendedRouter:
    next_hop_ip_version: int = 0
    next_hop: bytes = b""
    src_mask_len: int = 0
    dst_mask_len: int = 0


@dataclass
class ExtendedGateway:
    next_hop_ip_version: int = 0
    next_hop: bytes = b""
    as_number: int = 0
    src_as: int = 0
    src_peer_as: int = 0
    as_destinations: int = 0
    as_path_type: int = 0
    as_path_length: int = 0
    as_path: list[int] = field(default_factory=list)
    communities_length: int = 0
    communities: list[int] = field(default_factory=list)
    local_pref: int = 0


@dataclass
class ExtendedSwitch:
    src_vlan: int = 0
    src_priority: int = 0
    dst_vlan: int = 0
    dst_priority: int = 0


@dataclass
class FlowRecord:
    """A record of a flow sample; data holds one of the record types."""

    data: Any = None
    data_format: int = 0
    length: int = 0


@dataclass
class FlowSample:
    sampling_rate: int = 0
    sample_pool: int = 0
    drops: int = 0
    input: int = 0
    output: int = 0
    records: list[FlowRecord] = field(default_factory=list)
    format: int = 1
    sample_sequence_number: int = 0
    source_id_type: int = 0
    source_id_value: int = 0


@dataclass
class ExpandedFlowSample:
    sampling_rate: int = 0
    sample_pool: int = 0
    drops: int = 0
    input_if_format: int = 0
    input_if_value: int = 0
    output_if_format: int = 0
    output_if_value: int = 0
    records: list[FlowRecord] = field(default_factory=list)
    format: int = 3
    sample_sequence_number: int = 0
    source_id_type: int = 0
    source_id_value: int = 0


@dataclass
class SFlowPacket:
    """A decoded sFlow v5 datagram."""

    version: int = 5
    ip_version: int = 0
    agent_ip: bytes = b""
    sub_agent_id: int = 0
    sequence_number: int = 0
    uptime: int = 0
    samples_count: int = 0
    samples: list[Any] = field(default_factory=list)


def get_sflow_flow_samples(packet: SFlowPacket) -> list[Any]:
    """The flow samples (plain and expanded) of a packet, in order."""
    return [s for s in packet.samples if isinstance(s, (FlowSample, ExpandedFlowSample))]


def _apply_layer(
    flow_message: FlowMessage,
    data: bytes,
    config: Optional[SFlowMapper],
    layer: str,
    bit_offset: int,
) -> None:
    if config is None:
        return
    for layer_cfg in config.layer(layer):
        extracted = get_bytes(data, bit_offset + layer_cfg.offset, layer_cfg.length)
        map_custom(flow_message, extracted, layer_cfg)


def parse_ethernet(offset: int, flow_message: FlowMessage, data: bytes) -> tuple[bytes, int]:
    """Read an Ethernet header; returns the EtherType (empty if too short) and new offset."""
    ether_type = b""
    if len(data) >= offset + 14:
        ether_type = bytes(data[offset + 12 : offset + 14])
        flow_message.dst_mac = int.from_bytes(data[offset : offset + 6], "big")
        flow_message.src_mac = int.from_bytes(data[offset + 6 : offset + 12], "big")
        offset += 14
    return ether_type, offset


def parse_8021q(offset: int, flow_message: FlowMessage, data: bytes) -> tuple[bytes, int]:
    """Read a VLAN tag; returns the inner EtherType (empty if too short) and new offset."""
    ether_type = b""
    if len(data) >= offset + 4:
        flow_message.vlan_id = int.from_bytes(data[offset : offset + 2], "big")
        ether_type = bytes(data[offset + 2 : offset + 4])
        offset += 4
    return ether_type, offset


def parse_mpls(offset: int, flow_message: FlowMessage, data: bytes) -> tuple[bytes, int]:
    """Read an MPLS label stack; the EtherType is guessed from the IP version after it."""
    ether_type = b""
    labels: list[int] = []
    ttls: list[int] = []
    while len(data) >= offset + 5:
        label = int.from_bytes(data[offset : offset + 3], "big") >> 4
        bottom = data[offset + 2] & 1
        ttl = data[offset + 3]
        offset += 4

        last = bottom == 1 or label <= 15 or offset > len(data)
        if last:
            ip_version = (data[offset] & 0xF0) >> 4
            if ip_version == 4:
                ether_type = _ETHER_IPV4
            elif ip_version == 6:
                ether_type = _ETHER_IPV6

        labels.append(label)
        ttls.append(ttl)
        if last:
            break
    flow_message.mpls_label = labels
    flow_message.mpls_ttl = ttls
    return ether_type, offset


def parse_ipv4(offset: int, flow_message: FlowMessage, data: bytes) -> tuple[int, int]:
    """Read an IPv4 header; returns the next protocol and new offset."""
    next_header = 0
    if len(data) >= offset + 20:
        next_header = data[offset + 9]
        flow_message.src_addr = bytes(data[offset + 12 : offset + 16])
        flow_message.dst_addr = bytes(data[offset + 16 : offset + 20])
        flow_message.ip_tos = data[offset + 1]
        flow_message.ip_ttl = data[offset + 8]

        identification = int.from_bytes(data[offset + 4 : offset + 6], "big")
        frag = int.from_bytes(data[offset + 6 : offset + 8], "big")
        flow_message.fragment_id = identification
        flow_message.fragment_offset = frag & 8191
        flow_message.ip_flags = frag >> 13
        offset += 20
    return next_header, offset


def parse_ipv6(offset: int, flow_message: FlowMessage, data: bytes) -> tuple[int, int]:
    """Read an IPv6 header; returns the next header and new offset."""
    next_header = 0
    if len(data) >= offset + 40:
        next_header = data[offset + 6]
        flow_message.src_addr = bytes(data[offset + 8 : offset + 24])
        flow_message.dst_addr = bytes(data[offset + 24 : offset + 40])

        first = int.from_bytes(data[offset : offset + 4], "big")
        flow_message.ip_tos = ((first >> 16) & 0x0FF0) >> 4
        flow_message.ip_ttl = data[offset + 7]
        flow_message.ipv6_flow_label = first & 0xFFFFF
        offset += 40
    return next_header, offset


def parse_ipv6_headers(
    next_header: int, offset: int, flow_message: FlowMessage, data: bytes
) -> tuple[int, int]:
    """Skip IPv6 fragment headers, recording their fragment information."""
    while next_header == _IPV6_FRAGMENT_HEADER and len(data) >= offset + 8:
        next_header = data[offset]
        frag = int.from_bytes(data[offset + 2 : offset + 4], "big")
        flow_message.fragment_id = int.from_bytes(data[offset + 4 : offset + 8], "big")
        flow_message.fragment_offset = frag >> 3
        flow_message.ip_flags = frag & 7
        offset += 8
    return next_header, offset


def parse_tcp(offset: int, flow_message: FlowMessage, data: bytes) -> int:
    """Read ports and flags of a TCP header; returns the new offset."""
    if len(data) >= offset + 14:
        flow_message.src_port = int.from_bytes(data[offset : offset + 2], "big")
        flow_message.dst_port = int.from_bytes(data[offset + 2 : offset + 4], "big")
        flow_message.tcp_flags = data[offset + 13]
        offset += (data[13] >> 4) * 4
    return offset


def parse_udp(offset: int, flow_message: FlowMessage, data: bytes) -> int:
    """Read the ports of a UDP header; returns the new offset."""
    if len(data) >= offset + 4:
        flow_message.src_port = int.from_bytes(data[offset : offset + 2], "big")
        flow_message.dst_port = int.from_bytes(data[offset + 2 : offset + 4], "big")
        offset += 8
    return offset


def parse_icmp(offset: int, flow_message: FlowMessage, data: bytes) -> int:
    """Read type and code of an ICMP header; returns the new offset."""
    if len(data) >= offset + 2:
        flow_message.icmp_type = data[offset]
        flow_message.icmp_code = data[offset + 1]
        offset += 8
    return offset


def parse_icmpv6(offset: int, flow_message: FlowMessage, data: bytes) -> int:
    """Read type and code of an ICMPv6 header; returns the new offset."""
    return parse_icmp(offset, flow_message, data)


def is_mpls(ether_type: bytes) -> bool:
    return bytes(ether_type[:2]) == _ETHER_MPLS


def is_8021q(ether_type: bytes) -> bool:
    return bytes(ether_type[:2]) == _ETHER_8021Q


def is_ipv4(ether_type: bytes) -> bool:
    return bytes(ether_type[:2]) == _ETHER_IPV4


def is_ipv6(ether_type: bytes) -> bool:
    return bytes(ether_type[:2]) == _ETHER_IPV6


def is_arp(ether_type: bytes) -> bool:
    return bytes(ether_type[:2]) == _ETHER_ARP


def _require_ether_type(ether_type: bytes) -> None:
    if len(ether_type) < 2:
        raise ValueError("could not determine the EtherType of the frame")


_TRANSPORTS: dict[int, tuple[Callable[[int, FlowMessage, bytes], int], str]] = {
    17: (parse_udp, "udp"),
    6: (parse_tcp, "tcp"),
    1: (parse_icmp, "icmp"),
    58: (parse_icmpv6, "icmp6"),
}


def parse_ethernet_header(
    flow_message: FlowMessage, data: bytes, config: Optional[SFlowMapper] = None
) -> None:
    """Parse an Ethernet frame through its network and transport layers.

    Raises ValueError when the frame is too short to carry an EtherType.
    """
    data = bytes(data)
    next_header = 0

    _apply_layer(flow_message, data, config, "0", 0)

    ether_type, offset = parse_ethernet(0, flow_message, data)
    _require_ether_type(ether_type)

    if is_8021q(ether_type):
        ether_type, offset = parse_8021q(offset, flow_message, data)
        _require_ether_type(ether_type)

    if is_mpls(ether_type):
        ether_type, offset = parse_mpls(offset, flow_message, data)
        _require_ether_type(ether_type)

    _apply_layer(flow_message, data, config, "3", offset * 8)

    if is_ipv4(ether_type):
        start = offset
        next_header, offset = parse_ipv4(offset, flow_message, data)
        _apply_layer(flow_message, data, config, "ipv4", start * 8)
    elif is_ipv6(ether_type):
        start = offset
        next_header, offset = parse_ipv6(offset, flow_message, data)
        next_header, offset = parse_ipv6_headers(next_header, offset, flow_message, data)
        _apply_layer(flow_message, data, config, "ipv6", start * 8)
    elif is_arp(ether_type):
        _apply_layer(flow_message, data, config, "arp", offset * 8)

    _apply_layer(flow_message, data, config, "4", offset * 8)

    app_offset = 0
    transport = _TRANSPORTS.get(next_header)
    if transport is not None:
        start = offset
        if flow_message.fragment_offset == 0:
            parser, layer = transport
            offset = parser(offset, flow_message, data)
            _apply_layer(flow_message, data, config, layer, start * 8)
        app_offset = offset

    if app_offset > 0:
        # Payload offsets are shifted by the fragment offset so fragments can be mapped too.
        base = app_offset * 8 - flow_message.fragment_offset * 8
        _apply_layer(flow_message, data, config, "7", base)

    flow_message.etype = int.from_bytes(ether_type[:2], "big")
    flow_message.proto = next_header


def parse_sampled_header(
    flow_message: FlowMessage,
    sampled_header: SampledHeader,
    config: Optional[SFlowMapper] = None,
) -> None:
    """Parse the frame copy of a sampled header; only Ethernet is understood."""
    if sampled_header.protocol == 1:
        parse_ethernet_header(flow_message, sampled_header.header_data, config)


def search_sflow_sample(
    flow_message: FlowMessage, flow_sample: Any, config: Optional[SFlowMapper] = None
) -> None:
    """Fill a flow message from a flow sample and its records."""
    flow_message.type = FlowType.SFLOW_5
    records: list[FlowRecord] = []
    if isinstance(flow_sample, FlowSample):
        records = flow_sample.records
        flow_message.sampling_rate = flow_sample.sampling_rate
        flow_message.in_if = flow_sample.input
        flow_message.out_if = flow_sample.output
    elif isinstance(flow_sample, ExpandedFlowSample):
        records = flow_sample.records
        flow_message.sampling_rate = flow_sample.sampling_rate
        flow_message.in_if = flow_sample.input_if_value
        flow_message.out_if = flow_sample.output_if_value

    flow_message.packets = 1
    for record in records:
        data = record.data
        if isinstance(data, SampledHeader):
            flow_message.bytes = data.frame_length
            parse_sampled_header(flow_message, data, config)
        elif isinstance(data, SampledIPv4):
            flow_message.src_addr = bytes(data.src_ip)
            flow_message.dst_addr = bytes(data.dst_ip)
            flow_message.bytes = data.length
            flow_message.proto = data.protocol
            flow_message.src_port = data.src_port
            flow_message.dst_port = data.dst_port
            flow_message.ip_tos = data.tos
            flow_message.etype = 0x800
        elif isinstance(data, SampledIPv6):
            flow_message.src_addr = bytes(data.src_ip)
            flow_message.dst_addr = bytes(data.dst_ip)
            flow_message.bytes = data.length
            flow_message.proto = data.protocol
            flow_message.src_port = data.src_port
            flow_message.dst_port = data.dst_port
            flow_message.ip_tos = data.priority
            flow_message.etype = 0x86DD
        elif isinstance(data, ExtendedRouter):
            flow_message.next_hop = bytes(data.next_hop)
            flow_message.src_net = data.src_mask_len
            flow_message.dst_net = data.dst_mask_len
        elif isinstance(data, ExtendedGateway):
            flow_message.bgp_next_hop = bytes(data.next_hop)
            flow_message.bgp_communities = list(data.communities)
            flow_message.as_path = list(data.as_path)
            if data.as_path:
                flow_message.dst_as = data.as_path[-1]
                flow_message.next_hop_as = data.as_path[0]
            else:
                flow_message.dst_as = data.as_number
            flow_message.src_as = data.src_as if data.src_as > 0 else data.as_number
        elif isinstance(data, ExtendedSwitch):
            flow_message.src_vlan = data.src_vlan
            flow_message.dst_vlan = data.dst_vlan


def search_sflow_samples(samples: list[Any], config: Optional[SFlowMapper] = None) -> list[FlowMessage]:
    """One flow message for each flow sample."""
    messages = []
    for sample in samples:
        flow_message = FlowMessage()
        search_sflow_sample(flow_message, sample, config)
        messages.append(flow_message)
    return messages


def process_message_sflow(packet: SFlowPacket, config: Any = None) -> list[FlowMessage]:
    """Convert an sFlow packet into flow messages; config is a MappedConfig or None."""
    mapper = config.sflow if config is not None else None
    messages = search_sflow_samples(get_sflow_flow_samples(packet), mapper)
    for flow_message in messages:
        flow_message.sampler_address = bytes(packet.agent_ip)
        flow_message.sequence_num = packet.sequence_number
    return messages
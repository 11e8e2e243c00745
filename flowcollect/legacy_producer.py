"""Conversion of NetFlow v5 packets into flow messages."""

from __future__ import annotations

from dataclasses import dataclass, field

from .message import FlowMessage, FlowType

_UINT32 = (1 << 32) - 1
_UINT64 = (1 << 64) - 1
_NS = 1_000_000_000
_SAMPLING_RATE_MASK = 0x3FFF


@dataclass
class NetFlowV5Record:
    """One flow record of a NetFlow v5 packet; addresses are 32-bit integers."""

    src_addr: int = 0
    dst_addr: int = 0
    next_hop: int = 0
    input: int = 0
    output: int = 0
    d_pkts: int = 0
    d_octets: int = 0
    first: int = 0
    last: int = 0
    src_port: int = 0
    dst_port: int = 0
    pad1: int = 0
    tcp_flags: int = 0
    proto: int = 0
    tos: int = 0
    src_as: int = 0
    dst_as: int = 0
    src_mask: int = 0
    dst_mask: int = 0
    pad2: int = 0


@dataclass
class NetFlowV5Packet:
    """A decoded NetFlow v5 packet."""

    version: int = 5
    count: int = 0
    sys_uptime: int = 0
    unix_secs: int = 0
    unix_nsecs: int = 0
    flow_sequence: int = 0
    engine_type: int = 0
    engine_id: int = 0
    sampling_interval: int = 0
    records: list[NetFlowV5Record] = field(default_factory=list)


def _ipv4_bytes(value: int) -> bytes:
    return (value & _UINT32).to_bytes(4, "big")


def convert_netflow_legacy_record(
    flow_message: FlowMessage, base_time: int, uptime: int, record: NetFlowV5Record
) -> None:
    """Fill a flow message from a v5 record; base_time is in nanoseconds."""
    flow_message.type = FlowType.NETFLOW_V5

    diff_first = (uptime - record.first) & _UINT32
    diff_last = (uptime - record.last) & _UINT32
    flow_message.time_flow_start_ns = (base_time - diff_first * _NS) & _UINT64
    flow_message.time_flow_end_ns = (base_time - diff_last * _NS) & _UINT64

    flow_message.next_hop = _ipv4_bytes(record.next_hop)
    flow_message.src_addr = _ipv4_bytes(record.src_addr)
    flow_message.dst_addr = _ipv4_bytes(record.dst_addr)

    flow_message.etype = 0x800
    flow_message.src_as = record.src_as
    flow_message.dst_as = record.dst_as
    flow_message.src_net = record.src_mask
    flow_message.dst_net = record.dst_mask
    flow_message.proto = record.proto
    flow_message.tcp_flags = record.tcp_flags
    flow_message.ip_tos = record.tos
    flow_message.in_if = record.input
    flow_message.out_if = record.output
    flow_message.src_port = record.src_port
    flow_message.dst_port = record.dst_port
    flow_message.packets = record.d_pkts
    flow_message.bytes = record.d_octets


def search_netflow_legacy_records(
    base_time: int, uptime: int, records: list[NetFlowV5Record]
) -> list[FlowMessage]:
    """One flow message for each v5 record."""
    messages = []
    for record in records:
        flow_message = FlowMessage()
        convert_netflow_legacy_record(flow_message, base_time, uptime, record)
        messages.append(flow_message)
    return messages


def process_message_netflow_legacy(packet: NetFlowV5Packet) -> list[FlowMessage]:
    """Convert a NetFlow v5 packet into flow messages."""
    sampling_rate = packet.sampling_interval & _SAMPLING_RATE_MASK
    base_time = packet.unix_secs * _NS + packet.unix_nsecs
    messages = search_netflow_legacy_records(base_time, packet.sys_uptime, packet.records)
    for flow_message in messages:
        flow_message.sequence_num = packet.flow_sequence
        flow_message.sampling_rate = sampling_rate
    return messages
"""Conversion of NetFlow v9 and IPFIX packets into flow messages."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import NetFlowMapper, SFlowMapper
from .mapping import map_custom_netflow
from .message import FlowMessage, FlowType
from .numbers import decode_unumber
from .sampling import SamplingRateSystem
from .sflow_producer import parse_ethernet_header

_UINT32 = (1 << 32) - 1
_UINT64 = (1 << 64) - 1
_NS = 1_000_000_000

# NetFlow v9 field types
NFV9_FIELD_IN_BYTES = 1
NFV9_FIELD_IN_PKTS = 2
NFV9_FIELD_PROTOCOL = 4
NFV9_FIELD_SRC_TOS = 5
NFV9_FIELD_TCP_FLAGS = 6
NFV9_FIELD_L4_SRC_PORT = 7
NFV9_FIELD_IPV4_SRC_ADDR = 8
NFV9_FIELD_SRC_MASK = 9
NFV9_FIELD_INPUT_SNMP = 10
NFV9_FIELD_L4_DST_PORT = 11
NFV9_FIELD_IPV4_DST_ADDR = 12
NFV9_FIELD_DST_MASK = 13
NFV9_FIELD_OUTPUT_SNMP = 14
NFV9_FIELD_IPV4_NEXT_HOP = 15
NFV9_FIELD_SRC_AS = 16
NFV9_FIELD_DST_AS = 17
NFV9_FIELD_BGP_IPV4_NEXT_HOP = 18
NFV9_FIELD_LAST_SWITCHED = 21
NFV9_FIELD_FIRST_SWITCHED = 22
NFV9_FIELD_OUT_BYTES = 23
NFV9_FIELD_OUT_PKTS = 24
NFV9_FIELD_IPV6_SRC_ADDR = 27
NFV9_FIELD_IPV6_DST_ADDR = 28
NFV9_FIELD_IPV6_SRC_MASK = 29
NFV9_FIELD_IPV6_DST_MASK = 30
NFV9_FIELD_IPV6_FLOW_LABEL = 31
NFV9_FIELD_ICMP_TYPE = 32
NFV9_FIELD_SAMPLING_INTERVAL = 34
NFV9_FIELD_SAMPLING_ALGORITHM = 35
NFV9_FIELD_MIN_TTL = 52
NFV9_FIELD_IPV4_IDENT = 54
NFV9_FIELD_IN_SRC_MAC = 56
NFV9_FIELD_OUT_DST_MAC = 57
NFV9_FIELD_SRC_VLAN = 58
NFV9_FIELD_DST_VLAN = 59
NFV9_FIELD_IP_PROTOCOL_VERSION = 60
NFV9_FIELD_IPV6_NEXT_HOP = 62
NFV9_FIELD_BGP_IPV6_NEXT_HOP = 63
NFV9_FIELD_IN_DST_MAC = 80
NFV9_FIELD_OUT_SRC_MAC = 81
NFV9_FIELD_FRAGMENT_OFFSET = 88
NFV9_FIELD_FORWARDING_STATUS = 89

# IPFIX information elements
IPFIX_FIELD_mplsTopLabelIPv4Address = 47
IPFIX_FIELD_samplingInterval = 50
IPFIX_FIELD_mplsTopLabelStackSection = 70
IPFIX_FIELD_mplsLabelStackSection2 = 71
IPFIX_FIELD_mplsLabelStackSection3 = 72
IPFIX_FIELD_observationPointId = 138
IPFIX_FIELD_icmpTypeCodeIPv6 = 139
IPFIX_FIELD_mplsTopLabelIPv6Address = 140
IPFIX_FIELD_flowStartSeconds = 150
IPFIX_FIELD_flowEndSeconds = 151
IPFIX_FIELD_flowStartMilliseconds = 152
IPFIX_FIELD_flowEndMilliseconds = 153
IPFIX_FIELD_flowStartMicroseconds = 154
IPFIX_FIELD_flowEndMicroseconds = 155
IPFIX_FIELD_flowStartNanoseconds = 156
IPFIX_FIELD_flowEndNanoseconds = 157
IPFIX_FIELD_flowStartDeltaMicroseconds = 158
IPFIX_FIELD_flowEndDeltaMicroseconds = 159
IPFIX_FIELD_icmpTypeIPv4 = 176
IPFIX_FIELD_icmpCodeIPv4 = 177
IPFIX_FIELD_icmpTypeIPv6 = 178
IPFIX_FIELD_icmpCodeIPv6 = 179
IPFIX_FIELD_fragmentFlags = 197
IPFIX_FIELD_samplingPacketInterval = 305
IPFIX_FIELD_dataLinkFrameSize = 312
IPFIX_FIELD_dataLinkFrameSection = 315

_SAMPLING_FIELDS = (IPFIX_FIELD_samplingPacketInterval, IPFIX_FIELD_samplingInterval, NFV9_FIELD_SAMPLING_INTERVAL)

_FIELD_BITS = {
    item.name: item.metadata.get("bits", 64) for item in dataclasses.fields(FlowMessage)
}

# Field types decoded straight into an unsigned field of the message.
_UNSIGNED_TARGETS: dict[int, tuple[str, ...]] = {
    IPFIX_FIELD_observationPointId: ("observation_point_id",),
    NFV9_FIELD_IN_BYTES: ("bytes",),
    NFV9_FIELD_IN_PKTS: ("packets",),
    NFV9_FIELD_OUT_BYTES: ("bytes",),
    NFV9_FIELD_OUT_PKTS: ("packets",),
    NFV9_FIELD_L4_SRC_PORT: ("src_port",),
    NFV9_FIELD_L4_DST_PORT: ("dst_port",),
    NFV9_FIELD_PROTOCOL: ("proto",),
    NFV9_FIELD_SRC_AS: ("src_as",),
    NFV9_FIELD_DST_AS: ("dst_as",),
    NFV9_FIELD_INPUT_SNMP: ("in_if",),
    NFV9_FIELD_OUTPUT_SNMP: ("out_if",),
    NFV9_FIELD_FORWARDING_STATUS: ("forwarding_status",),
    NFV9_FIELD_SRC_TOS: ("ip_tos",),
    NFV9_FIELD_TCP_FLAGS: ("tcp_flags",),
    NFV9_FIELD_MIN_TTL: ("ip_ttl",),
    NFV9_FIELD_SRC_MASK: ("src_net",),
    NFV9_FIELD_DST_MASK: ("dst_net",),
    NFV9_FIELD_IPV6_SRC_MASK: ("src_net",),
    NFV9_FIELD_IPV6_DST_MASK: ("dst_net",),
    IPFIX_FIELD_icmpTypeIPv4: ("icmp_type",),
    IPFIX_FIELD_icmpTypeIPv6: ("icmp_type",),
    IPFIX_FIELD_icmpCodeIPv4: ("icmp_code",),
    IPFIX_FIELD_icmpCodeIPv6: ("icmp_code",),
    NFV9_FIELD_IN_SRC_MAC: ("src_mac",),
    NFV9_FIELD_IN_DST_MAC: ("dst_mac",),
    NFV9_FIELD_OUT_SRC_MAC: ("src_mac",),
    NFV9_FIELD_OUT_DST_MAC: ("dst_mac",),
    NFV9_FIELD_SRC_VLAN: ("vlan_id", "src_vlan"),
    NFV9_FIELD_DST_VLAN: ("dst_vlan",),
    NFV9_FIELD_IPV4_IDENT: ("fragment_id",),
    NFV9_FIELD_FRAGMENT_OFFSET: ("fragment_offset",),
    NFV9_FIELD_IPV6_FLOW_LABEL: ("ipv6_flow_label",),
}

# Address fields: (message attribute, is IPv6)
_ADDRESS_TARGETS: dict[int, tuple[str, bool]] = {
    NFV9_FIELD_IPV4_SRC_ADDR: ("src_addr", False),
    NFV9_FIELD_IPV4_DST_ADDR: ("dst_addr", False),
    NFV9_FIELD_IPV6_SRC_ADDR: ("src_addr", True),
    NFV9_FIELD_IPV6_DST_ADDR: ("dst_addr", True),
}

_NEXT_HOP_TARGETS: dict[int, str] = {
    NFV9_FIELD_IPV4_NEXT_HOP: "next_hop",
    NFV9_FIELD_IPV6_NEXT_HOP: "next_hop",
    NFV9_FIELD_BGP_IPV4_NEXT_HOP: "bgp_next_hop",
    NFV9_FIELD_BGP_IPV6_NEXT_HOP: "bgp_next_hop",
}

_MPLS_LABEL_POSITIONS = {
    IPFIX_FIELD_mplsTopLabelStackSection: 0,
    IPFIX_FIELD_mplsLabelStackSection2: 1,
    IPFIX_FIELD_mplsLabelStackSection3: 2,
}

# IPFIX absolute timestamps: (attribute, nanoseconds per unit)
_IPFIX_ABSOLUTE_TIMES: dict[int, tuple[str, int]] = {
    IPFIX_FIELD_flowStartSeconds: ("time_flow_start_ns", _NS),
    IPFIX_FIELD_flowStartMilliseconds: ("time_flow_start_ns", 1_000_000),
    IPFIX_FIELD_flowStartMicroseconds: ("time_flow_start_ns", 1_000),
    IPFIX_FIELD_flowStartNanoseconds: ("time_flow_start_ns", 1),
    IPFIX_FIELD_flowEndSeconds: ("time_flow_end_ns", _NS),
    IPFIX_FIELD_flowEndMilliseconds: ("time_flow_end_ns", 1_000_000),
    IPFIX_FIELD_flowEndMicroseconds: ("time_flow_end_ns", 1_000),
    IPFIX_FIELD_flowEndNanoseconds: ("time_flow_end_ns", 1),
}

_IPFIX_DELTA_TIMES: dict[int, str] = {
    IPFIX_FIELD_flowStartDeltaMicroseconds: "time_flow_start_ns",
    IPFIX_FIELD_flowEndDeltaMicroseconds: "time_flow_end_ns",
}


@dataclass
class DataField:
    """A decoded field of a data record."""

    type: int = 0
    value: Any = None
    pen_provided: bool = False
    pen: int = 0


@dataclass
class DataRecord:
    values: list[DataField] = field(default_factory=list)


@dataclass
class DataFlowSet:
    records: list[DataRecord] = field(default_factory=list)
    id: int = 256


@dataclass
class OptionsDataRecord:
    scopes_values: list[DataField] = field(default_factory=list)
    options_values: list[DataField] = field(default_factory=list)


@dataclass
class OptionsDataFlowSet:
    records: list[OptionsDataRecord] = field(default_factory=list)
    id: int = 256


@dataclass
class TemplateFlowSet:
    records: list[Any] = field(default_factory=list)
    id: int = 0


@dataclass
class NFv9OptionsTemplateFlowSet:
    records: list[Any] = field(default_factory=list)
    id: int = 1


@dataclass
class IPFIXOptionsTemplateFlowSet:
    records: list[Any] = field(default_factory=list)
    id: int = 3


@dataclass
class NFv9Packet:
    """A decoded NetFlow v9 packet."""

    version: int = 9
    count: int = 0
    system_uptime: int = 0
    unix_seconds: int = 0
    sequence_number: int = 0
    source_id: int = 0
    flow_sets: list[Any] = field(default_factory=list)


@dataclass
class IPFIXPacket:
    """A decoded IPFIX packet."""

    version: int = 10
    length: int = 0
    export_time: int = 0
    sequence_number: int = 0
    observation_domain_id: int = 0
    flow_sets: list[Any] = field(default_factory=list)


def netflow_look_for(data_fields: list[DataField], type_id: int) -> tuple[bool, Any]:
    """Whether a field of the type exists, and the value of the first one."""
    for data_field in data_fields:
        if data_field.type == type_id:
            return True, data_field.value
    return False, None


def _populate_uint32(data_fields: list[DataField], type_id: int) -> tuple[bool, int]:
    found, value = netflow_look_for(data_fields, type_id)
    if found and isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if len(raw) < 4:
            raise ValueError(f"field {type_id} is too short for a 32-bit value")
        return True, int.from_bytes(raw[:4], "big")
    return found, 0


def _set_unsigned(flow_message: FlowMessage, name: str, value: bytes) -> None:
    setattr(flow_message, name, decode_unumber(value, _FIELD_BITS[name]))


def _all_zeroes(value: bytes) -> bool:
    return not any(value)


def _replace_address(flow_message: FlowMessage, name: str, value: bytes, ipv6: bool) -> None:
    current = getattr(flow_message, name)
    if (not current and value) or (current and value and not _all_zeroes(value)):
        setattr(flow_message, name, value)
        flow_message.etype = 0x86DD if ipv6 else 0x800


def _set_mpls_label(flow_message: FlowMessage, position: int, value: bytes) -> None:
    label = decode_unumber(value, 32)
    if len(flow_message.mpls_label) < position + 1:
        flow_message.mpls_label = [0] * (position + 1)
    flow_message.mpls_label[position] = label >> 4


def _convert_v9_time(flow_message: FlowMessage, type_id: int, value: bytes, base_ns: int, uptime: int) -> None:
    if type_id == NFV9_FIELD_FIRST_SWITCHED:
        name = "time_flow_start_ns"
    elif type_id == NFV9_FIELD_LAST_SWITCHED:
        name = "time_flow_end_ns"
    else:
        return
    switched = decode_unumber(value, 32)
    diff = (uptime - switched) & _UINT32
    setattr(flow_message, name, (base_ns - diff * _NS) & _UINT64)


def _convert_ipfix_extra(
    flow_message: FlowMessage,
    type_id: int,
    value: bytes,
    base_ns: int,
    mapper_sflow: Optional[SFlowMapper],
) -> None:
    if type_id in _IPFIX_ABSOLUTE_TIMES:
        name, scale = _IPFIX_ABSOLUTE_TIMES[type_id]
        setattr(flow_message, name, (decode_unumber(value, 64) * scale) & _UINT64)
    elif type_id in _IPFIX_DELTA_TIMES:
        delta = decode_unumber(value, 64)
        setattr(flow_message, _IPFIX_DELTA_TIMES[type_id], (base_ns - delta * 1000) & _UINT64)
    elif type_id == IPFIX_FIELD_dataLinkFrameSize:
        _set_unsigned(flow_message, "bytes", value)
        flow_message.packets = 1
    elif type_id == IPFIX_FIELD_dataLinkFrameSection:
        parse_ethernet_header(flow_message, value, mapper_sflow)
        flow_message.packets = 1
        if flow_message.bytes == 0:
            flow_message.bytes = len(value)


def convert_netflow_data_set(
    flow_message: FlowMessage,
    version: int,
    base_time: int,
    uptime: int,
    record: list[DataField],
    mapper_netflow: Optional[NetFlowMapper] = None,
    mapper_sflow: Optional[SFlowMapper] = None,
) -> None:
    """Fill a flow message from the fields of one data record.

    Raises ValueError when a field cannot be decoded.
    """
    base_ns = (base_time * _NS) & _UINT64
    # Overridden when the record carries timing information.
    flow_message.time_flow_start_ns = base_ns
    flow_message.time_flow_end_ns = base_ns

    if version == 9:
        flow_message.type = FlowType.NETFLOW_V9
    elif version == 10:
        flow_message.type = FlowType.IPFIX

    for data_field in record:
        if not isinstance(data_field.value, (bytes, bytearray, memoryview)):
            continue
        value = bytes(data_field.value)

        map_custom_netflow(flow_message, data_field, mapper_netflow)

        if data_field.pen_provided:
            continue

        type_id = data_field.type
        if type_id in _UNSIGNED_TARGETS:
            for name in _UNSIGNED_TARGETS[type_id]:
                _set_unsigned(flow_message, name, value)
        elif type_id in _ADDRESS_TARGETS:
            name, ipv6 = _ADDRESS_TARGETS[type_id]
            _replace_address(flow_message, name, value, ipv6)
        elif type_id in _NEXT_HOP_TARGETS:
            setattr(flow_message, _NEXT_HOP_TARGETS[type_id], value)
        elif type_id == NFV9_FIELD_IP_PROTOCOL_VERSION:
            if value:
                if value[0] == 4:
                    flow_message.etype = 0x800
                elif value[0] == 6:
                    flow_message.etype = 0x86DD
        elif type_id in (NFV9_FIELD_ICMP_TYPE, IPFIX_FIELD_icmpTypeCodeIPv6):
            type_code = decode_unumber(value, 16)
            flow_message.icmp_type = type_code >> 8
            flow_message.icmp_code = type_code & 0xFF
        elif type_id == IPFIX_FIELD_fragmentFlags:
            flow_message.ip_flags = decode_unumber(value, 32) >> 5
        elif type_id in _MPLS_LABEL_POSITIONS:
            _set_mpls_label(flow_message, _MPLS_LABEL_POSITIONS[type_id], value)
        elif type_id in (IPFIX_FIELD_mplsTopLabelIPv4Address, IPFIX_FIELD_mplsTopLabelIPv6Address):
            flow_message.mpls_ip.append(value)
        elif version == 9:
            # NetFlow v9 times are relative to the router's uptime.
            _convert_v9_time(flow_message, type_id, value, base_ns, uptime)
        elif version == 10:
            _convert_ipfix_extra(flow_message, type_id, value, base_ns, mapper_sflow)


def search_netflow_data_sets_records(
    version: int,
    base_time: int,
    uptime: int,
    data_records: list[DataRecord],
    mapper_netflow: Optional[NetFlowMapper] = None,
    mapper_sflow: Optional[SFlowMapper] = None,
) -> list[FlowMessage]:
    """One flow message for each data record."""
    messages = []
    for record in data_records:
        flow_message = FlowMessage()
        convert_netflow_data_set(
            flow_message, version, base_time, uptime, record.values, mapper_netflow, mapper_sflow
        )
        messages.append(flow_message)
    return messages


def search_netflow_data_sets(
    version: int,
    base_time: int,
    uptime: int,
    data_flow_sets: list[DataFlowSet],
    mapper_netflow: Optional[NetFlowMapper] = None,
    mapper_sflow: Optional[SFlowMapper] = None,
) -> list[FlowMessage]:
    """Flow messages for the records of every data flow set, in order."""
    messages: list[FlowMessage] = []
    for flow_set in data_flow_sets:
        messages.extend(
            search_netflow_data_sets_records(
                version, base_time, uptime, flow_set.records, mapper_netflow, mapper_sflow
            )
        )
    return messages


def search_netflow_option_data_sets(data_flow_sets: list[OptionsDataFlowSet]) -> tuple[int, bool]:
    """Find a sampling rate in options records; returns (rate, found)."""
    for flow_set in data_flow_sets:
        for record in flow_set.records:
            for type_id in _SAMPLING_FIELDS:
                found, rate = _populate_uint32(record.options_values, type_id)
                if found:
                    return rate, True
    return 0, False


def split_netflow_sets(
    packet: NFv9Packet,
) -> tuple[list[DataFlowSet], list[TemplateFlowSet], list[NFv9OptionsTemplateFlowSet], list[OptionsDataFlowSet]]:
    """Split the flow sets of a NetFlow v9 packet by kind."""
    data = [s for s in packet.flow_sets if isinstance(s, DataFlowSet)]
    templates = [s for s in packet.flow_sets if isinstance(s, TemplateFlowSet)]
    options_templates = [s for s in packet.flow_sets if isinstance(s, NFv9OptionsTemplateFlowSet)]
    options_data = [s for s in packet.flow_sets if isinstance(s, OptionsDataFlowSet)]
    return data, templates, options_templates, options_data


def split_ipfix_sets(
    packet: IPFIXPacket,
) -> tuple[list[DataFlowSet], list[TemplateFlowSet], list[IPFIXOptionsTemplateFlowSet], list[OptionsDataFlowSet]]:
    """Split the sets of an IPFIX packet by kind."""
    data = [s for s in packet.flow_sets if isinstance(s, DataFlowSet)]
    templates = [s for s in packet.flow_sets if isinstance(s, TemplateFlowSet)]
    options_templates = [s for s in packet.flow_sets if isinstance(s, IPFIXOptionsTemplateFlowSet)]
    options_data = [s for s in packet.flow_sets if isinstance(s, OptionsDataFlowSet)]
    return data, templates, options_templates, options_data


def _resolve_sampling_rate(
    sampling_rate_sys: Optional[SamplingRateSystem],
    version: int,
    obs_domain_id: int,
    rate: int,
    found: bool,
) -> int:
    if sampling_rate_sys is None:
        return rate
    if found:
        sampling_rate_sys.add_sampling_rate(version, obs_domain_id, rate)
        return rate
    try:
        return sampling_rate_sys.get_sampling_rate(version, obs_domain_id)
    except KeyError:
        return 0


def process_message_ipfix(
    packet: IPFIXPacket,
    sampling_rate_sys: Optional[SamplingRateSystem] = None,
    config: Any = None,
) -> list[FlowMessage]:
    """Convert an IPFIX packet into flow messages; config is a MappedConfig or None."""
    data_sets, _, _, options_data_sets = split_ipfix_sets(packet)
    mapper_ipfix = config.ipfix if config is not None else None
    mapper_sflow = config.sflow if config is not None else None

    messages = search_netflow_data_sets(
        10, packet.export_time, 0, data_sets, mapper_ipfix, mapper_sflow
    )
    rate, found = search_netflow_option_data_sets(options_data_sets)
    rate = _resolve_sampling_rate(sampling_rate_sys, 10, packet.observation_domain_id, rate, found)
    for flow_message in messages:
        flow_message.sequence_num = packet.sequence_number
        flow_message.sampling_rate = rate
        flow_message.observation_domain_id = packet.observation_domain_id
    return messages


def process_message_netflow_v9(
    packet: NFv9Packet,
    sampling_rate_sys: Optional[SamplingRateSystem] = None,
    config: Any = None,
) -> list[FlowMessage]:
    """Convert a NetFlow v9 packet into flow messages; config is a MappedConfig or None."""
    data_sets, _, _, options_data_sets = split_netflow_sets(packet)
    mapper = config.netflow_v9 if config is not None else None

    messages = search_netflow_data_sets(
        9, packet.unix_seconds, packet.system_uptime, data_sets, mapper, None
    )
    rate, found = search_netflow_option_data_sets(options_data_sets)
    rate = _resolve_sampling_rate(sampling_rate_sys, 9, packet.source_id, rate, found)
    for flow_message in messages:
        flow_message.sequence_num = packet.sequence_number
        flow_message.sampling_rate = rate
    return messages
import pytest

from flowcollect.config import DataMapLayer, SFlowMapper
from flowcollect.message import FlowMessage, FlowType
from flowcollect.sflow_producer import (
    ExpandedFlowSample,
    ExtendedGateway,
    ExtendedRouter,
    ExtendedSwitch,
    FlowRecord,
    FlowSample,
    SampledHeader,
    SampledIPv4,
    SFlowPacket,
    get_sflow_flow_samples,
    is_8021q,
    is_arp,
    is_ipv4,
    is_ipv6,
    is_mpls,
    parse_ethernet_header,
    parse_icmpv6,
    parse_ipv4,
    parse_ipv6,
    parse_ipv6_headers,
    parse_mpls,
    parse_sampled_header,
    process_message_sflow,
    search_sflow_sample,
)

IPV6_TCP_FRAME = bytes(
    [
        0xFF, 0xAB, 0xCD, 0xEF, 0xAB, 0xCD, 0xFF, 0xAB, 0xCD, 0xEF, 0xAB, 0xBC, 0x86, 0xDD, 0x60, 0x2E,
        0xC4, 0xEC, 0x01, 0xCC, 0x06, 0x40, 0xFD, 0x01, 0x00, 0x00, 0xFF, 0x01, 0x82, 0x10, 0xCD, 0xFF,
        0xFF, 0x1C, 0x00, 0x00, 0x01, 0x50, 0xFD, 0x01, 0x00, 0x00, 0xFF, 0x01, 0x00, 0x01, 0x02, 0xFF,
        0xFF, 0x93, 0x00, 0x00, 0x02, 0x46, 0xCF, 0xCA, 0x00, 0x50, 0x05, 0x15, 0x21, 0x6F, 0xA4, 0x9C,
        0xF4, 0x59, 0x80, 0x18, 0x08, 0x09, 0x8C, 0x86, 0x00, 0x00, 0x01, 0x01, 0x08, 0x0A, 0x2A, 0x85,
        0xEE, 0x9E, 0x64, 0x5C, 0x27, 0x28,
    ]
)

VLAN_IPV4_TCP_FRAME = bytes(
    [
        0x00, 0x00, 0x5E, 0x00, 0x53, 0x01, 0x00, 0x00, 0x5E, 0x00, 0x53, 0x02, 0x81, 0x00, 0x03, 0xB8,
        0x08, 0x00, 0x45, 0x00, 0x05, 0xDC, 0x59, 0xA5, 0x40, 0x00, 0x40, 0x06, 0x0A, 0xB8, 0xB9, 0x3B,
        0xDF, 0xB6, 0x32, 0x44, 0x05, 0x89, 0x23, 0x78, 0xC9, 0x06, 0x24, 0x6C, 0x0B, 0xF4, 0xD9, 0xCE,
        0x9C, 0x66, 0x50, 0x10, 0x00, 0x1E, 0x29, 0x8A, 0x00, 0x00, 0xB4, 0x7E, 0xB7, 0xFD, 0x16, 0x3E,
        0x19, 0x97, 0xA8, 0xB4, 0x2A, 0xF7, 0x49, 0x96, 0xF4, 0x0E, 0xEF, 0xA7, 0x55, 0x93, 0x27, 0x6F,
        0x1E, 0x20, 0xE1, 0x04, 0x2F, 0x36, 0x18, 0xFE, 0x7B, 0x88, 0x1F, 0xC9, 0x57, 0xBC, 0x71, 0x43,
        0x3D, 0x1C, 0x6C, 0xB0, 0x3D, 0xF7, 0x51, 0x48, 0x68, 0x94, 0x47, 0x00, 0xD3, 0x1A, 0x9D, 0xDB,
        0x2F, 0x1E, 0x39, 0xCF, 0xFD, 0x96, 0x79, 0xDF, 0xB0, 0x2D, 0x02, 0x6E, 0x72, 0xF5, 0x29, 0x73,
    ]
)

IPV4_FRAGMENT = bytes.fromhex("450002245dd900b94001ffe1" "c0a80101" "c0a80102" "0809")


def _sflow_packet():
    return SFlowPacket(
        version=5,
        ip_version=1,
        agent_ip=bytes([1, 2, 3, 4]),
        sub_agent_id=0,
        sequence_number=3178205882,
        uptime=3011091704,
        samples_count=1,
        samples=[
            FlowSample(
                format=1,
                sample_sequence_number=2757962272,
                source_id_type=0,
                source_id_value=1000100,
                sampling_rate=16383,
                sample_pool=639948256,
                drops=0,
                input=1000100,
                output=1000005,
                records=[
                    FlowRecord(
                        data_format=1001,
                        length=16,
                        data=ExtendedSwitch(src_vlan=952, src_priority=0, dst_vlan=952, dst_priority=0),
                    ),
                    FlowRecord(
                        data_format=1,
                        length=144,
                        data=SampledHeader(
                            protocol=1,
                            frame_length=1522,
                            stripped=4,
                            original_length=128,
                            header_data=VLAN_IPV4_TCP_FRAME,
                        ),
                    ),
                    FlowRecord(
                        data_format=1003,
                        length=56,
                        data=ExtendedGateway(
                            next_hop_ip_version=1,
                            next_hop=bytes([5, 5, 5, 5]),
                            as_number=123,
                            src_as=0,
                            src_peer_as=0,
                            as_destinations=1,
                            as_path_type=2,
                            as_path_length=1,
                            as_path=[456],
                            communities_length=3,
                            communities=[3936619448, 3936619708, 3936623548],
                            local_pref=170,
                        ),
                    ),
                    FlowRecord(
                        data_format=1002,
                        length=16,
                        data=ExtendedRouter(
                            next_hop_ip_version=1,
                            next_hop=bytes([9, 9, 9, 9]),
                            src_mask_len=26,
                            dst_mask_len=22,
                        ),
                    ),
                ],
            )
        ],
    )


def test_process_message_sflow():
    sh = SampledHeader(frame_length=10, protocol=1, header_data=IPV6_TCP_FRAME)
    pkt = SFlowPacket(
        version=5,
        samples=[
            FlowSample(sampling_rate=1, records=[FlowRecord(data=sh)]),
            ExpandedFlowSample(sampling_rate=1, records=[FlowRecord(data=sh)]),
        ],
    )
    messages = process_message_sflow(pkt, None)
    assert len(messages) == 2
    for msg in messages:
        assert msg.type == FlowType.SFLOW_5
        assert msg.etype == 0x86DD
        assert msg.proto == 6
        assert msg.src_port == 53194
        assert msg.dst_port == 80
        assert msg.ip_ttl == 64
        assert msg.bytes == 10
        assert msg.packets == 1
        assert msg.sampling_rate == 1


def test_expanded_sflow_decode():
    messages = process_message_sflow(_sflow_packet(), None)
    msg = messages[0]
    assert msg.bgp_next_hop == bytes([0x05, 0x05, 0x05, 0x05])
    assert msg.bgp_communities == [3936619448, 3936619708, 3936623548]
    assert msg.as_path == [456]
    assert msg.next_hop == bytes([0x09, 0x09, 0x09, 0x09])


def test_sflow_decode_packet_fields():
    msg = process_message_sflow(_sflow_packet(), None)[0]
    assert msg.sampler_address == bytes([1, 2, 3, 4])
    assert msg.sequence_num == 3178205882
    assert msg.sampling_rate == 16383
    assert msg.in_if == 1000100
    assert msg.out_if == 1000005
    assert msg.src_vlan == 952
    assert msg.dst_vlan == 952
    assert msg.bytes == 1522
    assert msg.dst_as == 456
    assert msg.next_hop_as == 456
    assert msg.src_as == 123
    assert msg.src_net == 26
    assert msg.dst_net == 22


def test_sflow_decode_header_contents():
    msg = process_message_sflow(_sflow_packet(), None)[0]
    assert msg.dst_mac == 0x00005E005301
    assert msg.src_mac == 0x00005E005302
    assert msg.vlan_id == 952
    assert msg.etype == 0x800
    assert msg.proto == 6
    assert msg.src_port == 9080
    assert msg.dst_port == 51462


def test_process_ethernet():
    data = bytes.fromhex(
        "005300000001"
        "005300000002"
        "86dd"
        "6000000004d83a40"
        "fd010000000000000000000000000001"
        "fd010000000000000000000000000002"
        "8000f96508a4"
    )
    msg = FlowMessage()
    parse_ethernet_header(msg, data, None)
    assert msg.etype == 0x86DD
    assert msg.proto == 58
    assert msg.icmp_type == 128


def test_process_ipv6_headers():
    data = bytes.fromhex(
        "6000000004d82c40"
        "fd010000000000000000000000000001"
        "fd010000000000000000000000000002"
        "3a000001a7882ea9"
        "8000f96508a4"
    )
    msg = FlowMessage()
    next_header, offset = parse_ipv6(0, msg, data)
    assert next_header == 44
    next_header, offset = parse_ipv6_headers(next_header, offset, msg, data)
    assert next_header == 58
    parse_icmpv6(offset, msg, data)
    assert msg.ip_flags == 1
    assert msg.ip_ttl == 64
    assert msg.fragment_id == 2810719913
    assert msg.fragment_offset == 0
    assert msg.icmp_type == 128


def test_process_ipv4_fragment():
    msg = FlowMessage()
    next_header, offset = parse_ipv4(0, msg, IPV4_FRAGMENT)
    assert next_header == 1
    assert offset == 20
    assert msg.ip_flags == 0
    assert msg.ip_ttl == 64
    assert msg.fragment_id == 24025
    assert msg.fragment_offset == 185
    assert msg.src_addr == bytes.fromhex("c0a80101")
    assert msg.dst_addr == bytes.fromhex("c0a80102")


def test_parse_mpls_bottom_of_stack():
    data = bytes.fromhex("00064140") + bytes([0x45]) + bytes(19)
    msg = FlowMessage()
    ether_type, offset = parse_mpls(0, msg, data)
    assert ether_type == b"\x08\x00"
    assert offset == 4
    assert msg.mpls_label == [100]
    assert msg.mpls_ttl == [64]


def test_ethernet_mpls_udp_frame():
    frame = (
        bytes.fromhex("005300000001" "005300000002" "8847")
        + bytes.fromhex("00064140")
        + bytes.fromhex("4500001c000040004011" "0000" "c0a80101" "c0a80102")
        + bytes.fromhex("1f90005000080000")
    )
    msg = FlowMessage()
    parse_ethernet_header(msg, frame)
    assert msg.etype == 0x800
    assert msg.proto == 17
    assert msg.mpls_label == [100]
    assert msg.src_port == 0x1F90
    assert msg.dst_port == 0x50


def test_custom_layer_mapping_and_fragment():
    frame = bytes.fromhex("005300000001" "005300000002" "0800") + IPV4_FRAGMENT
    mapper = SFlowMapper({"ipv4": [DataMapLayer(destination="src_as", offset=64, length=8)]})
    msg = FlowMessage()
    parse_ethernet_header(msg, frame, mapper)
    assert msg.src_as == msg.ip_ttl == 64
    assert msg.proto == 1
    assert msg.fragment_offset == 185
    assert msg.icmp_type == 0


def test_short_frame_raises():
    with pytest.raises(ValueError):
        parse_ethernet_header(FlowMessage(), bytes(10))


def test_sampled_header_non_ethernet_is_ignored():
    msg = FlowMessage()
    parse_sampled_header(msg, SampledHeader(protocol=11, header_data=IPV6_TCP_FRAME))
    assert msg == FlowMessage()


def test_sampled_ipv4_record():
    msg = FlowMessage()
    record = SampledIPv4(
        length=60, protocol=17, src_ip=bytes([10, 0, 0, 1]), dst_ip=bytes([10, 0, 0, 2]),
        src_port=1234, dst_port=53, tos=8,
    )
    search_sflow_sample(msg, FlowSample(sampling_rate=7, records=[FlowRecord(data=record)]))
    assert msg.src_addr == bytes([10, 0, 0, 1])
    assert msg.dst_addr == bytes([10, 0, 0, 2])
    assert msg.etype == 0x800
    assert (msg.bytes, msg.proto, msg.src_port, msg.dst_port, msg.ip_tos) == (60, 17, 1234, 53, 8)
    assert msg.sampling_rate == 7


def test_get_flow_samples_filters_other_samples():
    flow = FlowSample()
    expanded = ExpandedFlowSample()
    pkt = SFlowPacket(samples=[flow, "counter", expanded])
    assert get_sflow_flow_samples(pkt) == [flow, expanded]


def test_ether_type_predicates():
    assert is_mpls(b"\x88\x47")
    assert is_8021q(b"\x81\x00")
    assert is_ipv4(b"\x08\x00")
    assert is_ipv6(b"\x86\xdd")
    assert is_arp(b"\x08\x06")
    assert not is_ipv4(b"\x86\xdd")
    assert not is_ipv6(b"")
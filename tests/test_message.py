import json

import pytest

from flowcollect.config import FormatterConfig, ProducerConfig, ProtobufFormatterConfig, map_format
from flowcollect.mapping import MapConfigBase, ProtoType, map_custom
from flowcollect.message import FIELD_NAMES, FlowMessage, FlowType


def make_formatter(**kwargs):
    return map_format(ProducerConfig(formatter=FormatterConfig(**kwargs)))


def test_text_rendering_uses_default_renderers():
    msg = FlowMessage(
        proto=6,
        src_addr=bytes([10, 0, 0, 1]),
        formatter=make_formatter(fields=["proto", "src_addr"]),
    )
    assert msg.to_text() == "proto=TCP src_addr=10.0.0.1"


def test_json_is_parseable():
    msg = FlowMessage(
        proto=6,
        src_addr=bytes([10, 0, 0, 1]),
        formatter=make_formatter(fields=["proto", "src_addr"]),
    )
    assert json.loads(msg.to_json()) == {"proto": "TCP", "src_addr": "10.0.0.1"}


def test_type_rendered_by_name():
    msg = FlowMessage(type=FlowType.SFLOW_5, formatter=make_formatter(fields=["type"]))
    assert json.loads(msg.to_json()) == {"type": "SFLOW_5"}


def test_rename_changes_output_name():
    msg = FlowMessage(proto=17, formatter=make_formatter(fields=["proto"], rename={"proto": "protocol"}))
    assert json.loads(msg.to_json()) == {"protocol": "UDP"}


def test_slice_field_rendered_as_list():
    communities = [3936619448, 3936619708, 3936623548]
    msg = FlowMessage(bgp_communities=list(communities), formatter=make_formatter(fields=["bgp_communities"]))
    assert json.loads(msg.to_json()) == {"bgp_communities": communities}


def test_empty_slice_rendered_as_empty_list():
    msg = FlowMessage(formatter=make_formatter(fields=["as_path"]))
    assert json.loads(msg.to_json()) == {"as_path": []}


def test_virtual_icmp_field():
    msg = FlowMessage(proto=1, icmp_type=8, formatter=make_formatter(fields=["icmp_name"]))
    assert json.loads(msg.to_json()) == {"icmp_name": "Echo"}


def test_key_is_none_without_key_fields():
    msg = FlowMessage(proto=6, formatter=make_formatter(fields=["proto"]))
    assert msg.key() is None
    assert FlowMessage(proto=6).key() is None


def test_key_depends_only_on_key_fields():
    formatter = make_formatter(key=["src_addr"])
    first = FlowMessage(src_addr=bytes([10, 0, 0, 1]), proto=6, formatter=formatter)
    second = FlowMessage(src_addr=bytes([10, 0, 0, 1]), proto=17, formatter=formatter)
    third = FlowMessage(src_addr=bytes([10, 0, 0, 2]), proto=6, formatter=formatter)
    assert len(first.key()) == 4
    assert first.key() == second.key()
    assert first.key() != third.key()


def test_unknown_varint_field():
    formatter = make_formatter(fields=["custom"], protobuf=[ProtobufFormatterConfig("custom", 1000, "varint")])
    msg = FlowMessage(formatter=formatter)
    map_custom(msg, b"\x00\x2a", MapConfigBase(destination="custom", proto_index=1000, proto_type=ProtoType.VARINT))
    assert json.loads(msg.to_json()) == {"custom": 42}


def test_unknown_array_field():
    formatter = make_formatter(
        fields=["custom"], protobuf=[ProtobufFormatterConfig("custom", 1000, "varint", True)]
    )
    msg = FlowMessage(formatter=formatter)
    cfg = MapConfigBase(destination="custom", proto_index=1000, proto_type=ProtoType.VARINT, proto_array=True)
    map_custom(msg, b"\x01", cfg)
    map_custom(msg, b"\x02", cfg)
    assert json.loads(msg.to_json()) == {"custom": [1, 2]}


def test_unknown_bytes_field_rendered_as_hex():
    formatter = make_formatter(fields=["custom"], protobuf=[ProtobufFormatterConfig("custom", 1001, "bytes")])
    msg = FlowMessage(formatter=formatter)
    map_custom(msg, b"\xde\xad", MapConfigBase(destination="custom", proto_index=1001, proto_type=ProtoType.STRING))
    assert json.loads(msg.to_json()) == {"custom": "dead"}


def test_missing_unknown_field_is_skipped():
    formatter = make_formatter(fields=["custom"], protobuf=[ProtobufFormatterConfig("custom", 1000, "varint")])
    assert FlowMessage(formatter=formatter).to_json() == "{}"


def test_reset_clears_fields_and_keeps_formatter():
    formatter = make_formatter(fields=["proto"])
    msg = FlowMessage(proto=6, as_path=[1, 2], unknown_fields=b"\x08\x01", formatter=formatter)
    msg.reset()
    assert msg == FlowMessage()
    assert msg.as_path == []
    assert msg.formatter is formatter


def test_marshal_binary_wire_bytes():
    assert FlowMessage().marshal_binary() == b"\x00"
    assert FlowMessage(proto=6).marshal_binary() == b"\x03\xa0\x01\x06"


def test_marshal_binary_appends_unknown_fields():
    unknown = b"\xc0\x3e\x2a"
    data = FlowMessage(proto=6, unknown_fields=unknown).marshal_binary()
    assert data.endswith(unknown)
    assert data[0] == len(data) - 1


def test_default_formatter_renders_all_fields():
    document = json.loads(FlowMessage().to_json())
    assert list(document) == list(FIELD_NAMES)


def test_malformed_unknown_fields_raise():
    formatter = make_formatter(fields=["custom"], protobuf=[ProtobufFormatterConfig("custom", 1000, "varint")])
    msg = FlowMessage(unknown_fields=b"\x80", formatter=formatter)
    with pytest.raises(ValueError):
        msg.to_json()
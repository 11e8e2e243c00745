# flowcollect

A library for building network flow collectors. It listens for UDP
datagrams, turns decoded NetFlow v5, NetFlow v9, IPFIX and sFlow v5 packets
into flat flow messages, and hands those messages to a formatter and a
transport chosen by name.

## Modules

| Module | Purpose |
| --- | --- |
| `flowcollect.udp` | `UDPReceiver`: a UDP listener with several sockets that passes each datagram, as a `Message`, to a callback running on worker threads |
| `flowcollect.producer` | the `Producer` base class, `ProduceArgs`, and `RawProducer`, which wraps decoded packets unchanged in a `RawMessage` |
| `flowcollect.proto_producer` | `ProtoProducer` and `create_proto_producer`, which turn decoded packets into `FlowMessage` objects |
| `flowcollect.netflow_producer` | NetFlow v9 and IPFIX packet classes (`NFv9Packet`, `IPFIXPacket`, `DataFlowSet`, `DataRecord`, `DataField`, ...) and their conversion |
| `flowcollect.legacy_producer` | NetFlow v5 packet classes (`NetFlowV5Packet`, `NetFlowV5Record`) and their conversion |
| `flowcollect.sflow_producer` | sFlow packet and record classes (`SFlowPacket`, `FlowSample`, `SampledHeader`, ...), their conversion, and the Ethernet/IP/transport header parsers |
| `flowcollect.message` | `FlowMessage`, the flat flow record, with JSON, text, binary and hash-key output |
| `flowcollect.config` | `ProducerConfig` and related classes: field selection, renames, renderers, key fields, custom mappings and extra numbered fields |
| `flowcollect.render` | renderers for addresses, MAC addresses, EtherTypes, protocols, networks and timestamps |
| `flowcollect.mapping` | `get_bytes` and `map_custom`, which copy raw bits into flow message fields |
| `flowcollect.numbers` | big- and little-endian integer decoding of up to eight bytes |
| `flowcollect.sampling` | sampling-rate stores: `BasicSamplingRateSystem` and `SingleSamplingRateSystem` |
| `flowcollect.formats` | format drivers `bin`, `json` and `text`, looked up by name |
| `flowcollect.transports` | transport drivers, with the `file` driver registered by default |

## Producing flow messages

Build a decoded packet, then hand it to a producer:

```python
import ipaddress

from flowcollect.netflow_producer import (
    NFV9_FIELD_IPV4_SRC_ADDR,
    DataField,
    DataFlowSet,
    DataRecord,
    IPFIXPacket,
)
from flowcollect.producer import ProduceArgs
from flowcollect.proto_producer import create_proto_producer

producer = create_proto_producer()

packet = IPFIXPacket(
    export_time=1700000000,
    observation_domain_id=1,
    flow_sets=[
        DataFlowSet(records=[
            DataRecord(values=[DataField(type=NFV9_FIELD_IPV4_SRC_ADDR, value=bytes([192, 0, 2, 1]))]),
        ]),
    ],
)
exporter = ipaddress.ip_address("192.0.2.10")
args = ProduceArgs(src=(exporter, 4739), sampler_address=exporter)

messages = producer.produce(packet, args)
producer.commit(messages)
```

`ProtoProducer.produce` accepts a `NetFlowV5Packet`, `NFv9Packet`,
`IPFIXPacket` or `SFlowPacket`. Any other object raises `TypeError`. Each
message records when it was received, the sampler address, the sequence
number, the sampling rate and the fields found in the packet. For sFlow
samples with a `SampledHeader`, the Ethernet frame is parsed through 802.1Q,
MPLS, IPv4 or IPv6 (including fragment headers), and then TCP, UDP, ICMP or
ICMPv6.

NetFlow v9 and IPFIX sampling rates found in options data (fields 305, 50
and 34) are stored per exporter address, version and observation domain.
They are applied to later data records from the same exporter. The store is
made by the factory given to `create_proto_producer`, which defaults to
`BasicSamplingRateSystem`. Pass `lambda: SingleSamplingRateSystem(100)` to
use one fixed rate.

`commit(messages)` marks messages as processed. `in_flight` counts those
not yet committed. `close()` forgets the stored sampling rates.

`RawProducer` returns each packet wrapped in a `RawMessage` (packet, source
and receive time), with `to_json()` and `marshal_text()`. It is useful for
inspecting packets as they arrive.

### Rendering messages

```python
message = messages[0]
message.to_json()         # '{"type":"IPFIX","time_received_ns":...,"src_addr":"192.0.2.1",...}'
message.to_text()         # 'type=IPFIX time_received_ns=... src_addr=192.0.2.1 ...'
message.marshal_binary()  # length-prefixed protobuf encoding
message.key()             # 4-byte FNV-1 hash of the configured key fields, or None
```

### Configuration

```python
from flowcollect.config import FormatterConfig, ProducerConfig
from flowcollect.render import RendererID

config = ProducerConfig(
    formatter=FormatterConfig(
        fields=["time_flow_start_ns", "src_addr", "dst_addr", "bytes"],
        key=["src_addr"],
        rename={"src_addr": "src"},
        render={"time_flow_start_ns": RendererID.DATETIME_NANO},
    )
)
producer = create_proto_producer(config)
```

Field names are the attribute names of `FlowMessage`. Renderers are chosen
by `RendererID`: `none`, `ip`, `mac`, `etype`, `proto`, `datetime` and
`datetimenano`. Addresses, MAC addresses, EtherType, protocol and networks
are rendered by default. The virtual field `icmp_name` renders the ICMP type
name.

`ProducerConfig.ipfix` and `ProducerConfig.netflow_v9` map NetFlow/IPFIX
elements to destinations using `NetFlowMapField`. `ProducerConfig.sflow`
maps bit ranges of a packet layer to destinations using `SFlowMapField`. The
layers are `"0"`, `"3"`, `"ipv4"`, `"ipv6"`, `"arp"`, `"4"`, `"udp"`,
`"tcp"`, `"icmp"`, `"icmp6"` and `"7"`. A destination that is not a
`FlowMessage` field can be declared in `FormatterConfig.protobuf`, as a
`ProtobufFormatterConfig` with an index and a type of `varint`, `string` or
`bytes`. It is then stored as an extra numbered field.

An unknown field, key field, renderer or protobuf type raises `ValueError`
when the producer is created.

## Formats and transports

```python
from flowcollect.formats import find_format, get_formats
from flowcollect.transports import FileDriver, find_transport, register_transport_driver

sorted(get_formats())     # ['bin', 'json', 'text']

fmt = find_format("json")
key, data = fmt.format(message)

register_transport_driver("flows", FileDriver("flows.log"))
with find_transport("flows") as transport:
    transport.send(key, data)
```

An unknown name raises `FormatError` or `TransportError`. A failure inside a
driver raises `DriverFormatError` or `DriverTransportError`, which names the
driver and keeps the original error as its cause. A message that `bin` or
`text` cannot serialise raises `NoSerializerError`.

The `file` driver registered by default writes to standard output. A
`FileDriver` with a destination appends each message followed by its
separator (a newline by default). When set up from the main thread, it
reopens the file on SIGHUP, and `reopen()` does the same on demand.

## Receiving UDP

```python
from flowcollect.udp import UDPReceiver, UDPReceiverConfig

def decode(message):
    ...  # message.src, message.dst, message.payload, message.received

receiver = UDPReceiver(UDPReceiverConfig(workers=2, sockets=2))
receiver.start("0.0.0.0", 2055, decode)
...
receiver.stop()
```

A receiver can be started again after it has been stopped. Starting a
running receiver, or stopping a stopped one, raises `RuntimeError`. Errors
from the callback and from opening sockets are wrapped in `ReceiverError` and
placed on the queue returned by `errors()`. Once that queue is full, further
errors are dropped. Without `blocking=True`, datagrams are dropped while the
dispatch queue is full.

## What the package does not do

- It does not decode datagram payloads into packet objects. The packet
  classes must be built by the caller, so the receiver's callback has to turn
  bytes into `NetFlowV5Packet`, `NFv9Packet`, `IPFIXPacket` or `SFlowPacket`
  itself. There is no NetFlow template store.
- It has no command-line program and no ready-made pipeline joining receiver,
  producer, format and transport.
- It exports no metrics and has no transport other than the file driver.

## Tests

The test suite uses pytest, declared in the `test` extra:

```
pip install .[test]
pytest
```
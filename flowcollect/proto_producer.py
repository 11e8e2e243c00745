"""Producer turning decoded flow packets into flow messages."""

from __future__ import annotations

import ipaddress
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from .config import MappedConfig, ProducerConfig, map_config
from .legacy_producer import NetFlowV5Packet, process_message_netflow_legacy
from .message import FlowMessage
from .netflow_producer import IPFIXPacket, NFv9Packet, process_message_ipfix, process_message_netflow_v9
from .producer import Producer
from .sampling import BasicSamplingRateSystem, SamplingRateSystem
from .sflow_producer import SFlowPacket, process_message_sflow

_UINT64 = (1 << 64) - 1
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _unix_nano(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value & _UINT64
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _EPOCH
    nanos = (delta.days * 86400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1000
    return nanos & _UINT64


def _parse_address(value: Any) -> Optional[ipaddress._BaseAddress]:
    if value is None:
        return None
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if len(raw) not in (4, 16):
            return None
        return ipaddress.ip_address(raw)
    try:
        return ipaddress.ip_address(str(value).split("%", 1)[0])
    except ValueError:
        return None


def _sampler_bytes(value: Any) -> bytes:
    address = _parse_address(value)
    if address is None:
        return b""
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return address.packed


def _source_key(src: Any) -> str:
    if isinstance(src, (tuple, list)):
        host = src[0] if src else ""
    elif isinstance(src, str):
        host = src
        if host.startswith("["):
            host = host[1:].split("]", 1)[0]
        elif host.count(":") == 1:
            host = host.rsplit(":", 1)[0]
    else:
        host = src
    address = _parse_address(host)
    return str(address) if address is not None else str(host)


class ProtoProducer(Producer):
    """Converts NetFlow v5/v9, IPFIX and sFlow packets into flow messages."""

    def __init__(
        self,
        cfg_mapped: MappedConfig,
        sampling_rate_system: Callable[[], SamplingRateSystem] = BasicSamplingRateSystem,
    ) -> None:
        self._cfg_mapped = cfg_mapped
        self._sampling_factory = sampling_rate_system
        self._sampling: dict[str, SamplingRateSystem] = {}
        self._lock = threading.Lock()

    def _sampling_rate_system(self, args: Any) -> SamplingRateSystem:
        key = _source_key(getattr(args, "src", None))
        with self._lock:
            system = self._sampling.get(key)
            if system is None:
                system = self._sampling_factory()
                self._sampling[key] = system
        return system

    def produce(self, msg: Any, args: Any) -> list[FlowMessage]:
        """Convert a decoded packet; raises TypeError for an unknown packet type."""
        received = _unix_nano(getattr(args, "time_received", None))
        sampler = _sampler_bytes(getattr(args, "sampler_address", None))

        if isinstance(msg, NetFlowV5Packet):
            messages = process_message_netflow_legacy(msg)
        elif isinstance(msg, NFv9Packet):
            messages = process_message_netflow_v9(
                msg, self._sampling_rate_system(args), self._cfg_mapped
            )
        elif isinstance(msg, IPFIXPacket):
            messages = process_message_ipfix(
                msg, self._sampling_rate_system(args), self._cfg_mapped
            )
        elif isinstance(msg, SFlowPacket):
            messages = process_message_sflow(msg, self._cfg_mapped)
            for flow_message in messages:
                flow_message.time_received_ns = received
                flow_message.time_flow_start_ns = received
                flow_message.time_flow_end_ns = received
        else:
            raise TypeError("flow not recognized")

        if not isinstance(msg, SFlowPacket):
            for flow_message in messages:
                flow_message.time_received_ns = received
                flow_message.sampler_address = sampler

        for flow_message in messages:
            flow_message.formatter = self._cfg_mapped.formatter
        return self._track(messages)

    def commit(self, messages: Iterable[FlowMessage]) -> None:
        """Mark the given flow messages as processed."""
        in_flight = self._in_flight()
        for message in messages:
            in_flight.pop(id(message), None)

    def close(self) -> None:
        """Drop per-router sampling state and every message still in flight."""
        with self._lock:
            self._sampling.clear()
        self._in_flight().clear()


def create_proto_producer(
    cfg: Optional[ProducerConfig] = None,
    sampling_rate_system: Callable[[], SamplingRateSystem] = BasicSamplingRateSystem,
) -> ProtoProducer:
    """Build a producer; raises ValueError on an invalid configuration."""
    return ProtoProducer(map_config(cfg), sampling_rate_system)
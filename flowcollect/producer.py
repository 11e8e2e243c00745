"""Producers turn decoded packets into messages, and the raw producer."""

from __future__ import annotations

import base64
import dataclasses
import enum
import ipaddress
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Tuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
AddrPort = Tuple[IPAddress, int]

_PACKET_TYPES = {
    "NetFlowV5Packet": "netflowv5",
    "NFv9Packet": "netflowv9",
    "IPFIXPacket": "ipfix",
    "SFlowPacket": "sflow",
}


def _format_addr_port(addr_port: Optional[AddrPort]) -> str:
    if addr_port is None:
        return "invalid AddrPort"
    addr, port = addr_port
    if addr.version == 6:
        return f"[{addr}]:{port}"
    return f"{addr}:{port}"


def _format_time(moment: datetime) -> str:
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    if offset is None:
        return text
    if offset == timedelta(0):
        return text + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    hours, minutes = divmod(abs(total) // 60, 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def _jsonable(obj: Any) -> Any:
    to_json = getattr(obj, "to_json", None)
    if callable(to_json):
        return json.loads(to_json())
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(obj)).decode("ascii")
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return str(obj)
    if isinstance(obj, datetime):
        return _format_time(obj)
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")


@dataclass(frozen=True)
class ProduceArgs:
    """Context of a received packet handed to a producer."""

    src: Optional[AddrPort] = None
    dst: Optional[AddrPort] = None
    sampler_address: Optional[IPAddress] = None
    time_received: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Producer(ABC):
    """Converts decoded packets into lists of messages.

    Messages handed out by produce are counted as in flight until committed.
    """

    def _in_flight(self) -> dict[int, Any]:
        return vars(self).setdefault("_in_flight_messages", {})

    def _track(self, messages: list[Any]) -> list[Any]:
        in_flight = self._in_flight()
        for message in messages:
            in_flight[id(message)] = message
        return messages

    @property
    def in_flight(self) -> int:
        """Number of produced messages not yet committed."""
        return len(self._in_flight())

    @abstractmethod
    def produce(self, msg: Any, args: ProduceArgs) -> list[Any]:
        """Convert a decoded packet into a list of messages."""

    def commit(self, messages: Iterable[Any]) -> None:
        """Tell the producer that the returned messages were processed."""
        in_flight = self._in_flight()
        for message in messages:
            in_flight.pop(id(message), None)

    def close(self) -> None:
        """Release what the producer holds."""
        self._in_flight().clear()


@dataclass(frozen=True)
class RawMessage:
    """A decoded packet kept as it is, with where and when it was received."""

    message: Any
    src: Optional[AddrPort]
    time_received: datetime

    def to_json(self) -> str:
        document = {
            "type": _PACKET_TYPES.get(type(self.message).__name__, "unknown"),
            "message": self.message,
            "src": _format_addr_port(self.src),
            "time_received": _format_time(self.time_received),
        }
        return json.dumps(document, default=_jsonable, separators=(",", ":"))

    def marshal_text(self) -> str:
        contents = ""
        marshal = getattr(self.message, "marshal_text", None)
        if callable(marshal):
            value = marshal()
            contents = value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else str(value)
        return f"{self.time_received} {_format_addr_port(self.src)}: {contents}"


class RawProducer(Producer):
    """Producer that keeps packets in their decoded form, useful for debugging."""

    def produce(self, msg: Any, args: ProduceArgs) -> list[Any]:
        return self._track([RawMessage(msg, args.src, args.time_received)])

    def commit(self, messages: Iterable[Any]) -> None:
        """Mark the given raw messages as processed."""
        in_flight = self._in_flight()
        for message in messages:
            in_flight.pop(id(message), None)

    def close(self) -> None:
        """Forget every message still in flight."""
        self._in_flight().clear()
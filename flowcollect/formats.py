"""Message formatters: a registry of drivers that turn flow messages into bytes."""

from __future__ import annotations

import base64
import dataclasses
import enum
import ipaddress
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any


class FormatError(Exception):
    """Base class of all formatting errors."""

    def __init__(self, message: str = "format error") -> None:
        super().__init__(message)


class NoSerializerError(FormatError):
    """Raised when a message offers no way of being serialised."""

    def __init__(self, message: str = "message is not serializable") -> None:
        super().__init__(message)


class DriverFormatError(FormatError):
    """An error raised by a named format driver."""

    def __init__(self, driver: str, err: BaseException) -> None:
        super().__init__(f"{err} for {driver} format")
        self.driver = driver
        self.err = err
        self.__cause__ = err


class FormatDriver(ABC):
    """A driver that serialises messages into a key and a payload."""

    prepared: bool = False
    initialized: bool = False

    def prepare(self) -> None:
        """Prepare the driver; called once when it is registered."""
        self.prepared = True

    def init(self) -> None:
        """Initialise the driver; called when it is looked up."""
        self.initialized = True

    @abstractmethod
    def format(self, data: Any) -> tuple[bytes | None, bytes]:
        """Return the key (or None) and the serialised form of data."""


class Format:
    """A driver looked up by name; errors it raises carry the driver name."""

    def __init__(self, name: str, driver: FormatDriver) -> None:
        self.name = name
        self.driver = driver

    def format(self, data: Any) -> tuple[bytes | None, bytes]:
        try:
            return self.driver.format(data)
        except Exception as err:
            raise DriverFormatError(self.name, err) from err

    def __repr__(self) -> str:
        return f"Format({self.name!r})"


def _key_of(data: Any) -> bytes | None:
    key = getattr(data, "key", None)
    if not callable(key):
        return None
    value = key()
    return None if value is None else bytes(value)


def _as_bytes(value: str | bytes | bytearray | memoryview) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def _json_default(obj: Any) -> Any:
    to_json = getattr(obj, "to_json", None)
    if callable(to_json):
        return json.loads(to_json())
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(obj)).decode("ascii")
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {field.name: getattr(obj, field.name) for field in dataclasses.fields(obj)}
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(
        obj,
        (
            ipaddress.IPv4Address,
            ipaddress.IPv6Address,
            ipaddress.IPv4Network,
            ipaddress.IPv6Network,
        ),
    ):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")


class BinaryDriver(FormatDriver):
    """Serialises messages that provide a binary form."""

    def format(self, data: Any) -> tuple[bytes | None, bytes]:
        key = _key_of(data)
        if isinstance(data, (bytes, bytearray, memoryview)):
            return key, bytes(data)
        marshal = getattr(data, "marshal_binary", None)
        if callable(marshal):
            return key, _as_bytes(marshal())
        if hasattr(type(data), "__bytes__"):
            return key, bytes(data)
        raise NoSerializerError()


class JsonDriver(FormatDriver):
    """Serialises messages as compact JSON."""

    def format(self, data: Any) -> tuple[bytes | None, bytes]:
        key = _key_of(data)
        to_json = getattr(data, "to_json", None)
        if callable(to_json):
            return key, _as_bytes(to_json())
        text = json.dumps(data, default=_json_default, separators=(",", ":"))
        return key, text.encode("utf-8")


class TextDriver(FormatDriver):
    """Serialises messages that provide a text form."""

    def format(self, data: Any) -> tuple[bytes | None, bytes]:
        key = _key_of(data)
        for method_name in ("marshal_text", "to_text"):
            method = getattr(data, method_name, None)
            if callable(method):
                return key, _as_bytes(method())
        if type(data).__str__ is not object.__str__:
            return key, str(data).encode("utf-8")
        raise NoSerializerError()


_drivers: dict[str, FormatDriver] = {}
_lock = threading.RLock()


def register_format_driver(name: str, driver: FormatDriver) -> None:
    """Register a driver under a name and prepare it."""
    with _lock:
        _drivers[name] = driver
    driver.prepare()


def find_format(name: str) -> Format:
    """Look up and initialise the driver registered under name."""
    with _lock:
        driver = _drivers.get(name)
    if driver is None:
        raise FormatError(f"format error {name} not found")
    try:
        driver.init()
    except Exception as err:
        raise DriverFormatError(name, err) from err
    return Format(name, driver)


def get_formats() -> list[str]:
    """Names of all registered format drivers."""
    with _lock:
        return list(_drivers)


register_format_driver("bin", BinaryDriver())
register_format_driver("json", JsonDriver())
register_format_driver("text", TextDriver())
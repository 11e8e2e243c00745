"""Transports: a registry of drivers that deliver formatted messages."""

from __future__ import annotations

import signal
import sys
import threading
from abc import ABC, abstractmethod
from typing import Any


class TransportError(Exception):
    """Base class of all transport errors."""

    def __init__(self, message: str = "transport error") -> None:
        super().__init__(message)


class DriverTransportError(TransportError):
    """An error raised by a named transport driver."""

    def __init__(self, driver: str, err: BaseException) -> None:
        super().__init__(f"{err} for {driver} transport")
        self.driver = driver
        self.err = err
        self.__cause__ = err


class TransportDriver(ABC):
    """A driver that sends formatted messages somewhere."""

    def prepare(self) -> None:
        """Prepare the driver; called once when it is registered."""

    @abstractmethod
    def init(self) -> None:
        """Start the driver (open connections, files...)."""

    @abstractmethod
    def close(self) -> None:
        """Stop the driver and release what it holds."""

    @abstractmethod
    def send(self, key: bytes | None, data: bytes) -> None:
        """Send one formatted message."""


class Transport:
    """A driver looked up by name; errors it raises carry the driver name."""

    def __init__(self, name: str, driver: TransportDriver) -> None:
        self.name = name
        self.driver = driver

    def close(self) -> None:
        try:
            self.driver.close()
        except Exception as err:
            raise DriverTransportError(self.name, err) from err

    def send(self, key: bytes | None, data: bytes) -> None:
        try:
            self.driver.send(key, data)
        except Exception as err:
            raise DriverTransportError(self.name, err) from err

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Transport({self.name!r})"


class FileDriver(TransportDriver):
    """Appends messages to a file, or writes them to stdout when no file is set.

    When writing to a file, SIGHUP reopens it so that it can be rotated.
    """

    def __init__(self, destination: str = "", separator: str = "\n") -> None:
        self.destination = destination
        self.separator = separator
        self._lock = threading.RLock()
        self._file: Any = None
        self._writer: Any = None
        self._hangup_installed = False
        self._previous_handler: Any = None

    def _open(self) -> None:
        new_file = open(self.destination, "ab")
        old_file = self._file
        self._file = new_file
        self._writer = new_file
        if old_file is not None:
            old_file.close()

    def init(self) -> None:
        if not self.destination:
            with self._lock:
                self._writer = sys.stdout
            return
        with self._lock:
            self._open()
        self._install_hangup_handler()

    def reopen(self) -> None:
        """Reopen the destination file; the old one stays in use on failure."""
        if not self.destination:
            return
        with self._lock:
            self._open()

    def _on_hangup(self, signum: int, frame: Any) -> None:
        try:
            self.reopen()
        except OSError:
            pass

    def _install_hangup_handler(self) -> None:
        if not hasattr(signal, "SIGHUP"):
            return
        if threading.current_thread() is not threading.main_thread():
            return
        self._previous_handler = signal.signal(signal.SIGHUP, self._on_hangup)
        self._hangup_installed = True

    def _remove_hangup_handler(self) -> None:
        if not self._hangup_installed:
            return
        previous = self._previous_handler
        signal.signal(signal.SIGHUP, previous if previous is not None else signal.SIG_DFL)
        self._hangup_installed = False
        self._previous_handler = None

    def send(self, key: bytes | None, data: bytes) -> None:
        with self._lock:
            writer = self._writer
            if writer is None:
                raise RuntimeError("file driver is not initialised")
            payload = bytes(data) + self.separator.encode("utf-8")
            if writer is self._file:
                writer.write(payload)
                writer.flush()
                return
            buffer = getattr(writer, "buffer", None)
            writer.flush()
            if buffer is not None:
                buffer.write(payload)
                buffer.flush()
            else:
                writer.write(payload.decode("utf-8", errors="replace"))
                writer.flush()

    def close(self) -> None:
        if self.destination:
            with self._lock:
                if self._file is not None:
                    self._file.close()
                self._file = None
                self._writer = None
            self._remove_hangup_handler()


_drivers: dict[str, TransportDriver] = {}
_lock = threading.RLock()


def register_transport_driver(name: str, driver: TransportDriver) -> None:
    """Register a driver under a name and prepare it."""
    with _lock:
        _drivers[name] = driver
    driver.prepare()


def find_transport(name: str) -> Transport:
    """Look up and initialise the driver registered under name."""
    with _lock:
        driver = _drivers.get(name)
    if driver is None:
        raise TransportError(f"transport error {name} not found")
    try:
        driver.init()
    except Exception as err:
        raise DriverTransportError(name, err) from err
    return Transport(name, driver)


def get_transports() -> list[str]:
    """Names of all registered transport drivers."""
    with _lock:
        return list(_drivers)


register_transport_driver("file", FileDriver())
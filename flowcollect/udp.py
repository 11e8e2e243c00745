"""Multi-socket UDP receiver feeding a pool of decoding workers."""

from __future__ import annotations

import ipaddress
import queue
import socket
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
AddrPort = Tuple[IPAddress, int]

_PACKET_SIZE = 9000
_POLL_INTERVAL = 0.1
_ERROR_QUEUE_SIZE = 128
_DEFAULT_QUEUE_SIZE = 1_000_000


@dataclass(frozen=True)
class Message:
    """A received datagram."""

    src: AddrPort
    dst: AddrPort
    payload: bytes
    received: datetime


DecoderFunc = Callable[[Message], None]


class ReceiverError(Exception):
    """An error raised while receiving or decoding a datagram."""

    def __init__(self, err: BaseException) -> None:
        super().__init__(f"receiver: {err}")
        self.err = err
        self.__cause__ = err


@dataclass
class UDPReceiverConfig:
    """Receiver settings; zero values fall back to defaults."""

    workers: int = 0
    sockets: int = 0
    blocking: bool = False
    queue_size: int = 0


def _addr_port(sockaddr: tuple) -> AddrPort:
    return ipaddress.ip_address(sockaddr[0]), sockaddr[1]


def _open_socket(addr: str, port: int) -> socket.socket:
    host = addr.strip("[]") or None
    family, sock_type, proto, _, sockaddr = socket.getaddrinfo(
        host, port, socket.AF_UNSPEC, socket.SOCK_DGRAM, 0, socket.AI_PASSIVE
    )[0]
    sock = socket.socket(family, sock_type, proto)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(sockaddr)
        sock.settimeout(_POLL_INTERVAL)
    except BaseException:
        sock.close()
        raise
    return sock


class UDPReceiver:
    """Listens on a UDP port with several sockets and decodes in worker threads.

    A receiver may be started again after it has been stopped.
    """

    def __init__(self, cfg: Optional[UDPReceiverConfig] = None) -> None:
        self.sockets = 2
        self.workers = 2
        self.blocking = False
        queue_size = _DEFAULT_QUEUE_SIZE
        if cfg is not None:
            self.sockets = cfg.sockets if cfg.sockets > 0 else 1
            self.workers = cfg.workers if cfg.workers > 0 else self.sockets
            self.blocking = cfg.blocking
            queue_size = cfg.queue_size
        if queue_size < 0:
            raise ValueError("queue size cannot be negative")
        self.queue_size = queue_size
        # A size of zero asks for hand-over without buffering; one slot is the closest queue.
        self._dispatch: queue.Queue[Optional[Message]] = queue.Queue(maxsize=max(queue_size, 1))
        self._errors: queue.Queue[ReceiverError] = queue.Queue(maxsize=_ERROR_QUEUE_SIZE)
        self._lock = threading.Lock()
        self._running = False
        self._stop_event = threading.Event()
        self._receiver_threads: list[threading.Thread] = []
        self._decoder_threads: list[threading.Thread] = []

    def errors(self) -> queue.Queue:
        """Queue of ReceiverError; errors are dropped when it is full."""
        return self._errors

    def _log_error(self, err: ReceiverError) -> None:
        try:
            self._errors.put_nowait(err)
        except queue.Full:
            pass

    def _enqueue(self, msg: Message, stop: threading.Event) -> None:
        if not self.blocking:
            try:
                self._dispatch.put_nowait(msg)
            except queue.Full:
                pass
            return
        while not stop.is_set():
            try:
                self._dispatch.put(msg, timeout=_POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def _receive(self, sock: socket.socket, stop: threading.Event) -> None:
        try:
            local = _addr_port(sock.getsockname())
            while not stop.is_set():
                try:
                    payload, remote = sock.recvfrom(_PACKET_SIZE)
                except socket.timeout:
                    continue
                except OSError as err:
                    if not stop.is_set():
                        self._log_error(ReceiverError(err))
                    return
                if not payload:
                    continue
                msg = Message(
                    src=_addr_port(remote),
                    dst=local,
                    payload=payload,
                    received=datetime.now(timezone.utc),
                )
                self._enqueue(msg, stop)
        finally:
            sock.close()

    def _decode(self, decode_func: Optional[DecoderFunc]) -> None:
        while True:
            msg = self._dispatch.get()
            if msg is None:
                return
            if decode_func is None:
                continue
            try:
                decode_func(msg)
            except Exception as err:
                self._log_error(ReceiverError(err))

    def start(self, addr: str, port: int, decode_func: Optional[DecoderFunc] = None) -> None:
        """Start the decoding workers and the listening sockets."""
        with self._lock:
            if self._running:
                raise RuntimeError("receiver is already started")
            self._running = True
            stop = threading.Event()
            self._stop_event = stop

            for _ in range(self.workers):
                thread = threading.Thread(target=self._decode, args=(decode_func,), daemon=True)
                thread.start()
                self._decoder_threads.append(thread)

            for _ in range(self.workers):
                try:
                    sock = _open_socket(addr, port)
                except OSError as err:
                    self._log_error(ReceiverError(err))
                    continue
                thread = threading.Thread(target=self._receive, args=(sock, stop), daemon=True)
                thread.start()
                self._receiver_threads.append(thread)

    def stop(self) -> None:
        """Stop all threads; raises if the receiver was not running."""
        with self._lock:
            was_running = self._running
            self._running = False
            self._stop_event.set()

            for thread in self._receiver_threads:
                thread.join()
            for _ in self._decoder_threads:
                self._dispatch.put(None)
            for thread in self._decoder_threads:
                thread.join()
            self._receiver_threads = []
            self._decoder_threads = []

        if not was_running:
            raise RuntimeError("receiver is already stopped")
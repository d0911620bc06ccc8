"""A logical packet connection for one ufrag, fed by a shared UDP socket."""

from __future__ import annotations

import ipaddress
import logging
import struct
import threading
from collections import deque

from .tcp_packet_conn import RECEIVE_MTU
from .util import ClosedPipeError, ShortBufferError, UDPAddr

MAX_ADDR_SIZE = 512
_RECORD_CAPACITY = RECEIVE_MTU + MAX_ADDR_SIZE
_U16 = struct.Struct("<H")


def _check_ip_text(text: str) -> None:
    if text:
        ipaddress.ip_address(text)


def encode_udp_addr(addr: UDPAddr) -> bytes:
    """Encode an address as | ip len | ip text | port | zone |, little-endian."""
    _check_ip_text(addr.ip)
    ip_text = addr.ip.encode("ascii")
    return (
        _U16.pack(len(ip_text))
        + ip_text
        + _U16.pack(addr.port & 0xFFFF)
        + addr.zone.encode("utf-8")
    )


def decode_udp_addr(data: bytes) -> UDPAddr:
    """Decode an address written by encode_udp_addr."""
    data = bytes(data)
    if len(data) < 2:
        raise ShortBufferError("address record too short")
    (ip_len,) = _U16.unpack_from(data)
    offset = 2
    if offset + ip_len + 2 > len(data):
        raise ShortBufferError("address record too short")
    ip_text = data[offset:offset + ip_len].decode("ascii")
    _check_ip_text(ip_text)
    offset += ip_len
    (port,) = _U16.unpack_from(data, offset)
    offset += 2
    return UDPAddr(ip_text, port, data[offset:].decode("utf-8"))


def _decode_record(record: bytes) -> tuple[bytes, UDPAddr]:
    (data_len,) = _U16.unpack_from(record)
    offset = 2
    if offset + data_len + 2 > len(record):
        raise ShortBufferError("packet record too short")
    data = record[offset:offset + data_len]
    offset += data_len
    (addr_len,) = _U16.unpack_from(record, offset)
    offset += 2
    return data, decode_udp_addr(record[offset:offset + addr_len])


class UDPMuxedConn:
    """Packets from remotes of one ufrag, queued by the mux that owns the socket."""

    def __init__(self, mux, key: str, local_addr=None, logger: logging.Logger | None = None):
        self._mux = mux
        self._key = key
        self._local_addr = local_addr
        self._log = logger or logging.getLogger("icelink")
        self._addresses: list[str] = []
        self._lock = threading.Lock()
        self._cond = threading.Condition()
        self._records: deque[bytes] = deque()
        self._closed = threading.Event()

    @property
    def key(self) -> str:
        return self._key

    @property
    def local_addr(self):
        return self._local_addr

    def read_from(self) -> tuple[bytes, UDPAddr]:
        """Block for the next packet and return ``(data, remote_addr)``."""
        with self._cond:
            while not self._records and not self._closed.is_set():
                self._cond.wait()
            if not self._records:
                raise EOFError("EOF")
            record = self._records.popleft()
        return _decode_record(record)

    def write_to(self, data: bytes, raddr: UDPAddr) -> int:
        """Send ``data`` to ``raddr`` through the mux, registering the address."""
        if self._closed.is_set():
            raise ClosedPipeError("io: read/write on closed pipe")
        key = str(raddr)
        if not self._contains_address(key):
            self._add_address(key)
        return self._mux._write_to(bytes(data), raddr)

    def write_packet(self, data: bytes, addr: UDPAddr) -> None:
        """Queue a packet received from ``addr`` for read_from."""
        data = bytes(data)
        if len(data) + MAX_ADDR_SIZE > _RECORD_CAPACITY:
            raise ShortBufferError(f"packet of {len(data)} bytes is too large")
        encoded = encode_udp_addr(addr)
        if len(encoded) > _RECORD_CAPACITY - 4 - len(data):
            raise ShortBufferError("address does not fit the packet buffer")
        record = _U16.pack(len(data)) + data + _U16.pack(len(encoded)) + encoded
        with self._cond:
            if self._closed.is_set():
                raise ClosedPipeError("io: read/write on closed pipe")
            self._records.append(record)
            self._cond.notify_all()

    def close(self) -> None:
        """Close the connection; pending packets can still be read."""
        with self._cond:
            first = not self._closed.is_set()
            self._closed.set()
            self._cond.notify_all()
        if first:
            self._mux._remove_conn(self)
        with self._lock:
            self._addresses = []

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait until the connection is closed; return whether it is."""
        return self._closed.wait(timeout)

    def _get_addresses(self) -> list[str]:
        with self._lock:
            return list(self._addresses)

    def _add_address(self, addr: str) -> None:
        with self._lock:
            self._addresses.append(addr)
        self._mux._register_conn_for_address(self, addr)

    def _remove_address(self, addr: str) -> None:
        with self._lock:
            self._addresses = [a for a in self._addresses if a != addr]

    def _contains_address(self, addr: str) -> bool:
        with self._lock:
            return addr in self._addresses

    def __enter__(self) -> UDPMuxedConn:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
"""A packet-oriented view over framed TCP streams (RFC 4571)."""

from __future__ import annotations

import logging
import socket
import struct
import threading
from collections import deque

from .util import ClosedPipeError, ShortBufferError, TCPAddr

RECEIVE_MTU = 8192
STREAMING_PACKET_HEADER_LEN = 2
_HEADER = struct.Struct("!H")
_MAX_PACKET = 0xFFFF


class ConnectionExistsError(ConnectionError):
    """Raised when a stream from the same remote address is already held."""


def _recv_exact(conn: socket.socket, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            raise EOFError("EOF")
        data += chunk
    return bytes(data)


def read_streaming_packet(conn: socket.socket, max_size: int = RECEIVE_MTU) -> bytes:
    """Read one packet prefixed by a 2-byte big-endian length from ``conn``."""
    (length,) = _HEADER.unpack(_recv_exact(conn, STREAMING_PACKET_HEADER_LEN))
    if length > max_size:
        raise ShortBufferError(f"packet of {length} bytes exceeds buffer of {max_size}")
    return _recv_exact(conn, length)


def write_streaming_packet(conn: socket.socket, data: bytes) -> int:
    """Write ``data`` to ``conn`` behind a 2-byte length; return the payload size."""
    if len(data) > _MAX_PACKET:
        raise ValueError(f"packet of {len(data)} bytes does not fit a 16-bit length")
    conn.sendall(_HEADER.pack(len(data)) + bytes(data))
    return len(data)


def _peer(conn: socket.socket) -> TCPAddr:
    peer = conn.getpeername()
    return TCPAddr(peer[0], peer[1])


class TCPPacketConn:
    """Groups TCP streams and exposes them as one packet connection."""

    def __init__(self, read_buffer: int = 0, local_addr=None, logger: logging.Logger | None = None):
        self._capacity = max(1, read_buffer)
        self._local_addr = local_addr
        self._log = logger or logging.getLogger("icelink")
        self._conns: dict[str, socket.socket] = {}
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._queue: deque = deque()
        self._closed = threading.Event()
        self._drained = False
        self._threads: list[threading.Thread] = []

    @property
    def local_addr(self):
        return self._local_addr

    def add_conn(self, conn: socket.socket, first_packet_data: bytes | None = None) -> None:
        """Start reading packets from ``conn``, delivering ``first_packet_data`` first."""
        raddr = _peer(conn)
        self._log.info("AddConn: tcp %s", raddr)
        key = str(raddr)
        with self._lock:
            if self._closed.is_set():
                raise ClosedPipeError("io: read/write on closed pipe")
            if key in self._conns:
                raise ConnectionExistsError(f"conn with same remote addr already exists: {key}")
            self._conns[key] = conn
            thread = threading.Thread(
                target=self._serve, args=(conn, raddr, first_packet_data), daemon=True
            )
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
            thread.start()

    def _serve(self, conn: socket.socket, raddr: TCPAddr, first: bytes | None) -> None:
        if first is not None:
            self._handle_recv(bytes(first), raddr, None)
        while True:
            try:
                data = read_streaming_packet(conn, RECEIVE_MTU)
            except (OSError, EOFError, ValueError) as exc:
                self._log.info("error reading streaming packet: %s", exc)
                self._handle_recv(None, raddr, exc)
                self._remove_conn(conn, str(raddr))
                return
            self._handle_recv(data, raddr, None)

    def _handle_recv(self, data, raddr, error) -> None:
        with self._cond:
            while len(self._queue) >= self._capacity and not self._closed.is_set():
                self._cond.wait()
            if self._closed.is_set():
                return
            self._queue.append((data, raddr, error))
            self._cond.notify_all()

    def read_from(self):
        """Block for the next packet and return ``(data, remote_addr)``."""
        with self._cond:
            while not self._queue and not self._drained:
                self._cond.wait()
            if not self._queue:
                raise ClosedPipeError("io: read/write on closed pipe")
            data, raddr, error = self._queue.popleft()
            self._cond.notify_all()
        if error is not None:
            raise error
        return data, raddr

    def write_to(self, data: bytes, raddr) -> int:
        """Send ``data`` as one packet on the stream from ``raddr``."""
        with self._lock:
            conn = self._conns.get(str(raddr))
        if conn is None:
            raise ClosedPipeError("io: read/write on closed pipe")
        try:
            return write_streaming_packet(conn, data)
        except OSError:
            self._log.debug("error writing to %s", raddr)
            raise

    def _close_socket(self, conn: socket.socket) -> None:
        try:
            conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            conn.close()
        except OSError as exc:
            self._log.warning("failed to close connection: %s", exc)

    def _remove_conn(self, conn: socket.socket, key: str) -> None:
        with self._lock:
            self._close_socket(conn)
            if self._conns.get(key) is conn:
                del self._conns[key]

    def close(self) -> None:
        """Close every stream and wake readers once pending packets are consumed."""
        with self._cond:
            first = not self._closed.is_set()
            self._closed.set()
            conns = list(self._conns.values())
            self._conns.clear()
            for conn in conns:
                self._close_socket(conn)
            self._cond.notify_all()
            threads = list(self._threads)
        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join()
        if first:
            with self._cond:
                self._drained = True
                self._cond.notify_all()

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait until close() has been called; return whether it was."""
        return self._closed.wait(timeout)

    def __enter__(self) -> TCPPacketConn:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __str__(self) -> str:
        return f"TCPPacketConn{{LocalAddr: {self._local_addr}}}"
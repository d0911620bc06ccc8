"""Muxing accepted TCP streams into packet connections grouped by ICE ufrag."""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading
from abc import ABC, abstractmethod

from .stun import ATTR_USERNAME, METHOD_BINDING, StunError, decode_message
from .tcp_packet_conn import (
    RECEIVE_MTU,
    ConnectionExistsError,
    TCPPacketConn,
    read_streaming_packet,
)
from .util import ClosedPipeError, TCPAddr

_ACCEPT_POLL = 0.1


class TCPMuxNotInitializedError(RuntimeError):
    """Raised by the placeholder mux used when no TCP mux is configured."""

    def __init__(self, message: str = "TCPMux is not initialized") -> None:
        super().__init__(message)


class TCPMux(ABC):
    """Groups TCP streams and hands them out as packet connections."""

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def get_conn_by_ufrag(self, ufrag: str, is_ipv6: bool): ...

    @abstractmethod
    def remove_conn_by_ufrag(self, ufrag: str) -> None: ...


class InvalidTCPMux(TCPMux):
    """A mux that refuses every operation."""

    def close(self) -> None:
        raise TCPMuxNotInitializedError()

    def get_conn_by_ufrag(self, ufrag: str, is_ipv6: bool):
        raise TCPMuxNotInitializedError()

    def remove_conn_by_ufrag(self, ufrag: str) -> None:
        return None


def _is_ipv6(host: str) -> bool:
    try:
        ip = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return True
    return ip.version == 6 and ip.ipv4_mapped is None


def _close_socket(conn: socket.socket) -> None:
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        conn.close()
    except OSError:
        pass


class TCPMuxDefault(TCPMux):
    """Accepts TCP streams on a listener and groups them by the STUN ufrag."""

    def __init__(self, listener: socket.socket, logger: logging.Logger | None = None,
                 read_buffer_size: int = 0):
        self._listener = listener
        self._log = logger or logging.getLogger("icelink")
        self._read_buffer_size = read_buffer_size
        name = listener.getsockname()
        self._local_addr = TCPAddr(name[0], name[1])
        self._closed = False
        self._stopping = threading.Event()
        self._conns: dict[bool, dict[str, TCPPacketConn]] = {False: {}, True: {}}
        self._pending: set[socket.socket] = set()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._threads_lock = threading.Lock()
        listener.settimeout(_ACCEPT_POLL)
        self._spawn(self._accept_loop)

    @property
    def local_addr(self) -> TCPAddr:
        return self._local_addr

    def _spawn(self, target, *args) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        with self._threads_lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def _accept_loop(self) -> None:
        self._log.info("Listening TCP on %s", self._local_addr)
        while not self._stopping.is_set():
            try:
                conn, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                self._log.info("Error accepting connection: %s", exc)
                return
            conn.setblocking(True)
            with self._lock:
                if self._closed:
                    _close_socket(conn)
                    return
                self._pending.add(conn)
            self._spawn(self._handle_conn, conn)

    def _reject(self, conn: socket.socket, reason: str) -> None:
        _close_socket(conn)
        self._log.warning("%s", reason)

    def _handle_conn(self, conn: socket.socket) -> None:
        try:
            self._register(conn)
        finally:
            with self._lock:
                self._pending.discard(conn)

    def _register(self, conn: socket.socket) -> None:
        try:
            peer = conn.getpeername()
            local = conn.getsockname()
        except OSError as exc:
            self._reject(conn, f"Failed to get addresses of accepted connection: {exc}")
            return
        remote_addr = TCPAddr(peer[0], peer[1])
        local_addr = TCPAddr(local[0], local[1])
        self._log.debug("Accepted connection from: %s to %s", remote_addr, local_addr)

        try:
            data = read_streaming_packet(conn, RECEIVE_MTU)
        except (OSError, EOFError, ValueError) as exc:
            self._reject(conn, f"Error reading first packet from {remote_addr}: {exc}")
            return

        try:
            msg = decode_message(data)
        except StunError as exc:
            self._reject(conn, f"Failed to handle decode ICE from {remote_addr} to {local_addr}: {exc}")
            return
        if msg.method != METHOD_BINDING:
            self._reject(conn, f"Not a STUN message from {remote_addr} to {local_addr}")
            return
        for kind, value in msg.attributes:
            self._log.debug("msg attr: 0x%04x %r", kind, value)
        try:
            username = msg.get(ATTR_USERNAME)
        except StunError:
            self._reject(conn, f"No Username attribute in STUN message from {remote_addr} to {local_addr}")
            return

        ufrag = username.decode("utf-8", "replace").split(":")[0]
        self._log.debug("Ufrag: %s", ufrag)
        is_ipv6 = _is_ipv6(peer[0])

        with self._lock:
            self._pending.discard(conn)
            if self._closed:
                _close_socket(conn)
                return
            packet_conn = self._conns[is_ipv6].get(ufrag)
            if packet_conn is None:
                packet_conn = self._create_conn(ufrag, local_addr, is_ipv6)
            try:
                packet_conn.add_conn(conn, data)
            except (ClosedPipeError, ConnectionExistsError, OSError) as exc:
                self._reject(conn, f"Error adding conn to TCPPacketConn from {remote_addr} to {local_addr}: {exc}")

    def _create_conn(self, ufrag: str, local_addr, is_ipv6: bool) -> TCPPacketConn:
        conn = TCPPacketConn(self._read_buffer_size, local_addr, self._log)
        self._conns[is_ipv6][ufrag] = conn
        self._spawn(self._forget_when_closed, ufrag, conn, is_ipv6)
        return conn

    def _forget_when_closed(self, ufrag: str, conn: TCPPacketConn, is_ipv6: bool) -> None:
        conn.wait_closed()
        with self._lock:
            table = self._conns[is_ipv6]
            if table.get(ufrag) is conn:
                del table[ufrag]

    def get_conn_by_ufrag(self, ufrag: str, is_ipv6: bool) -> TCPPacketConn:
        """Return the packet connection for ``ufrag``, creating it if needed."""
        with self._lock:
            if self._closed:
                raise ClosedPipeError("io: read/write on closed pipe")
            conn = self._conns[is_ipv6].get(ufrag)
            if conn is None:
                conn = self._create_conn(ufrag, self._local_addr, is_ipv6)
            return conn

    def remove_conn_by_ufrag(self, ufrag: str) -> None:
        """Close and forget the packet connections for ``ufrag``."""
        with self._lock:
            for table in self._conns.values():
                conn = table.pop(ufrag, None)
                if conn is not None:
                    conn.close()

    def close(self) -> None:
        """Close the listener and all connections, and wait for workers to stop."""
        with self._lock:
            self._closed = True
            self._stopping.set()
            conns = [c for table in self._conns.values() for c in table.values()]
            self._conns = {False: {}, True: {}}
            for conn in conns:
                conn.close()
            for pending in list(self._pending):
                _close_socket(pending)
            self._listener.close()
        with self._threads_lock:
            threads = list(self._threads)
        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join()

    def __enter__(self) -> TCPMuxDefault:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
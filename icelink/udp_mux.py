"""Several ICE connections sharing one UDP socket, told apart by ufrag."""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading

from .stun import ATTR_USERNAME, StunError, decode_message, is_message
from .tcp_packet_conn import RECEIVE_MTU
from .udp_muxed_conn import MAX_ADDR_SIZE, UDPMuxedConn
from .util import ClosedPipeError, ShortBufferError, UDPAddr

__all__ = ["MAX_ADDR_SIZE", "UDPMuxDefault"]

_READ_POLL = 0.1


def _to_udp_addr(peer) -> UDPAddr:
    ip, _, zone = peer[0].partition("%")
    return UDPAddr(ip, peer[1], zone)


def _sockaddr(addr: UDPAddr) -> tuple[str, int]:
    host = f"{addr.ip}%{addr.zone}" if addr.zone else addr.ip
    return host, addr.port


def _is_ipv6(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return address.version == 6 and address.ipv4_mapped is None


class UDPMuxDefault:
    """Reads one UDP socket and hands packets to per-ufrag connections."""

    def __init__(self, udp_conn: socket.socket, logger: logging.Logger | None = None):
        self._conn = udp_conn
        self._log = logger or logging.getLogger("icelink")
        self._lock = threading.Lock()
        self._conns: dict[bool, dict[str, UDPMuxedConn]] = {False: {}, True: {}}
        self._address_lock = threading.Lock()
        self._address_map: dict[str, UDPMuxedConn] = {}
        self._closed = threading.Event()
        udp_conn.settimeout(_READ_POLL)
        self._worker = threading.Thread(target=self._conn_worker, daemon=True)
        self._worker.start()

    @property
    def local_addr(self) -> UDPAddr:
        return _to_udp_addr(self._conn.getsockname())

    def get_conn(self, ufrag: str, is_ipv6: bool) -> UDPMuxedConn:
        """Return the connection for ``ufrag``, creating it if needed."""
        with self._lock:
            if self.is_closed():
                raise ClosedPipeError("io: read/write on closed pipe")
            conn = self._conns[is_ipv6].get(ufrag)
            if conn is None:
                conn = UDPMuxedConn(self, ufrag, self.local_addr, self._log)
                self._conns[is_ipv6][ufrag] = conn
            return conn

    def remove_conn_by_ufrag(self, ufrag: str) -> None:
        """Forget the connections for ``ufrag`` and the addresses they used."""
        with self._lock:
            removed = [c for c in (t.pop(ufrag, None) for t in self._conns.values()) if c]
        with self._address_lock:
            for conn in removed:
                for addr in conn._get_addresses():
                    self._address_map.pop(addr, None)

    def is_closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Close the mux and its connections; the socket itself stays open."""
        with self._lock:
            if self._closed.is_set():
                return
            conns = [c for table in self._conns.values() for c in table.values()]
            self._conns = {False: {}, True: {}}
            self._closed.set()
        for conn in conns:
            conn.close()
        if self._worker is not threading.current_thread():
            self._worker.join()

    def __enter__(self) -> UDPMuxDefault:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _remove_conn(self, conn: UDPMuxedConn) -> None:
        with self._lock:
            found = False
            for table in self._conns.values():
                if table.get(conn.key) is conn:
                    del table[conn.key]
                    found = True
                    break
        if not found:
            return
        with self._address_lock:
            for addr in conn._get_addresses():
                if self._address_map.get(addr) is conn:
                    del self._address_map[addr]

    def _write_to(self, data: bytes, raddr: UDPAddr) -> int:
        return self._conn.sendto(data, _sockaddr(raddr))

    def _register_conn_for_address(self, conn: UDPMuxedConn, addr: str) -> None:
        if self.is_closed():
            return
        with self._address_lock:
            existing = self._address_map.get(addr)
            if existing is not None:
                existing._remove_address(addr)
            self._address_map[addr] = conn
        self._log.debug("Registered %s for %s", addr, conn.key)

    def _read_packet(self) -> tuple[bytes, UDPAddr]:
        data, peer = self._conn.recvfrom(RECEIVE_MTU)
        return data, _to_udp_addr(peer)

    def _conn_worker(self) -> None:
        try:
            while True:
                try:
                    data, addr = self._read_packet()
                except socket.timeout:
                    if self.is_closed():
                        return
                    continue
                except OSError as exc:
                    if not self.is_closed():
                        self._log.error("could not read udp packet: %s", exc)
                    return
                if self.is_closed():
                    return
                self._dispatch(data, addr)
        finally:
            self.close()

    def _dispatch(self, data: bytes, addr: UDPAddr) -> None:
        with self._address_lock:
            destination = self._address_map.get(str(addr))

        if destination is None and is_message(data):
            try:
                msg = decode_message(data)
            except StunError as exc:
                self._log.warning("Failed to handle decode ICE from %s: %s", addr, exc)
                return
            try:
                username = msg.get(ATTR_USERNAME)
            except StunError:
                self._log.warning("No Username attribute in STUN message from %s", addr)
                return
            ufrag = username.decode("utf-8", "replace").split(":")[0]
            with self._lock:
                destination = self._conns[_is_ipv6(addr.ip)].get(ufrag)

        if destination is None:
            self._log.debug("dropping packet from %s", addr)
            return
        try:
            destination.write_packet(data, addr)
        except (ClosedPipeError, ShortBufferError, ValueError) as exc:
            self._log.error("could not write packet: %s", exc)
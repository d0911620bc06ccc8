"""A UDP mux that also resolves server reflexive addresses over the shared socket."""

from __future__ import annotations

import errno
import logging
import socket
import threading
import time
from dataclasses import dataclass, field

from .stun import (
    ATTR_XOR_MAPPED_ADDRESS,
    Message,
    StunError,
    XORMappedAddress,
    build_binding_request,
    decode_message,
    is_message,
)
from .udp_mux import UDPMuxDefault, _sockaddr
from .util import UDPAddr

DEFAULT_XOR_MAPPED_ADDR_CACHE_TTL = 25.0


class XORMappedTimeoutError(TimeoutError):
    """Raised when no XOR-MAPPED-ADDRESS arrives before the deadline."""

    def __init__(self, message: str = "timeout while waiting for XORMappedAddr") -> None:
        super().__init__(message)


@dataclass
class _XORMapped:
    expires_at: float
    addr: XORMappedAddress | None = None
    received: threading.Event = field(default_factory=threading.Event)

    def close_waiters(self) -> None:
        self.received.set()

    def pending(self) -> bool:
        return self.addr is None

    def expired(self) -> bool:
        return self.expires_at < time.monotonic()

    def set_addr(self, addr: XORMappedAddress) -> None:
        self.addr = addr
        self.close_waiters()


class UniversalUDPMuxDefault(UDPMuxDefault):
    """UDP mux that intercepts STUN server replies to learn mapped addresses."""

    def __init__(self, udp_conn: socket.socket, logger: logging.Logger | None = None,
                 xor_mapped_addr_cache_ttl: float = 0):
        self.xor_mapped_addr_cache_ttl = xor_mapped_addr_cache_ttl or DEFAULT_XOR_MAPPED_ADDR_CACHE_TTL
        self._xor_lock = threading.Lock()
        self._xor_mapped: dict[str, _XORMapped] = {}
        super().__init__(udp_conn, logger)

    def get_relayed_addr(self, turn_addr: UDPAddr, deadline: float):
        """Relayed candidates are not offered over the shared socket."""
        raise OSError(errno.EOPNOTSUPP, "relayed addresses are not supported by the UDP mux")

    def get_conn_for_url(self, ufrag: str, url, is_ipv6: bool):
        """Return a connection unique to the pair of ufrag and server URL."""
        return self.get_conn(f"{ufrag}{url}", is_ipv6)

    def get_xor_mapped_addr(self, server_addr: UDPAddr, deadline: float) -> XORMappedAddress:
        """Return the mapped address seen by a STUN server, asking it if needed."""
        key = str(server_addr)
        with self._xor_lock:
            mapped = self._xor_mapped.get(key)
            if mapped is not None:
                if mapped.expired():
                    mapped.close_waiters()
                    del self._xor_mapped[key]
                    mapped = None
                elif mapped.pending():
                    mapped = None
        if mapped is not None:
            return mapped.addr

        try:
            waiter = self._send_stun(server_addr)
        except (OSError, StunError) as exc:
            raise OSError(f"failed to send STUN packet: {exc}") from exc

        if not waiter.wait(deadline):
            raise XORMappedTimeoutError()
        with self._xor_lock:
            mapped = self._xor_mapped.get(key)
        if mapped is None or mapped.addr is None:
            raise StunError("no address mapping")
        return mapped.addr

    def _send_stun(self, server_addr: UDPAddr) -> threading.Event:
        key = str(server_addr)
        with self._xor_lock:
            mapped = self._xor_mapped.get(key)
            if mapped is None:
                mapped = _XORMapped(time.monotonic() + self.xor_mapped_addr_cache_ttl)
                self._xor_mapped[key] = mapped
            request = build_binding_request()
            self._conn.sendto(request.raw, _sockaddr(server_addr))
            return mapped.received

    def _is_xor_mapped_response(self, msg: Message, stun_addr: str) -> bool:
        with self._xor_lock:
            return stun_addr in self._xor_mapped and msg.contains(ATTR_XOR_MAPPED_ADDRESS)

    def _handle_xor_mapped_response(self, stun_addr: str, msg: Message) -> None:
        with self._xor_lock:
            mapped = self._xor_mapped.get(stun_addr)
            if mapped is None:
                raise StunError("no address mapping")
            mapped.set_addr(XORMappedAddress().get_from(msg))

    def _read_packet(self) -> tuple[bytes, UDPAddr]:
        data, addr = super()._read_packet()
        if is_message(data):
            try:
                msg = decode_message(data)
            except StunError as exc:
                self._log.warning("Failed to handle decode ICE from %s: %s", addr, exc)
                return data, addr
            if self._is_xor_mapped_response(msg, str(addr)):
                try:
                    self._handle_xor_mapped_response(str(addr), msg)
                except StunError as exc:
                    self._log.debug("failed to get XOR-MAPPED-ADDRESS response: %s", exc)
        return data, addr
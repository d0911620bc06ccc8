"""Address helpers, STUN requests and local interface discovery."""

from __future__ import annotations

import ipaddress
import logging
import random
import socket
from dataclasses import dataclass
from typing import Callable, Iterable

import psutil

from .stun import StunError, XORMappedAddress, build_binding_request, decode_message

logger = logging.getLogger("icelink")

MAX_MESSAGE_SIZE = 1280


class ClosedPipeError(ConnectionError):
    """Raised on use of a closed connection."""


class ShortBufferError(ValueError):
    """Raised when data does not fit the available buffer."""


class PortRangeError(OSError):
    """Raised when no port in the requested range can be used."""


def _join_host(ip: str, zone: str) -> str:
    host = f"{ip}%{zone}" if zone else ip
    return f"[{host}]" if ":" in host else host


@dataclass(frozen=True)
class UDPAddr:
    ip: str = ""
    port: int = 0
    zone: str = ""

    def __str__(self) -> str:
        return f"{_join_host(self.ip, self.zone)}:{self.port}"


@dataclass(frozen=True)
class TCPAddr:
    ip: str = ""
    port: int = 0
    zone: str = ""

    def __str__(self) -> str:
        return f"{_join_host(self.ip, self.zone)}:{self.port}"


def is_supported_ipv6(ip) -> bool:
    """Apply the IPv6 exclusions of RFC 8445, section 5.1.1.1."""
    address = ipaddress.ip_address(ip)
    if address.version != 6:
        return False
    b = address.packed
    if not any(b[:12]):
        return False
    if b[0] == 0xFE and b[1] & 0xC0 == 0xC0:
        return False
    if b[0] == 0xFE and b[1] & 0xC0 == 0x80:
        return False
    if b[0] == 0xFF and b[1] & 0x0F == 0x02:
        return False
    return True


def create_addr(network: str, ip: str, port: int):
    """Make a TCP or UDP address depending on the network name."""
    if network.lower().startswith("tcp"):
        return TCPAddr(ip, port)
    return UDPAddr(ip, port)


def addr_equal(a, b) -> bool:
    """Tell whether two addresses share transport, IP and port."""
    if not isinstance(a, (UDPAddr, TCPAddr)) or not isinstance(b, (UDPAddr, TCPAddr)):
        return False
    try:
        same_ip = ipaddress.ip_address(a.ip) == ipaddress.ip_address(b.ip)
    except ValueError:
        same_ip = a.ip == b.ip
    return type(a) is type(b) and same_ip and a.port == b.port


def stun_request(read: Callable[[], bytes], write: Callable[[bytes], object]):
    """Send a Binding request with ``write`` and decode the reply from ``read``."""
    request = build_binding_request()
    write(request.raw)
    return decode_message(read())


def get_xor_mapped_addr(sock: socket.socket, server_addr: UDPAddr, deadline: float) -> XORMappedAddress:
    """Ask a STUN server over ``sock`` for our mapped address; deadline in seconds."""
    previous = sock.gettimeout()
    if deadline > 0:
        sock.settimeout(deadline)
    try:
        response = stun_request(
            lambda: sock.recvfrom(MAX_MESSAGE_SIZE)[0],
            lambda data: sock.sendto(data, (server_addr.ip, server_addr.port)),
        )
    finally:
        if deadline > 0:
            sock.settimeout(previous)
    try:
        return XORMappedAddress().get_from(response)
    except StunError as exc:
        raise StunError(f"failed to get XOR-MAPPED-ADDRESS response: {exc}") from exc


def local_interfaces(interface_filter: Callable[[str], bool] | None, network_types: Iterable[str]) -> list:
    """List usable non-loopback IPs of up interfaces for the requested IP versions."""
    types = [t.lower() for t in network_types]
    want_v4 = any(t.endswith("4") for t in types)
    want_v6 = any(t.endswith("6") for t in types)
    stats = psutil.net_if_stats()
    ips = []
    for name, addrs in psutil.net_if_addrs().items():
        stat = stats.get(name)
        if stat is None or not stat.isup:
            continue
        if "loopback" in getattr(stat, "flags", ""):
            continue
        if interface_filter is not None and not interface_filter(name):
            continue
        for addr in addrs:
            if addr.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            try:
                ip = ipaddress.ip_address(addr.address.split("%", 1)[0])
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            if ip.version == 6:
                if not want_v6 or not is_supported_ipv6(ip):
                    continue
            elif not want_v4:
                continue
            ips.append(ip)
    return ips


def _udp_socket(network: str, ip: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if network.endswith("6") or ":" in ip else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_DGRAM)
    try:
        sock.bind((ip, port))
    except OSError:
        sock.close()
        raise
    return sock


def listen_udp_in_port_range(port_max: int, port_min: int, network: str, laddr: UDPAddr) -> socket.socket:
    """Bind a UDP socket, picking a port in [port_min, port_max] starting at random."""
    if laddr.port != 0 or (port_min == 0 and port_max == 0):
        return _udp_socket(network, laddr.ip, laddr.port)
    low = port_min or 1
    high = port_max or 0xFFFF
    if low > high:
        raise PortRangeError("invalid port")
    start = random.randint(low, high)
    current = start
    while True:
        try:
            return _udp_socket(network, laddr.ip, current)
        except OSError as exc:
            logger.debug("failed to listen %s: %s", UDPAddr(laddr.ip, current), exc)
        current = low if current >= high else current + 1
        if current == start:
            raise PortRangeError("invalid port")
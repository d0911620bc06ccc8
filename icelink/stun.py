"""A compact STUN message codec with the attributes ICE needs."""

from __future__ import annotations

import ipaddress
import os
import struct
from dataclasses import dataclass, field

MAGIC_COOKIE = 0x2112A442
HEADER_SIZE = 20

METHOD_BINDING = 0x001
CLASS_REQUEST = 0b00
CLASS_INDICATION = 0b01
CLASS_SUCCESS_RESPONSE = 0b10
CLASS_ERROR_RESPONSE = 0b11

ATTR_USERNAME = 0x0006
ATTR_XOR_MAPPED_ADDRESS = 0x0020
ATTR_USE_CANDIDATE = 0x0025

_FAMILY_IPV4 = 0x01
_FAMILY_IPV6 = 0x02


class StunError(ValueError):
    """Raised for malformed STUN messages or missing attributes."""


def message_type(method: int, message_class: int) -> int:
    """Combine a method and class into the 14-bit STUN message type."""
    m = (method & 0x000F) | ((method & 0x0070) << 1) | ((method & 0x0F80) << 2)
    return m | ((message_class & 0b01) << 4) | ((message_class & 0b10) << 7)


BINDING_REQUEST = message_type(METHOD_BINDING, CLASS_REQUEST)
BINDING_SUCCESS = message_type(METHOD_BINDING, CLASS_SUCCESS_RESPONSE)


def _padded(length: int) -> int:
    return (length + 3) & ~3


@dataclass
class Message:
    """A STUN message: type, transaction id and ordered attributes."""

    msg_type: int = BINDING_REQUEST
    transaction_id: bytes = field(default_factory=lambda: os.urandom(12))
    attributes: list[tuple[int, bytes]] = field(default_factory=list)
    raw: bytes = b""

    @property
    def method(self) -> int:
        t = self.msg_type
        return (t & 0x000F) | ((t >> 1) & 0x0070) | ((t >> 2) & 0x0F80)

    @property
    def message_class(self) -> int:
        t = self.msg_type
        return ((t >> 4) & 0b01) | ((t >> 7) & 0b10)

    def add(self, attr_type: int, value: bytes | None) -> None:
        self.attributes.append((attr_type, bytes(value or b"")))

    def get(self, attr_type: int) -> bytes:
        for kind, value in self.attributes:
            if kind == attr_type:
                return value
        raise StunError(f"attribute 0x{attr_type:04x} not found")

    def contains(self, attr_type: int) -> bool:
        return any(kind == attr_type for kind, _ in self.attributes)

    def encode(self) -> bytes:
        body = bytearray()
        for kind, value in self.attributes:
            body += struct.pack("!HH", kind, len(value)) + value
            body += b"\x00" * (_padded(len(value)) - len(value))
        header = struct.pack("!HHI", self.msg_type, len(body), MAGIC_COOKIE)
        self.raw = header + self.transaction_id + bytes(body)
        return self.raw


def is_message(data: bytes) -> bool:
    """Tell whether ``data`` looks like a STUN message."""
    return len(data) >= HEADER_SIZE and struct.unpack_from("!I", data, 4)[0] == MAGIC_COOKIE


def decode_message(raw: bytes) -> Message:
    """Decode a STUN message, raising StunError when it is malformed."""
    raw = bytes(raw)
    if len(raw) < HEADER_SIZE:
        raise StunError("unexpected EOF: not enough bytes to read header")
    msg_type, length, cookie = struct.unpack_from("!HHI", raw)
    if cookie != MAGIC_COOKIE:
        raise StunError(f"0x{cookie:x} is invalid magic cookie")
    if HEADER_SIZE + length > len(raw):
        raise StunError("buffer length is less than message length")
    attributes = []
    offset = HEADER_SIZE
    end = HEADER_SIZE + length
    while offset < end:
        if offset + 4 > end:
            raise StunError("unexpected EOF reading attribute header")
        kind, size = struct.unpack_from("!HH", raw, offset)
        offset += 4
        if offset + size > end:
            raise StunError("unexpected EOF reading attribute value")
        attributes.append((kind, raw[offset:offset + size]))
        offset += _padded(size)
    return Message(msg_type, raw[8:HEADER_SIZE], attributes, raw[:end])


def build_binding_request() -> Message:
    """Build and encode a Binding request with a fresh transaction id."""
    message = Message(BINDING_REQUEST)
    message.encode()
    return message


def _xor_key(message: Message) -> bytes:
    return struct.pack("!I", MAGIC_COOKIE) + message.transaction_id


@dataclass
class XORMappedAddress:
    """The XOR-MAPPED-ADDRESS attribute."""

    ip: str = ""
    port: int = 0

    def add_to(self, message: Message) -> None:
        address = ipaddress.ip_address(self.ip)
        family = _FAMILY_IPV4 if address.version == 4 else _FAMILY_IPV6
        key = _xor_key(message)
        xored = bytes(a ^ b for a, b in zip(address.packed, key))
        value = struct.pack("!BBH", 0, family, self.port ^ (MAGIC_COOKIE >> 16)) + xored
        message.add(ATTR_XOR_MAPPED_ADDRESS, value)

    def get_from(self, message: Message) -> XORMappedAddress:
        value = message.get(ATTR_XOR_MAPPED_ADDRESS)
        if len(value) < 4:
            raise StunError("XOR-MAPPED-ADDRESS too short")
        _, family, xport = struct.unpack_from("!BBH", value)
        size = {_FAMILY_IPV4: 4, _FAMILY_IPV6: 16}.get(family)
        if size is None:
            raise StunError(f"bad address family {family}")
        if len(value) < 4 + size:
            raise StunError("XOR-MAPPED-ADDRESS too short")
        packed = bytes(a ^ b for a, b in zip(value[4:4 + size], _xor_key(message)))
        self.ip = str(ipaddress.ip_address(packed))
        self.port = xport ^ (MAGIC_COOKIE >> 16)
        return self


class UseCandidateAttr:
    """The USE-CANDIDATE attribute."""

    def add_to(self, message: Message) -> None:
        message.add(ATTR_USE_CANDIDATE, None)

    def is_set(self, message: Message) -> bool:
        return message.contains(ATTR_USE_CANDIDATE)


def use_candidate() -> UseCandidateAttr:
    return UseCandidateAttr()
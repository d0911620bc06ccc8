"""STUN (RFC 7064) and TURN (RFC 7065) URLs."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from urllib.parse import parse_qs

UNKNOWN_TYPE = "Unknown"

ERR_SCHEME_TYPE = "unknown scheme type"
ERR_HOST = "invalid hostname"
ERR_PORT = "invalid port"
ERR_STUN_QUERY = "queries not supported in stun address"
ERR_INVALID_QUERY = "invalid query"
ERR_PROTO_TYPE = "invalid transport protocol type"
ERR_MISSING_SCHEME = "missing protocol scheme"
ERR_MISSING_PORT = "missing port in address"
ERR_TOO_MANY_COLONS = "too many colons in address"
ERR_MISSING_BRACKET = "missing ']' in address"
ERR_UNEXPECTED_OPEN = "unexpected '[' in address"
ERR_UNEXPECTED_CLOSE = "unexpected ']' in address"


class URLParseError(ValueError):
    """Raised when a STUN or TURN URL cannot be parsed."""


class SchemeType(IntEnum):
    UNKNOWN = 0
    STUN = 1
    STUNS = 2
    TURN = 3
    TURNS = 4

    def __str__(self) -> str:
        return UNKNOWN_TYPE if self is SchemeType.UNKNOWN else self.name.lower()


class ProtoType(IntEnum):
    UNKNOWN = 0
    UDP = 1
    TCP = 2

    def __str__(self) -> str:
        return UNKNOWN_TYPE if self is ProtoType.UNKNOWN else self.name.lower()


def new_scheme_type(raw: str) -> SchemeType:
    """Return the scheme named by ``raw``, or UNKNOWN."""
    return {
        "stun": SchemeType.STUN,
        "stuns": SchemeType.STUNS,
        "turn": SchemeType.TURN,
        "turns": SchemeType.TURNS,
    }.get(raw, SchemeType.UNKNOWN)


def new_proto_type(raw: str) -> ProtoType:
    """Return the transport protocol named by ``raw``, or UNKNOWN."""
    return {"udp": ProtoType.UDP, "tcp": ProtoType.TCP}.get(raw, ProtoType.UNKNOWN)


@dataclass
class URL:
    """A parsed STUN or TURN server URL."""

    scheme: SchemeType
    host: str
    port: int
    username: str = ""
    password: str = ""
    proto: ProtoType = ProtoType.UNKNOWN

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        raw = f"{self.scheme}:{host}:{self.port}"
        if self.scheme in (SchemeType.TURN, SchemeType.TURNS):
            raw += f"?transport={self.proto}"
        return raw

    def is_secure(self) -> bool:
        return self.scheme in (SchemeType.STUNS, SchemeType.TURNS)


_DEFAULT_PORTS = {
    SchemeType.STUN: 3478,
    SchemeType.TURN: 3478,
    SchemeType.STUNS: 5349,
    SchemeType.TURNS: 5349,
}


def _split_scheme(raw: str) -> tuple[str, str]:
    for i, ch in enumerate(raw):
        if ch.isascii() and ch.isalpha():
            continue
        if ch.isascii() and (ch.isdigit() or ch in "+-."):
            if i == 0:
                return "", raw
            continue
        if ch == ":":
            if i == 0:
                raise URLParseError(ERR_MISSING_SCHEME)
            return raw[:i].lower(), raw[i + 1:]
        return "", raw
    return "", raw


def _split_host_port(hostport: str) -> tuple[str, str]:
    i = hostport.rfind(":")
    if i < 0:
        raise URLParseError(ERR_MISSING_PORT)
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise URLParseError(ERR_MISSING_BRACKET)
        if end + 1 == len(hostport):
            raise URLParseError(ERR_MISSING_PORT)
        if end + 1 != i:
            if hostport[end + 1] == ":":
                raise URLParseError(ERR_TOO_MANY_COLONS)
            raise URLParseError(ERR_MISSING_PORT)
        host = hostport[1:end]
        start, close_start = 1, end + 1
    else:
        host = hostport[:i]
        if ":" in host:
            raise URLParseError(ERR_TOO_MANY_COLONS)
        start, close_start = 0, 0
    if "[" in hostport[start:]:
        raise URLParseError(ERR_UNEXPECTED_OPEN)
    if "]" in hostport[close_start:]:
        raise URLParseError(ERR_UNEXPECTED_CLOSE)
    return host, hostport[i + 1:]


def _parse_query(raw: str) -> dict[str, list[str]]:
    try:
        return parse_qs(raw, keep_blank_values=True)
    except ValueError as exc:
        raise URLParseError(ERR_INVALID_QUERY) from exc


def _parse_proto(raw_query: str) -> ProtoType:
    args = _parse_query(raw_query)
    if len(args) > 1:
        raise URLParseError(ERR_INVALID_QUERY)
    raw_proto = args.get("transport", [""])[0]
    if raw_proto:
        proto = new_proto_type(raw_proto)
        if proto is ProtoType.UNKNOWN:
            raise URLParseError(ERR_PROTO_TYPE)
        return proto
    if args:
        raise URLParseError(ERR_INVALID_QUERY)
    return ProtoType.UNKNOWN


def parse_url(raw: str) -> URL:
    """Parse a STUN or TURN URL, filling in the default port and transport."""
    raw = raw.split("#", 1)[0]
    scheme_text, rest = _split_scheme(raw)
    rest, _, raw_query = rest.partition("?")
    scheme = new_scheme_type(scheme_text)
    if scheme is SchemeType.UNKNOWN:
        raise URLParseError(ERR_SCHEME_TYPE)
    opaque = "" if rest.startswith("/") else rest

    try:
        host, raw_port = _split_host_port(opaque)
    except URLParseError as exc:
        if str(exc) != ERR_MISSING_PORT:
            raise
        retry = f"{scheme}:{opaque}:{_DEFAULT_PORTS[scheme]}"
        if raw_query:
            retry += "?" + raw_query
        return parse_url(retry)

    if not host:
        raise URLParseError(ERR_HOST)
    if not re.fullmatch(r"[+-]?\d+", raw_port):
        raise URLParseError(ERR_PORT)
    port = int(raw_port)

    if scheme in (SchemeType.STUN, SchemeType.STUNS):
        if _parse_query(raw_query):
            raise URLParseError(ERR_STUN_QUERY)
        proto = ProtoType.UDP if scheme is SchemeType.STUN else ProtoType.TCP
    else:
        proto = _parse_proto(raw_query)
        if proto is ProtoType.UNKNOWN:
            proto = ProtoType.UDP if scheme is SchemeType.TURN else ProtoType.TCP

    return URL(scheme=scheme, host=host, port=port, proto=proto)
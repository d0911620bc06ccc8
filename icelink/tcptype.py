"""ICE TCP candidate types (RFC 6544, section 4.5)."""

from __future__ import annotations

from enum import IntEnum

UNKNOWN_TYPE = "Unknown"


class TCPType(IntEnum):
    """Type of an ICE TCP candidate."""

    UNSPECIFIED = 0
    ACTIVE = 1
    PASSIVE = 2
    SIMULTANEOUS_OPEN = 3

    def __str__(self) -> str:
        return _NAMES.get(self, UNKNOWN_TYPE)


_NAMES = {
    TCPType.UNSPECIFIED: "",
    TCPType.ACTIVE: "active",
    TCPType.PASSIVE: "passive",
    TCPType.SIMULTANEOUS_OPEN: "so",
}

_BY_NAME = {"active": TCPType.ACTIVE, "passive": TCPType.PASSIVE, "so": TCPType.SIMULTANEOUS_OPEN}


def new_tcp_type(value: str) -> TCPType:
    """Return the TCP type named by ``value`` (case-insensitive), or UNSPECIFIED."""
    return _BY_NAME.get(value.lower(), TCPType.UNSPECIFIED)
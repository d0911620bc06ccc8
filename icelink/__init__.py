"""ICE transport building blocks: STUN/TURN URLs, STUN messages and UDP/TCP multiplexing."""

__version__ = "0.1.0"

__all__ = [
    "stun",
    "tcp_mux",
    "tcp_packet_conn",
    "tcptype",
    "udp_mux",
    "udp_mux_universal",
    "udp_muxed_conn",
    "url",
    "util",
]
# icelink

Building blocks for ICE (Interactive Connectivity Establishment) transports:

- `icelink.url` – parsing and formatting STUN/TURN server URLs
- `icelink.tcptype` – the ICE TCP candidate types (`active`, `passive`, `so`)
- `icelink.stun` – a small STUN message codec with the USERNAME,
  XOR-MAPPED-ADDRESS and USE-CANDIDATE attributes
- `icelink.util` – address helpers, a one-shot STUN request, local interface
  discovery and binding a UDP socket inside a port range
- `icelink.udp_mux`, `icelink.udp_muxed_conn` – many logical connections over
  one UDP socket
- `icelink.udp_mux_universal` – the UDP mux plus server-reflexive address
  discovery over the same socket
- `icelink.tcp_mux`, `icelink.tcp_packet_conn` – RFC 4571 framed TCP streams
  grouped into packet connections

Connections are grouped by the ICE username fragment (ufrag): the part before
the first `:` of the USERNAME attribute in the first STUN binding request a
remote peer sends.

## Installation

```
pip install icelink
```

`psutil` is installed with it and is used by `icelink.util.local_interfaces`.

## Parsing server URLs

```python
from icelink.url import parse_url, SchemeType, ProtoType

u = parse_url("turns:turn.example.com")
assert u.scheme is SchemeType.TURNS
assert u.port == 5349
assert u.proto is ProtoType.TCP
assert u.is_secure()
print(u)  # turns:turn.example.com:5349?transport=tcp
```

A missing port defaults to 3478 for `stun`/`turn` and 5349 for
`stuns`/`turns`. `stun` and `stuns` URLs accept no query; `turn` and `turns`
accept only `?transport=udp` or `?transport=tcp` and default to UDP and TCP
respectively. Invalid URLs raise `icelink.url.URLParseError`, whose message
says what was wrong (for example `invalid port` or `unknown scheme type`).

## TCP candidate types

```python
from icelink.tcptype import TCPType, new_tcp_type

assert new_tcp_type("Passive") is TCPType.PASSIVE
assert str(TCPType.SIMULTANEOUS_OPEN) == "so"
assert new_tcp_type("other") is TCPType.UNSPECIFIED
```

## STUN messages

```python
from icelink.stun import (
    XORMappedAddress, build_binding_request, decode_message, use_candidate,
)

request = build_binding_request()
use_candidate().add_to(request)
XORMappedAddress("203.0.113.7", 40000).add_to(request)
raw = request.encode()

decoded = decode_message(raw)
assert use_candidate().is_set(decoded)
assert XORMappedAddress().get_from(decoded).port == 40000
```

`decode_message` raises `icelink.stun.StunError` for malformed input, and
`Message.get` raises it when an attribute is absent. `is_message(data)` checks
only the length and the magic cookie.

## Utilities

`icelink.util` provides:

- `UDPAddr` and `TCPAddr` (`ip`, `port`, `zone`), printed as `host:port` with
  IPv6 hosts in brackets; `create_addr(network, ip, port)` picks one by network
  name and `addr_equal(a, b)` compares transport, IP and port.
- `is_supported_ipv6(ip)` – rejects IPv4-compatible, site-local, link-local and
  link-local multicast IPv6 addresses.
- `stun_request(read, write)` and `get_xor_mapped_addr(sock, server_addr, deadline)`
  – send one binding request and return the decoded reply or the mapped address.
- `local_interfaces(interface_filter, network_types)` – non-loopback addresses of
  interfaces that are up, filtered by name and by IP version (network type names
  ending in `4` or `6`).
- `listen_udp_in_port_range(port_max, port_min, network, laddr)` – binds a UDP
  socket, trying ports of the range from a random start; raises
  `PortRangeError` when none can be bound or the range is empty.

## Multiplexing UDP

```python
import socket
from icelink.udp_mux import UDPMuxDefault

sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
sock.bind(("127.0.0.1", 0))

with UDPMuxDefault(sock) as mux:
    conn = mux.get_conn("myufrag", False)
    # conn.read_from() blocks and returns (data, UDPAddr)
    # conn.write_to(data, addr) sends through the shared socket
sock.close()
```

A background thread reads the socket. Packets from an address a connection has
already written to go to that connection; otherwise a STUN message is routed by
the ufrag in its USERNAME attribute, and anything else is dropped. Closing the
mux closes its connections but leaves the socket open; after that `get_conn`
raises `ClosedPipeError`. Reading a closed connection with nothing queued
raises `EOFError`.

`UniversalUDPMuxDefault(udp_conn, logger, xor_mapped_addr_cache_ttl)` adds:

- `get_xor_mapped_addr(server_addr, deadline)` – sends a binding request to the
  STUN server through the shared socket and waits up to `deadline` seconds for
  the reply; the mapped address is cached for the TTL (25 seconds by default).
  Raises `XORMappedTimeoutError` when no reply arrives in time.
- `get_conn_for_url(ufrag, url, is_ipv6)` – a connection keyed by ufrag and
  server URL together.
- `get_relayed_addr(turn_addr, deadline)` – always raises `OSError`; relayed
  addresses are not offered.

## Multiplexing TCP

```python
import socket
from icelink.tcp_mux import TCPMuxDefault

listener = socket.create_server(("127.0.0.1", 0))
with TCPMuxDefault(listener, None, 20) as mux:
    packet_conn = mux.get_conn_by_ufrag("myufrag", False)
    # packet_conn.read_from() returns (data, TCPAddr)
    # packet_conn.write_to(data, addr) answers on the stream from addr
```

Each accepted stream must start with a framed STUN binding request carrying a
USERNAME attribute; otherwise it is closed. Frames are a 2-byte big-endian
length followed by the payload, as read and written by
`icelink.tcp_packet_conn.read_streaming_packet` and `write_streaming_packet`.
Closing the mux closes the listener and every packet connection.
`InvalidTCPMux` is a stand-in that raises `TCPMuxNotInitializedError`.

## What this package does not do

It has no ICE agent: it does not gather candidates, run connectivity checks,
nominate pairs or keep connections alive, and it has no TURN client. It offers
the URL, message, address and multiplexing pieces such an agent is built from.
There is no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```
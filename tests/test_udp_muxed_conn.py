import pytest

from icelink.util import ClosedPipeError, ShortBufferError, UDPAddr
from icelink.tcp_packet_conn import RECEIVE_MTU
from icelink.udp_muxed_conn import UDPMuxedConn, decode_udp_addr, encode_udp_addr


class FakeMux:
    def __init__(self):
        self.registered = []
        self.written = []
        self.removed = []

    def _register_conn_for_address(self, conn, addr):
        self.registered.append((conn, addr))

    def _write_to(self, data, raddr):
        self.written.append((data, raddr))
        return len(data)

    def _remove_conn(self, conn):
        self.removed.append(conn)


@pytest.mark.parametrize(
    "addr",
    [
        UDPAddr(),
        UDPAddr("244.120.0.5", 6000, ""),
        UDPAddr("::1", 2500, "zone"),
    ],
    ids=["empty address", "ipv4", "ipv6"],
)
def test_address_encoding_round_trip(addr):
    assert decode_udp_addr(encode_udp_addr(addr)) == addr


def test_encoded_layout_is_little_endian():
    encoded = encode_udp_addr(UDPAddr("1.2.3.4", 0x0102))
    assert encoded == b"\x07\x001.2.3.4\x02\x01"


def test_decode_short_buffer():
    with pytest.raises(ShortBufferError):
        decode_udp_addr(b"\x09\x001.2")
    with pytest.raises(ShortBufferError):
        decode_udp_addr(b"\x01")


def test_encode_rejects_invalid_ip():
    with pytest.raises(ValueError):
        encode_udp_addr(UDPAddr("not-an-ip", 1))


def test_write_packet_then_read_from():
    conn = UDPMuxedConn(FakeMux(), "ufrag")
    addr = UDPAddr("10.0.0.7", 4242)
    conn.write_packet(b"hello", addr)
    conn.write_packet(b"world", UDPAddr("::1", 1, "eth0"))
    assert conn.read_from() == (b"hello", addr)
    assert conn.read_from() == (b"world", UDPAddr("::1", 1, "eth0"))


def test_write_packet_too_large():
    conn = UDPMuxedConn(FakeMux(), "ufrag")
    with pytest.raises(ShortBufferError):
        conn.write_packet(b"x" * (RECEIVE_MTU + 1), UDPAddr("1.1.1.1", 1))


def test_write_to_registers_address_once():
    mux = FakeMux()
    conn = UDPMuxedConn(mux, "ufrag")
    raddr = UDPAddr("192.0.2.1", 3478)
    assert conn.write_to(b"abc", raddr) == 3
    assert conn.write_to(b"de", raddr) == 2
    assert mux.registered == [(conn, "192.0.2.1:3478")]
    assert mux.written == [(b"abc", raddr), (b"de", raddr)]


def test_close_drains_then_eof():
    mux = FakeMux()
    conn = UDPMuxedConn(mux, "ufrag")
    conn.write_packet(b"left", UDPAddr("1.2.3.4", 5))
    conn.close()
    conn.close()
    assert mux.removed == [conn]
    assert conn.wait_closed(0) is True
    assert conn.read_from()[0] == b"left"
    with pytest.raises(EOFError):
        conn.read_from()


def test_closed_conn_rejects_writes():
    conn = UDPMuxedConn(FakeMux(), "ufrag")
    assert conn.wait_closed(0) is False
    conn.close()
    with pytest.raises(ClosedPipeError):
        conn.write_to(b"x", UDPAddr("1.2.3.4", 5))
    with pytest.raises(ClosedPipeError):
        conn.write_packet(b"x", UDPAddr("1.2.3.4", 5))
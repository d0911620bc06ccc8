import socket
import time

import pytest

from icelink.stun import (
    ATTR_USERNAME,
    BINDING_REQUEST,
    CLASS_REQUEST,
    Message,
    message_type,
)
from icelink.tcp_mux import InvalidTCPMux, TCPMuxDefault, TCPMuxNotInitializedError
from icelink.tcp_packet_conn import write_streaming_packet
from icelink.util import ClosedPipeError, TCPAddr


@pytest.fixture
def listener():
    sock = socket.create_server(("127.0.0.1", 0))
    yield sock
    sock.close()


@pytest.fixture
def mux(listener):
    tcp_mux = TCPMuxDefault(listener, read_buffer_size=20)
    yield tcp_mux
    tcp_mux.close()


def dial(tcp_mux):
    client = socket.create_connection((tcp_mux.local_addr.ip, tcp_mux.local_addr.port))
    client.settimeout(5)
    return client


def binding_request(username=None, msg_type=BINDING_REQUEST):
    msg = Message(msg_type=msg_type)
    if username is not None:
        msg.add(ATTR_USERNAME, username)
    return msg.encode()


def test_recv(mux):
    with dial(mux) as client:
        raw = binding_request(b"myufrag:otherufrag")
        n = write_streaming_packet(client, raw)
        pkt_conn = mux.get_conn_by_ufrag("myufrag", False)
        try:
            data, raddr = pkt_conn.read_from()
            assert raddr == TCPAddr(*client.getsockname()[:2])
            assert len(data) == n
            assert data == raw
        finally:
            pkt_conn.close()


def test_no_deadlock_when_closing_unused_packet_conn(listener):
    tcp_mux = TCPMuxDefault(listener, read_buffer_size=20)
    tcp_mux.get_conn_by_ufrag("test", False)
    tcp_mux.close()
    with pytest.raises(ClosedPipeError):
        tcp_mux.get_conn_by_ufrag("test", False)


def test_invalid_mux_refuses():
    invalid = InvalidTCPMux()
    with pytest.raises(TCPMuxNotInitializedError):
        invalid.close()
    with pytest.raises(TCPMuxNotInitializedError):
        invalid.get_conn_by_ufrag("ufrag", False)
    assert invalid.remove_conn_by_ufrag("ufrag") is None


def test_local_addr_matches_listener(mux, listener):
    assert mux.local_addr == TCPAddr(*listener.getsockname()[:2])


def test_same_ufrag_returns_same_conn(mux):
    first = mux.get_conn_by_ufrag("u", False)
    assert mux.get_conn_by_ufrag("u", False) is first
    ipv6 = mux.get_conn_by_ufrag("u", True)
    assert ipv6 is not first
    assert first.local_addr == mux.local_addr


def test_remove_conn_by_ufrag_closes(mux):
    first = mux.get_conn_by_ufrag("u", False)
    mux.remove_conn_by_ufrag("u")
    assert first.wait_closed(1.0) is True
    assert mux.get_conn_by_ufrag("u", False) is not first


def test_closed_packet_conn_is_forgotten(mux):
    first = mux.get_conn_by_ufrag("u", False)
    first.close()
    deadline = time.monotonic() + 5
    current = mux.get_conn_by_ufrag("u", False)
    while current is first and time.monotonic() < deadline:
        time.sleep(0.01)
        current = mux.get_conn_by_ufrag("u", False)
    assert current is not first


def test_non_stun_stream_is_closed(mux):
    with dial(mux) as client:
        write_streaming_packet(client, b"definitely not a stun message")
        assert client.recv(16) == b""


def test_binding_without_username_is_closed(mux):
    with dial(mux) as client:
        write_streaming_packet(client, binding_request())
        assert client.recv(16) == b""


def test_non_binding_method_is_closed(mux):
    with dial(mux) as client:
        raw = binding_request(b"u:v", msg_type=message_type(0x003, CLASS_REQUEST))
        write_streaming_packet(client, raw)
        assert client.recv(16) == b""


def test_close_shuts_accepted_streams(listener):
    tcp_mux = TCPMuxDefault(listener, read_buffer_size=20)
    with dial(tcp_mux) as client:
        write_streaming_packet(client, binding_request(b"ufrag:other"))
        pkt_conn = tcp_mux.get_conn_by_ufrag("ufrag", False)
        data, _ = pkt_conn.read_from()
        assert data == binding_request(b"ufrag:other")[:20][:0] + data
        tcp_mux.close()
        assert pkt_conn.wait_closed(0) is True
        assert client.recv(16) == b""
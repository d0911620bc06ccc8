import socket
import threading

import pytest

from icelink.stun import BINDING_SUCCESS, Message, XORMappedAddress, decode_message
from icelink.util import (
    PortRangeError,
    TCPAddr,
    UDPAddr,
    addr_equal,
    create_addr,
    get_xor_mapped_addr,
    is_supported_ipv6,
    listen_udp_in_port_range,
    local_interfaces,
    stun_request,
)


@pytest.mark.parametrize(
    "ip, expected",
    [
        ("::1.1.1.1", False),
        ("fec0::2333", False),
        ("fe80::2333", False),
        ("ff02::2333", False),
        ("2001::1", True),
        ("10.0.0.1", False),
    ],
)
def test_is_supported_ipv6(ip, expected):
    assert is_supported_ipv6(ip) is expected


def test_create_addr():
    assert create_addr("udp4", "127.0.0.1", 9000) == UDPAddr("127.0.0.1", 9000)
    assert create_addr("udp6", "::1", 9000) == UDPAddr("::1", 9000)
    assert create_addr("tcp4", "127.0.0.1", 9000) == TCPAddr("127.0.0.1", 9000)
    assert create_addr("tcp6", "::1", 9000) == TCPAddr("::1", 9000)


def test_addr_equal_and_str():
    assert addr_equal(UDPAddr("::1", 5), UDPAddr("0::1", 5)) is True
    assert addr_equal(UDPAddr("::1", 5), TCPAddr("::1", 5)) is False
    assert addr_equal(UDPAddr("::1", 5), UDPAddr("::1", 6)) is False
    assert addr_equal("x", UDPAddr("::1", 5)) is False
    assert str(UDPAddr("1.2.3.4", 80)) == "1.2.3.4:80"
    assert str(TCPAddr("::1", 80, "eth0")) == "[::1%eth0]:80"


def _success_for(raw, ip, port):
    request = decode_message(raw)
    reply = Message(BINDING_SUCCESS, request.transaction_id)
    XORMappedAddress(ip, port).add_to(reply)
    return reply.encode()


def test_stun_request_with_callables():
    sent = []
    response = stun_request(
        lambda: _success_for(sent[0], "1.2.3.4", 4321),
        sent.append,
    )
    assert response.msg_type == BINDING_SUCCESS
    assert XORMappedAddress().get_from(response) == XORMappedAddress("1.2.3.4", 4321)


def test_get_xor_mapped_addr_over_udp():
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    client.bind(("127.0.0.1", 0))

    def serve():
        data, peer = server.recvfrom(2048)
        server.sendto(_success_for(data, "213.141.156.236", 21254), peer)

    worker = threading.Thread(target=serve)
    worker.start()
    try:
        result = get_xor_mapped_addr(client, UDPAddr("127.0.0.1", server.getsockname()[1]), 2.0)
    finally:
        worker.join()
        server.close()
        client.close()
    assert result == XORMappedAddress("213.141.156.236", 21254)


def test_local_interfaces_filter_excludes_everything():
    assert local_interfaces(lambda name: False, ["udp4", "udp6"]) == []


def test_listen_without_restriction():
    sock = listen_udp_in_port_range(0, 0, "udp4", UDPAddr("127.0.0.1", 0))
    try:
        assert sock.getsockname()[1] > 0
    finally:
        sock.close()


def test_listen_invalid_range():
    with pytest.raises(PortRangeError):
        listen_udp_in_port_range(4999, 5000, "udp4", UDPAddr("127.0.0.1", 0))


def test_listen_single_port_range():
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    sock = listen_udp_in_port_range(port, port, "udp4", UDPAddr("127.0.0.1", 0))
    try:
        assert sock.getsockname()[1] == port
    finally:
        sock.close()
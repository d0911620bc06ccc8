import pytest

from icelink.url import (
    ProtoType,
    SchemeType,
    URL,
    URLParseError,
    new_proto_type,
    new_scheme_type,
    parse_url,
)


@pytest.mark.parametrize(
    "raw, text, scheme, secure, host, port, proto",
    [
        ("stun:google.de", "stun:google.de:3478", SchemeType.STUN, False, "google.de", 3478, ProtoType.UDP),
        ("stun:google.de:1234", "stun:google.de:1234", SchemeType.STUN, False, "google.de", 1234, ProtoType.UDP),
        ("stuns:google.de", "stuns:google.de:5349", SchemeType.STUNS, True, "google.de", 5349, ProtoType.TCP),
        ("stun:[::1]:123", "stun:[::1]:123", SchemeType.STUN, False, "::1", 123, ProtoType.UDP),
        ("turn:google.de", "turn:google.de:3478?transport=udp", SchemeType.TURN, False, "google.de", 3478, ProtoType.UDP),
        ("turns:google.de", "turns:google.de:5349?transport=tcp", SchemeType.TURNS, True, "google.de", 5349, ProtoType.TCP),
        ("turn:google.de?transport=udp", "turn:google.de:3478?transport=udp", SchemeType.TURN, False, "google.de", 3478, ProtoType.UDP),
        ("turns:google.de?transport=tcp", "turns:google.de:5349?transport=tcp", SchemeType.TURNS, True, "google.de", 5349, ProtoType.TCP),
    ],
)
def test_parse_success(raw, text, scheme, secure, host, port, proto):
    url = parse_url(raw)
    assert url.scheme is scheme
    assert str(url) == text
    assert url.is_secure() is secure
    assert url.host == host
    assert url.port == port
    assert url.proto is proto


@pytest.mark.parametrize(
    "raw, message",
    [
        ("", "unknown scheme type"),
        (":::", "missing protocol scheme"),
        ("stun:[::1]:123:", "too many colons in address"),
        ("stun:[::1]:123a", "invalid port"),
        ("google.de", "unknown scheme type"),
        ("stun:", "invalid hostname"),
        ("stun:google.de:abc", "invalid port"),
        ("stun:google.de?transport=udp", "queries not supported in stun address"),
        ("stuns:google.de?transport=udp", "queries not supported in stun address"),
        ("turn:google.de?trans=udp", "invalid query"),
        ("turns:google.de?trans=udp", "invalid query"),
        ("turns:google.de?transport=udp&another=1", "invalid query"),
        ("turn:google.de?transport=ip", "invalid transport protocol type"),
    ],
)
def test_parse_failure(raw, message):
    with pytest.raises(URLParseError) as info:
        parse_url(raw)
    assert str(info.value) == message


def test_type_lookup_and_names():
    assert new_scheme_type("turns") is SchemeType.TURNS
    assert new_scheme_type("http") is SchemeType.UNKNOWN
    assert new_proto_type("tcp") is ProtoType.TCP
    assert new_proto_type("sctp") is ProtoType.UNKNOWN
    assert str(SchemeType.UNKNOWN) == "Unknown"
    assert str(ProtoType.UDP) == "udp"


def test_str_round_trip():
    url = URL(scheme=SchemeType.TURN, host="::1", port=99, proto=ProtoType.TCP)
    assert str(url) == "turn:[::1]:99?transport=tcp"
    assert parse_url(str(url)) == url
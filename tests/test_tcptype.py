import pytest

from icelink.tcptype import TCPType, new_tcp_type


def test_default_is_unspecified():
    assert TCPType(0) is TCPType.UNSPECIFIED


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("active", TCPType.ACTIVE),
        ("passive", TCPType.PASSIVE),
        ("so", TCPType.SIMULTANEOUS_OPEN),
        ("SO", TCPType.SIMULTANEOUS_OPEN),
        ("something else", TCPType.UNSPECIFIED),
    ],
)
def test_new_tcp_type(raw, expected):
    assert new_tcp_type(raw) is expected


@pytest.mark.parametrize(
    "value, text",
    [
        (TCPType.UNSPECIFIED, ""),
        (TCPType.ACTIVE, "active"),
        (TCPType.PASSIVE, "passive"),
        (TCPType.SIMULTANEOUS_OPEN, "so"),
    ],
)
def test_str(value, text):
    assert str(value) == text


def test_invalid_value_rejected():
    with pytest.raises(ValueError):
        TCPType(-1)
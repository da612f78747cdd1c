import pytest

from xfrpc.socks5 import (
    SOCKS5_NO_AUTH_REPLY,
    Socks5Addr,
    Socks5AddrType,
    Socks5Error,
    Socks5Handshake,
    Socks5State,
    is_socks5,
    parse_socks5_addr,
)

IPV4_REQ = b"\x01\x7f\x00\x00\x01\x1f\x90"


def make_handshake(ss5=False):
    log = {"reply": [], "connect": [], "forward": []}
    hs = Socks5Handshake(
        log["reply"].append, log["connect"].append, log["forward"].append, ss5=ss5
    )
    return hs, log


def test_is_socks5():
    assert is_socks5(b"\x05\x01\x00")
    assert is_socks5(b"\x05\x01\x00\x01")
    assert not is_socks5(b"\x05\x01")
    assert not is_socks5(b"\x04\x01\x00")
    assert not is_socks5(b"\x05\x02\x00")


def test_parse_ipv4():
    addr, offset = parse_socks5_addr(IPV4_REQ)
    assert offset == 7
    assert addr.type == Socks5AddrType.IPV4
    assert addr.host == "127.0.0.1"
    assert addr.port == 8080


def test_parse_ipv6():
    raw = bytes(15) + b"\x01"
    addr, offset = parse_socks5_addr(b"\x04" + raw + b"\x00\x50")
    assert offset == 19
    assert addr.host == "::1"
    assert addr.port == 80


def test_parse_domain():
    name = b"example.com"
    addr, offset = parse_socks5_addr(b"\x03" + bytes([len(name)]) + name + b"\x01\xbb")
    assert offset == 2 + len(name) + 2
    assert addr.type == Socks5AddrType.DOMAIN
    assert addr.host == "example.com"
    assert addr.port == 443


@pytest.mark.parametrize(
    "data",
    [b"", b"\x02\x00\x00", b"\x01\x7f\x00\x00", b"\x04" + bytes(10), b"\x03\x05ab\x00\x50"],
)
def test_parse_errors(data):
    with pytest.raises(Socks5Error):
        parse_socks5_addr(data)


def test_full_handshake():
    hs, log = make_handshake()
    assert hs.feed(b"\x05\x01\x00") == 3
    assert log["reply"] == [SOCKS5_NO_AUTH_REPLY]
    assert hs.state == Socks5State.HANDSHAKE
    request = b"\x05\x01\x00" + IPV4_REQ
    assert hs.feed(request) == len(request)
    assert hs.state == Socks5State.CONNECT
    assert log["connect"] == [Socks5Addr(Socks5AddrType.IPV4, b"\x7f\x00\x00\x01", 8080)]
    assert hs.feed(b"payload") == 7
    assert log["forward"] == [b"payload"]


def test_bad_greeting():
    hs, log = make_handshake()
    with pytest.raises(Socks5Error):
        hs.feed(b"\x04\x01\x00")
    assert log["reply"] == []
    assert hs.state == Socks5State.INIT


def test_short_greeting_is_rejected():
    hs, _ = make_handshake()
    with pytest.raises(Socks5Error):
        hs.feed(b"\x05")


def test_trailing_bytes_in_request_rejected():
    hs, log = make_handshake()
    hs.feed(b"\x05\x01\x00")
    with pytest.raises(Socks5Error):
        hs.feed(b"\x05\x01\x00" + IPV4_REQ + b"x")
    assert log["connect"] == []


def test_connect_failure_keeps_state():
    def refuse(addr):
        raise OSError("refused")

    hs = Socks5Handshake(lambda b: None, refuse, lambda b: None)
    hs.feed(b"\x05\x01\x00")
    with pytest.raises(OSError):
        hs.feed(b"\x05\x01\x00" + IPV4_REQ)
    assert hs.state == Socks5State.HANDSHAKE


def test_ss5_mode():
    hs, log = make_handshake(ss5=True)
    assert hs.feed(b"\x01") == 0
    assert hs.feed(IPV4_REQ + b"rest") == 7
    assert hs.state == Socks5State.ESTABLISHED
    assert log["connect"][0].port == 8080
    assert hs.feed(b"more") == 4
    assert log["forward"] == [b"more"]
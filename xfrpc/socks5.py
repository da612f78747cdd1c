"""SOCKS5 request parsing and the per-stream handshake state machine."""

from __future__ import annotations

import enum
import ipaddress
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SOCKS5_VERSION = 0x05
SOCKS5_CMD_CONNECT = 0x01
SOCKS5_NO_AUTH_REPLY = b"\x05\x00\x00"


class Socks5Error(ValueError):
    """Raised when incoming bytes do not follow the SOCKS5 protocol."""


class Socks5State(enum.IntEnum):
    INIT = 0
    HANDSHAKE = 1
    CONNECT = 2
    ESTABLISHED = 3


class Socks5AddrType(enum.IntEnum):
    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04


@dataclass(frozen=True)
class Socks5Addr:
    """A destination address from a SOCKS5 request; ``port`` in host order."""

    type: Socks5AddrType
    addr: bytes
    port: int

    @property
    def host(self) -> str:
        """The address as text: dotted quad, IPv6 notation or domain name."""
        if self.type == Socks5AddrType.IPV4:
            return str(ipaddress.IPv4Address(self.addr))
        if self.type == Socks5AddrType.IPV6:
            return str(ipaddress.IPv6Address(self.addr))
        return self.addr.decode("ascii", errors="replace")


def is_socks5(buf: bytes) -> bool:
    """Return True if ``buf`` starts with a SOCKS5 CONNECT request header."""
    return len(buf) >= 3 and bytes(buf[:3]) == bytes((SOCKS5_VERSION, SOCKS5_CMD_CONNECT, 0x00))


def parse_socks5_addr(data: bytes) -> tuple[Socks5Addr, int]:
    """Parse an address-type byte, address and port from the start of ``data``.

    Returns the address and the number of bytes it took. Raises Socks5Error
    on an unknown address type or when ``data`` is too short.
    """
    data = bytes(data)
    if not data:
        raise Socks5Error("empty socks5 address")
    atyp = data[0]
    if atyp == Socks5AddrType.IPV4:
        if len(data) < 7:
            raise Socks5Error("truncated socks5 ipv4 address")
        return Socks5Addr(Socks5AddrType.IPV4, data[1:5], int.from_bytes(data[5:7], "big")), 7
    if atyp == Socks5AddrType.IPV6:
        if len(data) < 19:
            raise Socks5Error("truncated socks5 ipv6 address")
        return Socks5Addr(Socks5AddrType.IPV6, data[1:17], int.from_bytes(data[17:19], "big")), 19
    if atyp == Socks5AddrType.DOMAIN:
        if len(data) < 2:
            raise Socks5Error("truncated socks5 domain address")
        size = data[1]
        end = 2 + size
        if len(data) < end + 2:
            raise Socks5Error("truncated socks5 domain address")
        return Socks5Addr(Socks5AddrType.DOMAIN, data[2:end], int.from_bytes(data[end:end + 2], "big")), end + 2
    raise Socks5Error(f"unknown socks5 address type: {atyp:#04x}")


class Socks5Handshake:
    """Drive a SOCKS5 exchange carried over one proxied stream.

    ``reply`` sends bytes back to the SOCKS client, ``connect`` opens the
    connection to the requested destination and ``forward`` delivers payload
    once connected. With ``ss5`` set the stream carries the bare address
    form: no greeting, only an address followed by payload.
    """

    def __init__(
        self,
        reply: Callable[[bytes], object],
        connect: Callable[[Socks5Addr], object],
        forward: Callable[[bytes], object],
        ss5: bool = False,
    ) -> None:
        self._reply = reply
        self._connect = connect
        self._forward = forward
        self.ss5 = ss5
        self.state = Socks5State.INIT
        self.remote_addr: Optional[Socks5Addr] = None

    def feed(self, data: bytes) -> int:
        """Process a chunk from the client; return how many bytes were consumed."""
        data = bytes(data)
        if self.ss5:
            return self._feed_ss5(data)
        return self._feed_socks5(data)

    def _feed_ss5(self, data: bytes) -> int:
        if self.state == Socks5State.ESTABLISHED:
            self._forward(data)
            return len(data)
        if self.state == Socks5State.INIT and len(data) >= 7:
            logger.debug("handle client ss5 handshake : SOCKS5_INIT len: %d", len(data))
            addr, offset = parse_socks5_addr(data)
            self.remote_addr = addr
            self._connect(addr)
            self.state = Socks5State.ESTABLISHED
            return offset
        return 0

    def _feed_socks5(self, data: bytes) -> int:
        if self.state == Socks5State.CONNECT:
            self._forward(data)
            return len(data)
        if self.state == Socks5State.INIT and len(data) >= 3:
            logger.debug("handle client socks5 handshake : SOCKS5_INIT len: %d", len(data))
            if not is_socks5(data[:3]):
                raise Socks5Error("socks5 greeting rejected")
            self._reply(SOCKS5_NO_AUTH_REPLY)
            self.state = Socks5State.HANDSHAKE
            return 3
        if self.state == Socks5State.HANDSHAKE and len(data) >= 10:
            logger.debug("handle client socks5 request: SOCKS5_HANDSHAKE len: %d", len(data))
            if not is_socks5(data[:3]):
                raise Socks5Error("socks5 request rejected")
            addr, offset = parse_socks5_addr(data[3:])
            if len(data) != offset + 3:
                raise Socks5Error("unexpected bytes after socks5 request")
            self.remote_addr = addr
            self._connect(addr)
            self.state = Socks5State.CONNECT
            return len(data)
        raise Socks5Error("not socks5 protocol")
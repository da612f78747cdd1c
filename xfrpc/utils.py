"""Small networking helpers: sleeping, address checks and interface lookup."""

from __future__ import annotations

import socket
import time

import psutil

_PREFERRED_ROUTER_IFNAMES = ("br-lan", "br0")
_LOOPBACK_IFNAME = "lo"


def s_sleep(s: int, u: int) -> float:
    """Sleep for ``s`` seconds plus ``u`` microseconds; return the requested seconds."""
    if s < 0 or u < 0:
        raise ValueError("sleep duration must not be negative")
    duration = s + u / 1_000_000
    time.sleep(duration)
    return duration


def is_valid_ip_address(ip_address: str) -> bool:
    """Return True if ``ip_address`` is a dotted-quad IPv4 address."""
    try:
        socket.inet_pton(socket.AF_INET, ip_address)
    except (OSError, TypeError, ValueError):
        return False
    return True


def get_net_mac(net_if_name: str) -> str:
    """Return the hardware address of an interface as 12 upper-case hex digits.

    Raises ValueError for an empty name and OSError when the interface or its
    hardware address cannot be found.
    """
    if not net_if_name:
        raise ValueError("network interface name is required")
    addrs = psutil.net_if_addrs().get(net_if_name)
    if addrs is None:
        raise OSError(f"no such network interface: {net_if_name}")
    for addr in addrs:
        if addr.family == psutil.AF_LINK and addr.address:
            digits = "".join(ch for ch in addr.address if ch not in ":-.")
            if len(digits) >= 12:
                return digits[:12].upper()
    raise OSError(f"no hardware address for interface: {net_if_name}")


def _family_label(family: int) -> str:
    if family == psutil.AF_LINK:
        return "AF_PACKET"
    if family == socket.AF_INET:
        return "AF_INET"
    if family == socket.AF_INET6:
        return "AF_INET6"
    return "???"


def show_net_ifname() -> None:
    """Print every interface address with its family, address or traffic counters."""
    counters = psutil.net_io_counters(pernic=True)
    mask = 0xFFFFFFFF
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            family = int(addr.family)
            print(f"{name:<8} {_family_label(addr.family)} ({family})")
            if addr.family in (socket.AF_INET, socket.AF_INET6):
                print(f"\t\taddress: <{addr.address}>")
            elif addr.family == psutil.AF_LINK and name in counters:
                stats = counters[name]
                print(
                    f"\t\ttx_packets = {stats.packets_sent & mask:10d}; "
                    f"rx_packets = {stats.packets_recv & mask:10d}\n"
                    f"\t\ttx_bytes   = {stats.bytes_sent & mask:10d}; "
                    f"rx_bytes   = {stats.bytes_recv & mask:10d}"
                )


def get_net_ifname() -> str:
    """Pick the interface that identifies this host.

    A router bridge (``br-lan`` or ``br0``) carrying an IPv4 address wins;
    otherwise the last non-loopback link-layer interface is used.
    Raises LookupError when none qualifies.
    """
    fallback = ""
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family == socket.AF_INET:
                if name in _PREFERRED_ROUTER_IFNAMES:
                    return name
            elif addr.family == psutil.AF_LINK and name != _LOOPBACK_IFNAME:
                fallback = name
    if not fallback:
        raise LookupError("no suitable network interface found")
    return fallback


def dns_unified(dname: str) -> str:
    """Lower-case the host part of ``dname`` (up to the first '/').

    The host part must contain a dot that is not the final character of
    the whole name; otherwise ValueError is raised.
    """
    if not dname:
        raise ValueError("domain name is required")
    host, sep, rest = dname.partition("/")
    last = len(dname) - 1
    has_dot = any(ch == "." and i != last for i, ch in enumerate(host))
    if not has_dot:
        raise ValueError(f"invalid domain name: {dname!r}")
    return host.lower() + sep + rest
"""Base64 coding of UDP datagrams carried inside proxy messages."""

from __future__ import annotations

BASE64_TABLE = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_INDEX = {ch: i for i, ch in enumerate(BASE64_TABLE)}


def base64_encode(data: bytes) -> str:
    """Encode ``data`` as padded standard base64."""
    out = []
    acc = 0
    bits = 0
    for byte in bytes(data):
        acc = ((acc << 8) | byte) & 0xFFFFFFFF
        bits += 8
        while bits >= 6:
            bits -= 6
            out.append(BASE64_TABLE[(acc >> bits) & 0x3F])
    if bits:
        out.append(BASE64_TABLE[(acc << (6 - bits)) & 0x3F])
        bits -= 6
    while bits < 0:
        out.append("=")
        bits += 2
    return "".join(out)


def base64_decode(text: str) -> bytes:
    """Decode base64 ``text``.

    Raises ValueError on a character outside the alphabet or when the
    final symbol carries non-zero unused bits.
    """
    out = bytearray()
    acc = 0
    bits = 0
    for ch in text:
        if ch == "=":
            acc = (acc << 6) & 0xFFFFFFFF
            bits += 6
            if bits >= 8:
                bits -= 8
            continue
        value = _INDEX.get(ch)
        if value is None:
            raise ValueError(f"invalid base64 character: {ch!r}")
        acc = ((acc << 6) | value) & 0xFFFFFFFF
        bits += 6
        if bits >= 8:
            bits -= 8
            out.append((acc >> bits) & 0xFF)
    if acc & ((1 << bits) - 1):
        raise ValueError("invalid base64 trailing bits")
    return bytes(out)
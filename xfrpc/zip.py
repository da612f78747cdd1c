"""zlib/gzip compression helpers."""

from __future__ import annotations

import zlib

CHUNK = 16384
WINDOW_BITS = 15
GZIP_ENCODING = 16


def deflate_write(source: bytes, gzip: bool = False) -> bytes:
    """Compress ``source`` whole; gzip framing if ``gzip``, zlib framing otherwise."""
    wbits = WINDOW_BITS | GZIP_ENCODING if gzip else zlib.MAX_WBITS
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, wbits)
    return compressor.compress(bytes(source)) + compressor.flush(zlib.Z_FINISH)


def inflate_read(source: bytes, gzip: bool = False) -> bytes:
    """Decompress ``source``.

    With ``gzip`` set the input is read as a raw deflate stream, otherwise as
    a zlib stream. Raises zlib.error on corrupt or incomplete input.
    """
    wbits = -zlib.MAX_WBITS if gzip else zlib.MAX_WBITS
    decompressor = zlib.decompressobj(wbits)
    chunks = []
    data = bytes(source)
    while data:
        chunks.append(decompressor.decompress(data, CHUNK))
        data = decompressor.unconsumed_tail
    chunks.append(decompressor.flush())
    if not decompressor.eof:
        raise zlib.error("incomplete compressed stream")
    return b"".join(chunks)
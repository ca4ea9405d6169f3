"""
Codec — compress and uncompress cache values with Snappy.

Used only by CacheService: every value is compressed before it crosses the
store boundary and uncompressed on the way back. The codec is stateless and
works on raw Snappy blocks (no framing), so values written by other Snappy
clients with the same raw format remain readable.

    compress(b"hello")              -> b'\\x05\\x10hello'
    uncompress(compress(b"hello"))  -> b"hello"

Text is accepted on the compress side and encoded as UTF-8; decoding back to
text is the caller's business.
"""
from __future__ import annotations

import snappy

from queuecache.domain.errors import CompressionError


def compress(data: bytes | str) -> bytes:
    """Return the Snappy-compressed form of `data`."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return snappy.compress(data)
    except Exception as exc:
        raise CompressionError("Snappy compression failed", exc) from exc


def uncompress(data: bytes) -> bytes:
    """Inverse of compress(). Raises CompressionError on corrupt input."""
    try:
        return snappy.uncompress(data)
    except Exception as exc:
        raise CompressionError("Snappy decompression failed", exc) from exc

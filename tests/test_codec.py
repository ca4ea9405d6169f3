import pytest

from queuecache.core import codec
from queuecache.domain.errors import CompressionError


def test_compress_produces_bytes():
    result = codec.compress(b"hello world")
    assert isinstance(result, bytes)
    assert len(result) > 0


def test_compress_decompress_roundtrip():
    data = b"binary\x00\xff\xfe" * 10
    assert codec.uncompress(codec.compress(data)) == data


def test_roundtrip_empty_bytes():
    assert codec.uncompress(codec.compress(b"")) == b""


def test_compress_accepts_text_as_utf8():
    text = "héllo wörld"
    assert codec.uncompress(codec.compress(text)) == text.encode("utf-8")


def test_compress_text_matches_compress_bytes():
    assert codec.compress("same") == codec.compress(b"same")


def test_compress_shrinks_repetitive_data():
    data = b'{"status": "ok"}' * 500
    assert len(codec.compress(data)) < len(data)


def test_compressed_form_is_raw_snappy_block():
    # Raw Snappy: varint length (5), then a literal tag for 5 bytes.
    assert codec.compress(b"hello") == b"\x05\x10hello"


def test_uncompress_corrupt_input_raises_compression_error():
    with pytest.raises(CompressionError) as exc_info:
        codec.uncompress(b"\xff\xff\xff\xff\xff not snappy")
    assert exc_info.value.cause is not None


def test_compress_rejects_non_bytes():
    with pytest.raises(CompressionError):
        codec.compress(12345)  # type: ignore[arg-type]

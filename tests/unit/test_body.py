"""
Unit tests for request body reading.
"""

import gzip

import pytest

from echoserver.body import BodyReadError, BodyTooLarge, read_body
from echoserver.core.connection import BodyStreamError


def broken_stream():
    yield b"partial"
    raise BodyStreamError("Client closed connection before body was complete")


class TestReadBody:

    def test_empty(self):
        assert read_body(iter([])) == ""

    def test_joins_chunks(self):
        assert read_body(iter([b"hello", b" ", b"world"])) == "hello world"

    def test_invalid_utf8_replaced(self):
        assert read_body(iter([b"caf\xe9"])) == "caf�"

    def test_limit_exceeded(self):
        with pytest.raises(BodyTooLarge) as exc_info:
            read_body(iter([b"a" * 6, b"b" * 6]), max_size=10)

        assert exc_info.value.status_code == 413
        assert str(exc_info.value) == "Body exceeds max size of 10 bytes"

    def test_limit_drains_stream(self):
        """The whole stream is consumed even after the limit is hit."""
        consumed = []

        def stream():
            for chunk in (b"a" * 8, b"b" * 8, b"c" * 8):
                consumed.append(chunk)
                yield chunk

        with pytest.raises(BodyTooLarge):
            read_body(stream(), max_size=10)

        assert len(consumed) == 3

    def test_exactly_at_limit(self):
        assert read_body(iter([b"a" * 10]), max_size=10) == "a" * 10

    def test_zero_means_unlimited(self):
        assert len(read_body(iter([b"a" * 5_000_000]), max_size=0)) == 5_000_000

    def test_broken_stream(self):
        with pytest.raises(BodyReadError) as exc_info:
            read_body(broken_stream())

        assert exc_info.value.status_code == 400


class TestGzipBody:

    def test_decompresses(self):
        data = gzip.compress(b'{"hello": "world"}')
        chunks = [data[:5], data[5:]]

        assert read_body(iter(chunks), gzip=True) == '{"hello": "world"}'

    def test_limit_applies_to_decompressed_size(self):
        """A small compressed body can still inflate past the limit."""
        data = gzip.compress(b"a" * 100_000)
        assert len(data) < 1000

        with pytest.raises(BodyTooLarge):
            read_body(iter([data]), gzip=True, max_size=1000)

    def test_invalid_gzip(self):
        with pytest.raises(BodyReadError):
            read_body(iter([b"definitely not gzip"]), gzip=True)

    def test_truncated_gzip(self):
        data = gzip.compress(b"hello world" * 100)

        with pytest.raises(BodyReadError):
            read_body(iter([data[: len(data) // 2]]), gzip=True)

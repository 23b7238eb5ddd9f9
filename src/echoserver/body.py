"""
=============================================================================
REQUEST BODY READER
=============================================================================

Turns the raw body stream of a request into the string that is echoed back.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   connection body stream   (framing already removed)                │
    │          │                                                           │
    │          ▼                                                           │
    │   gzip?  ──yes──► zlib.decompressobj(16 + MAX_WBITS)                 │
    │          │                                                           │
    │          ▼                                                           │
    │   count bytes ──► over MAX_BODY_SIZE?                                │
    │          │             └─ stop keeping bytes, keep READING          │
    │          ▼                                                           │
    │   end of stream ──► BodyTooLarge  or  bytes.decode("utf-8")         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHY KEEP READING AFTER THE LIMIT?
=============================================================================

If the server stopped reading at the limit and answered 413 right away,
the client would still be writing the rest of its upload. Closing on it
makes the kernel send a RST, and many clients then report "connection
reset" instead of showing the 413. Draining to the end lets the client
finish, read the error and even reuse the connection.

The limit counts DECOMPRESSED bytes, so a small gzip bomb cannot expand
past it in memory.

=============================================================================
"""

import logging
import zlib
from typing import Iterable, List

from .core.connection import BodyStreamError


logger = logging.getLogger(__name__)


class BodyError(Exception):
    """Base class for request body failures."""

    status_code = 400


class BodyTooLarge(BodyError):
    """The (decompressed) body is larger than MAX_BODY_SIZE."""

    status_code = 413

    def __init__(self, limit: int):
        super().__init__(f"Body exceeds max size of {limit} bytes")
        self.limit = limit


class BodyReadError(BodyError):
    """The body stream broke: disconnect, timeout, bad framing or bad gzip."""

    status_code = 400


def read_body(stream: Iterable[bytes], gzip: bool = False, max_size: int = 0) -> str:
    """
    Read a whole request body.

    Args:
        stream: Raw body chunks.
        gzip: Inflate the chunks as a gzip stream first.
        max_size: Maximum decompressed size in bytes. 0 disables the limit.

    Returns:
        The body decoded as UTF-8. Invalid sequences become U+FFFD.

    Raises:
        BodyTooLarge: After the stream was drained, if it exceeded max_size.
        BodyReadError: If the stream or the gzip data is broken.
    """
    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS) if gzip else None
    chunks: List[bytes] = []
    size = 0
    exceeded = False

    def keep(data: bytes):
        nonlocal size, exceeded
        if not data:
            return
        size += len(data)
        if not exceeded and max_size > 0 and size > max_size:
            exceeded = True
            chunks.clear()
        if not exceeded:
            chunks.append(data)

    try:
        for chunk in stream:
            if decompressor is None:
                keep(chunk)
            elif not exceeded:
                keep(decompressor.decompress(chunk))
            # once exceeded, compressed input is only drained, not inflated

        if decompressor is not None and not exceeded:
            keep(decompressor.flush())
            if not decompressor.eof:
                raise BodyReadError("Truncated gzip body")

    except BodyStreamError as e:
        raise BodyReadError(str(e)) from e
    except zlib.error as e:
        raise BodyReadError(f"Invalid gzip body: {e}") from e

    if exceeded:
        logger.debug(f"Request body of at least {size} bytes rejected (limit {max_size})")
        raise BodyTooLarge(max_size)

    return b"".join(chunks).decode("utf-8", errors="replace")

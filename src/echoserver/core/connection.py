"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module handles individual client connections, wrapping the raw socket
with a higher-level API suitable for HTTP request/response handling.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

TCP does NOT preserve message boundaries. A request sent as one write may
arrive as several recv() results, and two pipelined requests may arrive
in one:

    recv() → "GET /api/use"
    recv() → "rs HTTP/1.1\r\nHost: a\r\n\r\nGET /next HTTP/1.1\r\n..."

So every read goes through one buffer (_buffer), and the protocol
delimiters decide where a message ends:

    head     ends at the first \r\n\r\n
    body     ends after Content-Length bytes, or at the 0-size chunk

=============================================================================
HEAD AND BODY ARE READ SEPARATELY
=============================================================================

An echo server must be able to reject a body that is too large, but
still answer the client politely. Buffering the whole request up front
would mean holding every oversized upload in memory first. Instead:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   read_head()    → bytes up to \r\n\r\n      (bounded by 431 limit) │
    │        │                                                             │
    │        ▼                                                             │
    │   body_stream()  → BodyStream, an iterator over body chunks          │
    │        │           • Content-Length or chunked framing removed      │
    │        │           • "100 Continue" sent on first read if asked     │
    │        ▼                                                             │
    │   handler reads as much as it wants (body.read_body counts bytes)   │
    │        │                                                             │
    │        ▼                                                             │
    │   drain()        → discard what the handler left unread, so the     │
    │                    next keep-alive request starts at the right byte │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONNECTION VARIANTS
=============================================================================

    Connection        plain TCP, tls is None
    TlsConnection     TLS over TCP. The handshake runs on the worker
                      thread (never the accept thread) and records a
                      TlsSession with SNI name and peer certificate.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► HANDSHAKE ──► READING ──► PROCESSING ──► WRITING
     │      (TLS only)       ▲                          │
     │                       └──────── KEEP_ALIVE ◄─────┘
     │                                     │
     └──────────────► CLOSING ◄────────────┘ ──► CLOSED

=============================================================================
"""

import socket
import time
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Callable, Iterator, Tuple
import uuid

from OpenSSL import SSL

from ..http.request import HTTPParseError, HTTPRequest, TlsSession
from .tls import TlsSocket, describe_certificate


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"                # Accepted, nothing read yet
    HANDSHAKE = "handshake"    # TLS handshake in progress
    READING = "reading"        # Reading a request head
    PROCESSING = "processing"  # Handler is executing
    WRITING = "writing"        # Sending response data
    KEEP_ALIVE = "keep_alive"  # Waiting for the next request
    CLOSING = "closing"
    CLOSED = "closed"


class BodyStreamError(Exception):
    """
    The request body could not be read to its declared end.

    Raised for client disconnects, read timeouts and broken chunked
    framing. Once raised, the connection cannot be reused.
    """


@dataclass
class Connection:
    """
    A plain (non-TLS) client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. BUFFERED READING                                                 │
    │     └── Heads and bodies share one buffer across keep-alive         │
    │                                                                      │
    │  2. TIMEOUT MANAGEMENT                                               │
    │     └── First request: config.timeout                               │
    │     └── Keep-alive: config.keep_alive_timeout                       │
    │                                                                      │
    │  3. SHUTDOWN COOPERATION                                             │
    │     └── interrupt_if_idle() wakes a worker blocked on an idle       │
    │         keep-alive socket so draining does not wait for it          │
    │                                                                      │
    │  4. GRACEFUL CLOSE                                                   │
    │     └── FIN, drain, close. on_close notifies the owning listener   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    socket: socket.socket
    address: Tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_header_size: int = 16 * 1024

    on_close: Optional[Callable[["Connection"], None]] = field(default=None, repr=False)

    # Set when the owning listener is draining
    closing: bool = field(default=False, repr=False)

    # Blocked in recv() with nothing buffered: between requests
    _awaiting_head: bool = field(default=False, repr=False)

    _buffer: bytes = field(default=b"", repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def tls(self) -> Optional[TlsSession]:
        """TLS facts for this connection. Plain connections have none."""
        return None

    def handshake(self) -> bool:
        """Nothing to negotiate on a plain connection."""
        return True

    # =========================================================================
    # READING THE HEAD
    # =========================================================================

    def read_head(self) -> Optional[bytes]:
        """
        Read one request head (request line + headers).

        ┌─────────────────────────────────────────────────────────────────┐
        │   while no \\r\\n\\r\\n in buffer:                                  │
        │       buffer too big?  → HTTPParseError(431)                    │
        │       recv() → buffer                                           │
        │                                                                  │
        │   head = buffer[:end]       ← returned                          │
        │   buffer = buffer[end+4:]   ← start of body / next request      │
        └─────────────────────────────────────────────────────────────────┘

        Returns:
            Head bytes without the terminating blank line, or None when
            the client closed the connection (or went idle on keep-alive).

        Raises:
            TimeoutError: If the FIRST request does not arrive in time.
            HTTPParseError: 431 if the head exceeds max_header_size.
        """
        with self._lock:
            self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                if len(self._buffer) > self.max_header_size:
                    raise HTTPParseError(
                        f"Request header exceeds {self.max_header_size} bytes",
                        status_code=431,
                    )

                chunk = self._recv()
                if not chunk:
                    if self._buffer.strip():
                        logger.debug(f"[{self.id}] Client closed mid-head")
                    return None

                self._buffer += chunk

            header_end = self._buffer.find(b"\r\n\r\n")
            if header_end > self.max_header_size:
                raise HTTPParseError(
                    f"Request header exceeds {self.max_header_size} bytes",
                    status_code=431,
                )

            head = self._buffer[:header_end]
            self._buffer = self._buffer[header_end + 4:]

            self.requests_handled += 1
            return head

        except socket.timeout:
            # An idle keep-alive connection timing out is normal.
            # A fresh connection that never sends a full head is not.
            if self.requests_handled > 0 or not self._buffer:
                logger.debug(f"[{self.id}] Idle timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if self.state != ConnectionState.CLOSED:
                try:
                    self.socket.settimeout(self.timeout)
                except OSError:
                    pass

    def _recv(self) -> bytes:
        """
        Receive data for a head read.

        Returns:
            Received bytes, or b"" if the peer is gone or the listener
            is draining and no request has started.
        """
        with self._lock:
            if self.closing and not self._buffer:
                return b""
            self._awaiting_head = not self._buffer

        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except socket.timeout:
            raise
        except OSError:
            # Reset, broken pipe, TLS alert, or our own interrupt_if_idle()
            return b""
        finally:
            with self._lock:
                self._awaiting_head = False

    # =========================================================================
    # READING THE BODY
    # =========================================================================

    def body_stream(self, request: HTTPRequest) -> "BodyStream":
        """Create the body iterator for a freshly parsed request."""
        return BodyStream(
            self,
            content_length=0 if request.is_chunked else request.content_length,
            chunked=request.is_chunked,
            expect_continue=request.expects_continue,
        )

    def _fill(self) -> None:
        """Read more body bytes into the buffer, or fail."""
        try:
            data = self.socket.recv(self.buffer_size)
        except socket.timeout as e:
            raise BodyStreamError("Timed out reading request body") from e
        except OSError as e:
            raise BodyStreamError(f"Connection lost while reading body: {e}") from e

        if not data:
            raise BodyStreamError("Client closed connection before body was complete")

        self.last_activity = time.time()
        self._buffer += data

    def _read_some(self, limit: int) -> bytes:
        """Return up to `limit` buffered bytes, reading if the buffer is empty."""
        if not self._buffer:
            self._fill()
        data = self._buffer[:limit]
        self._buffer = self._buffer[limit:]
        return data

    def _read_line(self, limit: int = 8192) -> bytes:
        """Return one CRLF-terminated line without the CRLF."""
        while b"\r\n" not in self._buffer:
            if len(self._buffer) > limit:
                raise BodyStreamError("Chunk header line too long")
            self._fill()
        line, _, self._buffer = self._buffer.partition(b"\r\n")
        return line

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send response bytes with sendall().

        Returns:
            True if sent, False if the client is gone.
        """
        with self._lock:
            self.state = ConnectionState.WRITING
        self.last_activity = time.time()

        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    def set_processing(self):
        with self._lock:
            self.state = ConnectionState.PROCESSING

    def set_keep_alive(self):
        """Mark connection as waiting for the next request."""
        with self._lock:
            self.state = ConnectionState.KEEP_ALIVE

    # =========================================================================
    # SHUTDOWN COOPERATION
    # =========================================================================

    def interrupt_if_idle(self) -> bool:
        """
        Mark the connection as closing and wake it if it is idle.

        A worker blocked in recv() on an idle keep-alive socket would
        otherwise hold the drain open until keep_alive_timeout expires.
        shutdown(SHUT_RDWR) makes that recv() return immediately.

        Busy connections are left alone: they finish their current
        request and then close because `closing` is set.

        Returns:
            True if the connection was idle and has been interrupted.
        """
        with self._lock:
            self.closing = True
            idle = self._awaiting_head or (
                self.state in (ConnectionState.NEW, ConnectionState.KEEP_ALIVE)
                and not self._buffer
            )
            if idle:
                try:
                    self.socket.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
        return idle

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR): send FIN, we are done sending
        2. Drain briefly: read what the client still sends
        3. close(): release the file descriptor
        4. on_close: tell the listener this connection is finished
        """
        with self._lock:
            if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                return
            self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        with self._lock:
            self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

        if self.on_close is not None:
            self.on_close(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


@dataclass
class TlsConnection(Connection):
    """
    A TLS client connection.

    The accept thread hands over the raw TCP socket unwrapped.
    handshake() runs on the worker, so one slow or malicious
    client cannot stall accept() for everybody else.
    """

    context: Optional[SSL.Context] = field(default=None, repr=False)
    _session: Optional[TlsSession] = field(default=None, repr=False)

    @property
    def tls(self) -> Optional[TlsSession]:
        return self._session

    def handshake(self) -> bool:
        """
        Perform the server side of the TLS handshake.

        Returns:
            True on success. False if the client failed the handshake
            (plain HTTP on the TLS port, protocol mismatch, disconnect),
            in which case the connection should simply be closed.
        """
        with self._lock:
            if self.closing:
                return False
            self.state = ConnectionState.HANDSHAKE

        tls_socket = TlsSocket(self.context, self.socket)
        self.socket = tls_socket
        try:
            tls_socket.do_handshake()
        except OSError as e:
            logger.debug(f"[{self.id}] TLS handshake failed: {e}")
            return False

        self._session = TlsSession(
            server_name=tls_socket.server_name,
            peer_certificate=describe_certificate(tls_socket.peer_certificate()),
            version=tls_socket.version,
            cipher=tls_socket.cipher,
        )
        with self._lock:
            self.state = ConnectionState.NEW
        return True


class BodyStream:
    """
    Iterator over the raw chunks of one request body.

    Transfer framing is removed here, so consumers see only payload bytes:

        Content-Length: 11          chunked
        hello world                 5\\r\\nhello\\r\\n6\\r\\n world\\r\\n0\\r\\n\\r\\n
              │                                  │
              └──────────► b"hello", b" world" ◄─┘

    Iterating twice continues where the first iteration stopped; the
    bytes are never replayed.

    Raises:
        BodyStreamError: While iterating, if the body cannot be completed.
    """

    CONTINUE = b"HTTP/1.1 100 Continue\r\n\r\n"

    def __init__(
        self,
        conn: Connection,
        content_length: int = 0,
        chunked: bool = False,
        expect_continue: bool = False,
    ):
        self._conn = conn
        self._remaining = content_length
        self._chunked = chunked
        self._expect_continue = expect_continue and (chunked or content_length > 0)
        self.started = False
        self.finished = not chunked and content_length == 0
        self.failed = False
        self._chunks = self._generate()

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        return next(self._chunks)

    @property
    def awaiting_continue(self) -> bool:
        """Client is still waiting for "100 Continue" and has sent no body."""
        return self._expect_continue and not self.started

    def _generate(self) -> Iterator[bytes]:
        if self.finished:
            return

        self.started = True
        if self._expect_continue:
            if not self._conn.send_response(self.CONTINUE):
                self.failed = True
                raise BodyStreamError("Could not send 100 Continue")

        try:
            if self._chunked:
                yield from self._read_chunked()
            else:
                yield from self._read_fixed()
        except BodyStreamError:
            self.failed = True
            raise

        self.finished = True

    def _read_fixed(self) -> Iterator[bytes]:
        size = self._conn.buffer_size
        while self._remaining > 0:
            data = self._conn._read_some(min(self._remaining, size))
            self._remaining -= len(data)
            yield data

    def _read_chunked(self) -> Iterator[bytes]:
        size = self._conn.buffer_size
        while True:
            line = self._conn._read_line()
            try:
                chunk_size = int(line.split(b";", 1)[0].strip(), 16)
            except ValueError:
                raise BodyStreamError(f"Invalid chunk size line: {line[:40]!r}")

            if chunk_size == 0:
                # Skip trailers up to the final blank line
                while self._conn._read_line():
                    pass
                return

            remaining = chunk_size
            while remaining > 0:
                data = self._conn._read_some(min(remaining, size))
                remaining -= len(data)
                yield data

            if self._conn._read_line() != b"":
                raise BodyStreamError("Missing CRLF after chunk data")

    def drain(self) -> bool:
        """
        Consume and discard whatever body is left.

        Returns:
            True if the stream reached its end, so the connection can
            serve another request. False if it broke or was never sent.
        """
        if self.finished:
            return True
        if self.failed or self.awaiting_continue:
            return False
        try:
            for _ in self:
                pass
        except BodyStreamError as e:
            logger.debug(f"[{self._conn.id}] Drain failed: {e}")
            return False
        return self.finished

"""
=============================================================================
TCP LISTENER
=============================================================================

One SocketServer owns one listening socket. The echo server runs two of
them side by side, sharing a single worker pool:

    ┌──────────────────────┐        ┌──────────────────────┐
    │  SocketServer "http" │        │ SocketServer "https" │
    │  0.0.0.0:8080        │        │ 0.0.0.0:8443 (TLS)   │
    │  accept thread       │        │ accept thread        │
    └──────────┬───────────┘        └───────────┬──────────┘
               │    Connection / TlsConnection  │
               └──────────────┬─────────────────┘
                              ▼
                    ┌──────────────────┐
                    │   WorkerPool     │
                    └──────────────────┘

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create a socket file descriptor
    2. bind()      Associate the socket with an IP:PORT
    3. listen()    OS starts queueing incoming connections (backlog)
    4. accept()    Returns a NEW socket per client, original keeps listening
    5. close()     Stop listening. Accepted sockets are NOT affected.

=============================================================================
DRAINING
=============================================================================

close(timeout) is the listener half of a graceful shutdown:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  1. Stop accepting            listening socket closed               │
    │  2. Interrupt idle clients    keep-alive sockets nobody is using    │
    │  3. Wait                      in-flight requests finish and their   │
    │                               connections close (on_close)          │
    │  4. Give up after timeout     returns False, caller logs it         │
    └─────────────────────────────────────────────────────────────────────┘

Signals are handled one level up, in EchoServer, because a signal must
drain BOTH listeners in a fixed order.

=============================================================================
"""

import socket
import time
import logging
import threading
from typing import Optional, Callable, Dict, Tuple

from OpenSSL import SSL

from ..config import ServerConfig
from .connection import Connection, TlsConnection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    TCP listener with its own accept thread.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(handler)    Bind + listen (errors propagate), then spawn   │
    │        │             the accept thread and return                   │
    │        │                                                             │
    │        └──► _accept_loop()                                           │
    │                 └──► while running:                                  │
    │                         accept()      1s timeout to poll running    │
    │                         Connection()  TlsConnection() on HTTPS      │
    │                         track         _connections map              │
    │                         handler(conn) hand off to the worker pool   │
    │                                                                      │
    │    close(timeout)    Stop accepting and drain tracked connections   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        listener = SocketServer("http", "0.0.0.0", 8080, config)
        listener.start(pool_submit)
        ...
        listener.close(timeout=30)
    """

    def __init__(
        self,
        name: str,
        host: str,
        port: int,
        config: ServerConfig,
        ssl_context: Optional[SSL.Context] = None,
    ):
        """
        Args:
            name: Label used in log lines ("http" or "https").
            host: Bind address.
            port: Bind port. 0 picks a free port (see `address`).
            config: Timeouts and buffer sizes for accepted connections.
            ssl_context: Makes this a TLS listener.
        """
        self.name = name
        self.host = host
        self.port = port
        self.config = config
        self.ssl_context = ssl_context

        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._connections: Dict[str, Connection] = {}
        self._connections_changed = threading.Condition()

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port). Reflects the real port after binding to 0."""
        if self._socket is not None:
            sockname = self._socket.getsockname()
            return (sockname[0], sockname[1])
        return (self.host, self.port)

    def _create_socket(self) -> socket.socket:
        """Create the listening socket with server-friendly options."""
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        # SO_REUSEADDR: rebind right away after a restart (TIME_WAIT)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # TCP_NODELAY: no Nagle buffering, responses go out immediately
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up every second to check the running flag
        sock.settimeout(1.0)
        return sock

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and start the accept thread.

        Does NOT block. Bind failures (port in use, permission denied)
        are raised to the caller, which treats them as fatal.
        """
        sock = self._create_socket()
        try:
            sock.bind((self.host, self.port))
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind {self.name} listener to {self.host}:{self.port}: {e}")
            raise

        self._socket = sock
        self._running = True

        self._thread = threading.Thread(
            target=self._accept_loop,
            args=(connection_handler,),
            name=f"{self.name}-accept",
            daemon=True,
        )
        self._thread.start()

        host, port = self.address
        logger.info(f"{self.name.upper()} listener on {host}:{port}")

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        """Accept connections until close() flips the running flag."""
        listening = self._socket
        while self._running:
            try:
                client_socket, client_address = listening.accept()
            except socket.timeout:
                continue
            except OSError as e:
                # Closing the listening socket lands here during shutdown
                if self._running:
                    logger.error(f"[{self.name}] Accept error: {e}")
                break

            logger.debug(f"[{self.name}] Accepted {client_address[0]}:{client_address[1]}")

            conn = self._wrap(client_socket, client_address)
            with self._connections_changed:
                self._connections[conn.id] = conn

            try:
                connection_handler(conn)
            except Exception as e:
                logger.error(f"[{self.name}] Could not dispatch connection: {e}")
                conn.close()

    def _wrap(self, client_socket: socket.socket, client_address) -> Connection:
        options = dict(
            socket=client_socket,
            address=(client_address[0], client_address[1]),
            buffer_size=self.config.buffer_size,
            timeout=self.config.timeout,
            keep_alive_timeout=self.config.keep_alive_timeout,
            max_header_size=self.config.max_header_size,
            on_close=self._forget,
        )
        if self.ssl_context is not None:
            return TlsConnection(context=self.ssl_context, **options)
        return Connection(**options)

    def _forget(self, conn: Connection):
        with self._connections_changed:
            self._connections.pop(conn.id, None)
            self._connections_changed.notify_all()

    def close(self, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting, then wait for open connections to finish.

        Args:
            timeout: Seconds to wait for in-flight requests. None = forever.

        Returns:
            True if every connection closed in time.
        """
        if self._socket is None:
            return True

        logger.info(f"Closing {self.name} listener...")
        self._running = False

        # Requests finishing from here on must answer "Connection: close"
        with self._connections_changed:
            for conn in list(self._connections.values()):
                conn.interrupt_if_idle()

        try:
            self._socket.close()
        except OSError:
            pass
        if self._thread is not None:
            self._thread.join(timeout=2.0)

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._connections_changed:
            for conn in list(self._connections.values()):
                conn.interrupt_if_idle()

            while self._connections:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    break
                # Re-check idleness: busy connections become idle between requests
                self._connections_changed.wait(0.1 if remaining is None else min(0.1, remaining))
                for conn in list(self._connections.values()):
                    conn.interrupt_if_idle()

            drained = not self._connections
            left = len(self._connections)

        self._socket = None
        if drained:
            logger.info(f"{self.name.upper()} listener closed")
        else:
            logger.warning(f"{self.name.upper()} listener closed with {left} connection(s) still open")
        return drained

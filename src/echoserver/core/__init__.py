"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing underneath the echo server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     SOCKET SERVER (x2)                               │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • One listening socket and accept thread per listener              │
    │  • "http" always, "https" when certificate and key exist           │
    │  • close(timeout): stop accepting, drain tracked connections        │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Hands off new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                        WORKER POOL                                   │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Shared by both listeners                                         │
    │  • Grows from MIN_WORKERS up to MAX_WORKERS when none is free      │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Worker owns the connection
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                     CONNECTION / TLS CONNECTION                      │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Buffered head reads, streamed bodies (length or chunked)        │
    │  • TLS handshake on the worker, TlsSession for the echo            │
    │  • Keep-alive, idle interruption during shutdown                    │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, TlsConnection, ConnectionState, BodyStream, BodyStreamError
from .socket_server import SocketServer
from .thread_pool import WorkerPool
from .tls import TlsError, TlsSocket, create_ssl_context, describe_certificate


__all__ = [
    "Connection",
    "TlsConnection",
    "ConnectionState",
    "BodyStream",
    "BodyStreamError",
    "SocketServer",
    "WorkerPool",
    "TlsError",
    "TlsSocket",
    "create_ssl_context",
    "describe_certificate",
]

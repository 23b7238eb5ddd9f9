"""
=============================================================================
ECHOSERVER - HTTP/HTTPS Echo Server
=============================================================================

An HTTP/1.1 server that answers every request with a JSON description of
the request it received. Built for debugging proxies, load balancers,
ingress rules and client libraries.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ECHOSERVER FEATURES                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. ECHO                                                           │
    │      - path, headers, cookies, query, body, TLS facts               │
    │      - gzip request bodies, JSON bodies parsed                      │
    │      - optional JWT decoding and environment dump                   │
    │                                                                      │
    │   2. RESPONSE CONTROL (header or query parameter)                   │
    │      - x-set-response-status-code                                   │
    │      - x-set-response-delay-ms                                      │
    │      - x-set-response-content-type                                  │
    │      - response_body_only                                           │
    │                                                                      │
    │   3. OPERATIONS                                                     │
    │      - HTTP and HTTPS listeners, optional mutual TLS                │
    │      - Prometheus request duration histogram                       │
    │      - CORS, access logs                                            │
    │      - Graceful shutdown on SIGTERM / SIGINT                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    echoserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m echoserver)
    ├── server.py            # EchoServer: listeners, pool, lifecycle
    ├── config.py            # ServerConfig dataclass
    ├── app.py               # Pipeline assembly
    ├── echo.py              # The echo handler
    ├── body.py              # Body reading, gzip, size limit
    ├── overrides.py         # Response override resolution
    ├── metrics.py           # Prometheus histogram + scrape endpoint
    ├── core/                # Sockets, connections, TLS, workers
    ├── http/                # Request parsing, response building
    └── middleware/          # CORS, access log, pipeline

=============================================================================
QUICK START
=============================================================================

    from echoserver import EchoServer, ServerConfig

    EchoServer(ServerConfig.from_env()).run()

    # or, without sockets:
    from echoserver import create_app
    app = create_app(ServerConfig())
    response = app(request)

=============================================================================
"""

__version__ = "1.0.0"

from .app import EchoApp, create_app
from .config import ServerConfig
from .server import EchoServer

__all__ = ["EchoServer", "EchoApp", "ServerConfig", "create_app", "__version__"]

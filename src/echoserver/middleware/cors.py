"""
=============================================================================
CORS (Cross-Origin Resource Sharing) MIDDLEWARE
=============================================================================

Lets browser pages on other origins call the echo server.

=============================================================================
CORS REQUEST FLOW
=============================================================================

    SIMPLE REQUEST (GET, HEAD, or POST with simple content types):

    ┌─────────┐                                          ┌─────────┐
    │ Browser │─────────── GET /api ────────────────────▶│ Server  │
    │         │           Origin: https://app.com        │         │
    │         │◀──────────────────────────────────────────│         │
    │         │    Access-Control-Allow-Origin: *        │         │
    └─────────┘                                          └─────────┘

    PREFLIGHT REQUEST (non-simple requests):

    ┌─────────┐                                          ┌─────────┐
    │ Browser │─────────── OPTIONS /api ────────────────▶│ Server  │
    │         │           Access-Control-Request-Method: │         │
    │         │             DELETE                       │         │
    │         │◀──────────────────────────────────────────│         │
    │         │    204 No Content                        │         │
    │         │    Access-Control-Allow-Origin: *        │         │
    │         │    Access-Control-Allow-Methods: DELETE  │         │
    └─────────┘                                          └─────────┘

=============================================================================
A DIAGNOSTIC SERVER'S CORS
=============================================================================

The values come straight from the environment and are sent LITERALLY.
There is no origin matching and no reflection of the Origin header: the
operator decides exactly what the browser sees.

    ┌─────────────────────────────────┬───────────────────────────────────┐
    │ Header                          │ Sent when                         │
    ├─────────────────────────────────┼───────────────────────────────────┤
    │ Access-Control-Allow-Origin     │ always (middleware installed only │
    │                                 │ when CORS_ALLOW_ORIGIN is set)    │
    │ Access-Control-Allow-Methods    │ CORS_ALLOW_METHODS is set         │
    │ Access-Control-Allow-Headers    │ CORS_ALLOW_HEADERS is set         │
    │ Access-Control-Allow-Credentials│ CORS_ALLOW_CREDENTIALS is set     │
    └─────────────────────────────────┴───────────────────────────────────┘

Every OPTIONS request is answered here with 204 and never reaches the
access log's inner stages, the metrics or the echo handler.

=============================================================================
"""

from dataclasses import dataclass
from typing import Dict, Optional

from .base import Middleware, NextHandler
from ..config import ServerConfig
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder
from ..http.status_codes import HTTPStatus


@dataclass(frozen=True)
class CORSConfig:
    """
    CORS header values. None means "do not send this header".

        CORSConfig(allow_origin="*", allow_methods="GET,POST")
    """

    allow_origin: str = "*"
    allow_methods: Optional[str] = None
    allow_headers: Optional[str] = None
    allow_credentials: Optional[str] = None

    @classmethod
    def from_server_config(cls, config: ServerConfig) -> "CORSConfig":
        return cls(
            allow_origin=config.cors_allow_origin or "*",
            allow_methods=config.cors_allow_methods,
            allow_headers=config.cors_allow_headers,
            allow_credentials=config.cors_allow_credentials,
        )

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Access-Control-Allow-Origin": self.allow_origin}
        # ─────────────────────────────────────────────────────────────────
        # Optional headers: empty strings count as "not configured"
        # ─────────────────────────────────────────────────────────────────
        if self.allow_methods:
            headers["Access-Control-Allow-Methods"] = self.allow_methods
        if self.allow_headers:
            headers["Access-Control-Allow-Headers"] = self.allow_headers
        if self.allow_credentials:
            headers["Access-Control-Allow-Credentials"] = self.allow_credentials
        return headers


class CORSMiddleware(Middleware):
    """
    Adds the configured CORS headers to every response and answers
    preflight requests itself.

        pipeline.add(CORSMiddleware(CORSConfig(allow_origin="https://app.com")))
    """

    def __init__(self, config: Optional[CORSConfig] = None):
        self.config = config or CORSConfig()
        self._headers = self.config.headers

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        # ═══════════════════════════════════════════════════════════════════
        # PREFLIGHT: 204, nothing downstream runs
        # ═══════════════════════════════════════════════════════════════════
        if request.method == "OPTIONS":
            response = ResponseBuilder().status(HTTPStatus.NO_CONTENT).build()
        else:
            response = next(request)

        for name, value in self._headers.items():
            response.set_header(name, value)
        return response

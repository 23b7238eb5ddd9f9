"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

One line per request, separate from the (much larger) echo record that
the echo handler logs on "echoserver.echo".

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ GET /api/users?page=2 200 - 3ms                                     │
    │ ───────────────────────────────────────────────────────────────────│
    │ Method  Target (as sent)  Status  Duration                         │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (LOG_FORMAT=json, for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"method": "GET", "url": "/api/users?page=2", "path": "/api/users", │
    │  "status": 200, "duration_ms": 3, "client_ip": "203.0.113.7"}       │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SKIPPING NOISY PATHS
=============================================================================

LOG_IGNORE_PATH is a regular expression SEARCHED in the path, so
"^/health" silences a load balancer's health checks, and "health" silences any
path containing it. The request is still served normally.

=============================================================================
"""

import time
import json
import logging
from dataclasses import dataclass
from typing import Optional, Pattern

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


# ═══════════════════════════════════════════════════════════════════════════
# LOGGER CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
# Namespaced so it can be routed or silenced on its own:
#   logging.getLogger("echoserver.access").setLevel(logging.WARNING)
# ═══════════════════════════════════════════════════════════════════════════

logger = logging.getLogger("echoserver.access")


@dataclass
class RequestLog:
    """
    Structured access log entry.

    method:      HTTP method as sent
    url:         Request-target as sent, query string included
    path:        Path part of the target
    status:      Response status code
    duration_ms: Whole milliseconds spent in the downstream stages
    client_ip:   Originating client (X-Forwarded-For aware)
    """

    method: str
    url: str
    path: str
    status: int
    duration_ms: int
    client_ip: str

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "url": self.url,
            "path": self.path,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "client_ip": self.client_ip,
        }

    def to_text(self) -> str:
        return f"{self.method} {self.url} {self.status} - {self.duration_ms}ms"


class LoggingMiddleware(Middleware):
    """
    Access log middleware.

        pipeline.add(LoggingMiddleware())                        # text
        pipeline.add(LoggingMiddleware(log_format="json"))
        pipeline.add(LoggingMiddleware(ignore_path=re.compile("^/health")))

    Sits inside CORS, so preflight OPTIONS requests (answered by CORS)
    are not logged here.
    """

    def __init__(
        self,
        log_format: str = "text",
        ignore_path: Optional[Pattern] = None,
        log_level: int = logging.INFO,
    ):
        """
        Args:
            log_format: "text" or "json".
            ignore_path: Compiled regex; matching paths are not logged.
            log_level: Level for access lines.
        """
        self.log_format = log_format
        self.ignore_path = ignore_path
        self.log_level = log_level

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        start_time = time.monotonic()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            logger.error(
                f"Request failed: {request.method} {request.target} "
                f"- {type(e).__name__}: {e} ({duration_ms}ms)"
            )
            raise

        duration_ms = int((time.monotonic() - start_time) * 1000)

        if self.ignore_path is not None and self.ignore_path.search(request.path):
            return response

        entry = RequestLog(
            method=request.method,
            url=request.target or request.path,
            path=request.path,
            status=int(response.status),
            duration_ms=duration_ms,
            client_ip=request.ip,
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())

        return response

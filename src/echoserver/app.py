"""
=============================================================================
APPLICATION FACTORY
=============================================================================

Builds the request handler (pipeline + echo handler) from a ServerConfig,
without opening any sockets. The server calls it once at startup, and
tests call it directly to drive requests in memory.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   create_app(config)                                                │
    │                                                                      │
    │     override body file   read once, missing/empty → no override    │
    │                                                                      │
    │     CORSMiddleware       if CORS_ALLOW_ORIGIN                       │
    │       LoggingMiddleware  unless DISABLE_REQUEST_LOGS                │
    │         MetricsMiddleware  if PROMETHEUS_ENABLED                    │
    │           EchoHandler      always                                   │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .config import ServerConfig
from .echo import EchoHandler
from .http.request import HTTPRequest
from .http.response import HTTPResponse
from .metrics import MetricsMiddleware
from .middleware.base import MiddlewarePipeline, NextHandler
from .middleware.cors import CORSConfig, CORSMiddleware
from .middleware.logging import LoggingMiddleware


logger = logging.getLogger(__name__)


@dataclass
class EchoApp:
    """
    The assembled application.

    Attributes:
        handler: Entry point, request → response.
        echo: The innermost echo handler.
        metrics: The metrics stage when Prometheus is enabled.
    """

    handler: NextHandler
    echo: EchoHandler
    metrics: Optional[MetricsMiddleware] = None

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        return self.handler(request)


def load_override_body(path: Optional[str]) -> Optional[str]:
    """
    Read the static response body file.

    Returns None when no path is configured, the file does not exist,
    or it is empty.
    """
    if not path:
        return None
    if not os.path.isfile(path):
        logger.warning(f"Override response body file not found: {path}")
        return None

    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    if content:
        logger.info(f"Serving static response body from {path}")
    return content or None


def create_app(config: ServerConfig) -> EchoApp:
    """Wire the middleware pipeline around the echo handler."""
    echo = EchoHandler(config, override_body=load_override_body(config.override_response_body_file_path))

    pipeline = MiddlewarePipeline()
    metrics = None

    if config.cors_allow_origin:
        pipeline.add(CORSMiddleware(CORSConfig.from_server_config(config)))

    if not config.disable_request_logs:
        pipeline.add(LoggingMiddleware(
            log_format=config.log_format,
            ignore_path=config.ignore_path_pattern,
        ))

    if config.prometheus_enabled:
        metrics = MetricsMiddleware(config)
        pipeline.add(metrics)

    return EchoApp(handler=pipeline.wrap(echo), echo=echo, metrics=metrics)

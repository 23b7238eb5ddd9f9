"""
=============================================================================
MIDDLEWARE
=============================================================================

Stages that wrap the echo handler. Each one is optional and switched on
by configuration:

    ┌──────────────────────┬────────────────────────────────────────────┐
    │ CORSMiddleware       │ CORS_ALLOW_ORIGIN is set                   │
    │ LoggingMiddleware    │ DISABLE_REQUEST_LOGS is not "true"         │
    │ MetricsMiddleware    │ PROMETHEUS_ENABLED=true (echoserver.metrics)│
    └──────────────────────┴────────────────────────────────────────────┘

Order (outermost first): CORS → access log → metrics → echo handler.

=============================================================================
"""

from .base import Middleware, MiddlewarePipeline, NextHandler
from .cors import CORSConfig, CORSMiddleware
from .logging import LoggingMiddleware, RequestLog


__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "CORSConfig",
    "CORSMiddleware",
    "LoggingMiddleware",
    "RequestLog",
]

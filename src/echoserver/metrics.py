"""
=============================================================================
PROMETHEUS METRICS
=============================================================================

Request duration histogram plus the scrape endpoint, built on
prometheus_client.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      MetricsMiddleware                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   GET <PROMETHEUS_METRICS_PATH>                                      │
    │       └── serve generate_latest(registry), NOT observed             │
    │                                                                      │
    │   anything else                                                      │
    │       └── start = perf_counter()                                    │
    │           response = next(request)                                  │
    │           http_request_duration_seconds{labels}.observe(elapsed)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LABELS AND CARDINALITY
=============================================================================

Every distinct label combination is its own set of time series:

    PROMETHEUS_WITH_PATH    (off)   path="/users/1", path="/users/2", ...
    PROMETHEUS_WITH_METHOD  (on)    method="GET"
    PROMETHEUS_WITH_STATUS  (on)    status="200"

A path label on an echo server that accepts ANY path lets clients create
unbounded series, which is why it is opt-in. Labels are chosen once, at
startup.

=============================================================================
REGISTRY
=============================================================================

Each middleware instance owns a CollectorRegistry instead of using the
global default one, so several servers (or test cases) in one process do
not collide on metric names. Process, platform and GC collectors are
registered on it too, so a scrape shows the usual process_* and python_*
series. prometheus_client metrics are internally locked; observe() is safe
from any worker thread.

=============================================================================
"""

import logging
import time
from typing import Dict, List, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from .config import ServerConfig
from .http.request import HTTPRequest
from .http.response import HTTPResponse, ResponseBuilder
from .middleware.base import Middleware, NextHandler


logger = logging.getLogger(__name__)


DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)


def create_registry() -> CollectorRegistry:
    """Registry with the default process / platform / GC collectors."""
    registry = CollectorRegistry()
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)
    return registry


class MetricsMiddleware(Middleware):
    """
    Observes request durations and serves the scrape endpoint.

        metrics = MetricsMiddleware(config)
        pipeline.add(metrics)

        metrics.registry   # for tests or embedding
    """

    def __init__(self, config: ServerConfig, registry: Optional[CollectorRegistry] = None):
        self.metrics_path = config.prometheus_metrics_path
        self.with_path = config.prometheus_with_path
        self.with_method = config.prometheus_with_method
        self.with_status = config.prometheus_with_status

        self.registry = registry if registry is not None else create_registry()

        label_names: List[str] = []
        if self.with_path:
            label_names.append("path")
        if self.with_method:
            label_names.append("method")
        if self.with_status:
            label_names.append("status")
        self.label_names = tuple(label_names)

        self.duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            labelnames=self.label_names,
            buckets=DURATION_BUCKETS,
            registry=self.registry,
        )

        logger.info(
            f"Prometheus metrics on {self.metrics_path} "
            f"(labels: {', '.join(self.label_names) or 'none'})"
        )

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if request.method == "GET" and request.path == self.metrics_path:
            return self.scrape()

        start = time.perf_counter()
        response = next(request)
        self.observe(request, response, time.perf_counter() - start)
        return response

    def observe(self, request: HTTPRequest, response: HTTPResponse, seconds: float):
        if not self.label_names:
            self.duration.observe(seconds)
            return

        labels: Dict[str, str] = {}
        if self.with_path:
            labels["path"] = request.path
        if self.with_method:
            labels["method"] = request.method
        if self.with_status:
            labels["status"] = str(int(response.status))
        self.duration.labels(**labels).observe(seconds)

    def scrape(self) -> HTTPResponse:
        """Text exposition of everything in the registry."""
        return (ResponseBuilder()
                .body(generate_latest(self.registry))
                .content_type(CONTENT_TYPE_LATEST)
                .build())

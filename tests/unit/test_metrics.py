"""
Unit tests for the Prometheus metrics stage.
"""

from prometheus_client import CONTENT_TYPE_LATEST

from echoserver.config import ServerConfig
from echoserver.http.response import ResponseBuilder
from echoserver.metrics import MetricsMiddleware


def teapot(request):
    return ResponseBuilder().status(418).text("short and stout").build()


def sample(metrics, suffix, **labels):
    return metrics.registry.get_sample_value(f"http_request_duration_seconds_{suffix}", labels)


class TestMetricsMiddleware:

    def test_observes_with_default_labels(self, make_request):
        metrics = MetricsMiddleware(ServerConfig(prometheus_enabled=True))

        metrics(make_request("POST", "/x"), teapot)
        metrics(make_request("POST", "/y"), teapot)

        assert metrics.label_names == ("method", "status")
        assert sample(metrics, "count", method="POST", status="418") == 2

    def test_path_label(self, make_request):
        metrics = MetricsMiddleware(ServerConfig(
            prometheus_with_path=True,
            prometheus_with_method=False,
            prometheus_with_status=False,
        ))

        metrics(make_request("GET", "/users/1"), teapot)

        assert metrics.label_names == ("path",)
        assert sample(metrics, "count", path="/users/1") == 1

    def test_no_labels(self, make_request):
        metrics = MetricsMiddleware(ServerConfig(
            prometheus_with_method=False,
            prometheus_with_status=False,
        ))

        metrics(make_request(), teapot)

        assert sample(metrics, "count") == 1

    def test_scrape(self, make_request):
        metrics = MetricsMiddleware(ServerConfig())
        metrics(make_request("GET", "/echo"), teapot)

        def must_not_run(request):
            raise AssertionError("scrape reached the echo handler")

        response = metrics(make_request("GET", "/metrics"), must_not_run)

        assert response.status == 200
        assert response.headers["Content-Type"] == CONTENT_TYPE_LATEST
        assert b"http_request_duration_seconds_bucket" in response.body
        assert b'le="0.005"' in response.body

    def test_scrape_not_observed(self, make_request):
        metrics = MetricsMiddleware(ServerConfig())
        metrics(make_request("GET", "/metrics"), teapot)

        assert sample(metrics, "count", method="GET", status="200") is None

    def test_custom_path(self, make_request):
        metrics = MetricsMiddleware(ServerConfig(prometheus_metrics_path="/internal/metrics"))

        echoed = metrics(make_request("GET", "/metrics"), teapot)
        scraped = metrics(make_request("GET", "/internal/metrics"), teapot)

        assert echoed.status == 418
        assert scraped.headers["Content-Type"] == CONTENT_TYPE_LATEST

    def test_registries_are_independent(self, make_request):
        first = MetricsMiddleware(ServerConfig())
        second = MetricsMiddleware(ServerConfig())

        first(make_request(), teapot)

        assert sample(first, "count", method="GET", status="418") == 1
        assert sample(second, "count", method="GET", status="418") is None

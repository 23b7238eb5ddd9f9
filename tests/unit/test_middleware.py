"""
Unit tests for the middleware pipeline, CORS and the access log.
"""

import json
import logging
import re

import pytest

from echoserver.http.response import HTTPResponse, ResponseBuilder
from echoserver.middleware import (
    CORSConfig,
    CORSMiddleware,
    LoggingMiddleware,
    Middleware,
    MiddlewarePipeline,
)


def ok_handler(request) -> HTTPResponse:
    return ResponseBuilder().text("ok").build()


class Recorder(Middleware):
    """Appends its tag on the way in and on the way out."""

    def __init__(self, tag, calls):
        self.tag = tag
        self.calls = calls

    def __call__(self, request, next):
        self.calls.append(f"{self.tag}:in")
        response = next(request)
        self.calls.append(f"{self.tag}:out")
        return response


class TestMiddlewarePipeline:

    def test_order(self, make_request):
        calls = []
        pipeline = MiddlewarePipeline().use(Recorder("a", calls), Recorder("b", calls))

        def handler(request):
            calls.append("handler")
            return ok_handler(request)

        pipeline.wrap(handler)(make_request())

        assert calls == ["a:in", "b:in", "handler", "b:out", "a:out"]

    def test_empty_pipeline(self, make_request):
        handler = MiddlewarePipeline().wrap(ok_handler)
        assert handler(make_request()).body == b"ok"

    def test_next_at_most_once(self, make_request):
        class Twice(Middleware):
            def __call__(self, request, next):
                next(request)
                return next(request)

        handler = MiddlewarePipeline().add(Twice()).wrap(ok_handler)

        with pytest.raises(RuntimeError, match="more than once"):
            handler(make_request())

    def test_next_guard_is_per_request(self, make_request):
        handler = MiddlewarePipeline().add(Recorder("a", [])).wrap(ok_handler)

        handler(make_request())
        handler(make_request())


class TestCORSMiddleware:

    def test_headers_on_every_response(self, make_request):
        cors = CORSMiddleware(CORSConfig(
            allow_origin="https://app.example.com",
            allow_methods="GET,POST",
            allow_headers="X-Custom",
            allow_credentials="true",
        ))
        response = cors(make_request(), ok_handler)

        assert response.status == 200
        assert response.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
        assert response.headers["Access-Control-Allow-Methods"] == "GET,POST"
        assert response.headers["Access-Control-Allow-Headers"] == "X-Custom"
        assert response.headers["Access-Control-Allow-Credentials"] == "true"

    def test_unset_headers_omitted(self, make_request):
        response = CORSMiddleware(CORSConfig(allow_origin="*"))(make_request(), ok_handler)

        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "Access-Control-Allow-Methods" not in response.headers
        assert "Access-Control-Allow-Credentials" not in response.headers

    def test_preflight_short_circuits(self, make_request):
        def must_not_run(request):
            raise AssertionError("downstream ran")

        response = CORSMiddleware()(make_request("OPTIONS", "/anything"), must_not_run)

        assert response.status == 204
        assert response.body == b""
        assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestLoggingMiddleware:

    def access_records(self, caplog):
        return [r for r in caplog.records if r.name == "echoserver.access"]

    def test_text_line(self, make_request, caplog):
        with caplog.at_level(logging.INFO, logger="echoserver.access"):
            LoggingMiddleware()(make_request("GET", "/a/b?x=1"), ok_handler)

        [record] = self.access_records(caplog)
        assert re.fullmatch(r"GET /a/b\?x=1 200 - \d+ms", record.getMessage())

    def test_json_line(self, make_request, caplog):
        request = make_request("POST", "/items", headers={"X-Forwarded-For": "198.51.100.4"})
        with caplog.at_level(logging.INFO, logger="echoserver.access"):
            LoggingMiddleware(log_format="json")(request, ok_handler)

        [record] = self.access_records(caplog)
        entry = json.loads(record.getMessage())
        assert entry["method"] == "POST"
        assert entry["url"] == "/items"
        assert entry["status"] == 200
        assert entry["client_ip"] == "198.51.100.4"

    def test_ignore_path(self, make_request, caplog):
        middleware = LoggingMiddleware(ignore_path=re.compile("^/health"))
        with caplog.at_level(logging.INFO, logger="echoserver.access"):
            middleware(make_request("GET", "/healthz"), ok_handler)
            middleware(make_request("GET", "/other"), ok_handler)

        assert [r.getMessage().split()[1] for r in self.access_records(caplog)] == ["/other"]

    def test_failure_logged_and_raised(self, make_request, caplog):
        def broken(request):
            raise ValueError("boom")

        with caplog.at_level(logging.INFO, logger="echoserver.access"):
            with pytest.raises(ValueError):
                LoggingMiddleware()(make_request(), broken)

        [record] = self.access_records(caplog)
        assert record.levelno == logging.ERROR
        assert "ValueError: boom" in record.getMessage()

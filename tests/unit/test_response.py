"""
Unit tests for HTTP response building.
"""

import pytest
import json
from datetime import datetime, timezone

from echoserver.http.response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,
    format_http_date,
)
from echoserver.http.status_codes import HTTPStatus, reason_phrase, has_body


class TestHTTPResponse:
    """Tests for HTTPResponse class."""

    def test_status_line(self):
        """Test status line generation."""
        response = HTTPResponse(status=HTTPStatus.OK)
        assert response.status_line == "HTTP/1.1 200 OK"

        response = HTTPResponse(status=418)
        assert response.status_line == "HTTP/1.1 418 I'm a teapot"

    def test_unregistered_status(self):
        response = HTTPResponse(status=599)
        assert response.status_line == "HTTP/1.1 599 Unknown"

    def test_to_bytes_includes_headers(self):
        """Test that to_bytes includes all headers."""
        response = HTTPResponse(
            status=HTTPStatus.OK,
            headers={"X-Custom": "value"},
            body=b"test",
        )
        result = response.to_bytes()

        assert result.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"X-Custom: value\r\n" in result
        assert b"Content-Length: 4\r\n" in result
        assert b"Server: echoserver\r\n" in result
        assert b"Date: " in result
        assert result.endswith(b"\r\n\r\ntest")

    def test_server_name(self):
        result = HTTPResponse().to_bytes(server_name="edge-echo")
        assert b"Server: edge-echo\r\n" in result

    def test_head_only_keeps_content_length(self):
        """HEAD responses advertise the length of the body they omit."""
        response = HTTPResponse(body=b"hello world")
        result = response.to_bytes(head_only=True)

        assert b"Content-Length: 11\r\n" in result
        assert result.endswith(b"\r\n\r\n")

    @pytest.mark.parametrize("status", [204, 304, 101])
    def test_bodyless_statuses(self, status):
        response = HTTPResponse(status=status, body=b"ignored")
        result = response.to_bytes()

        assert result.endswith(b"\r\n\r\n")
        assert b"ignored" not in result
        if status != 304:
            assert b"Content-Length" not in result

    def test_set_header_replaces_any_casing(self):
        response = HTTPResponse(headers={"content-type": "text/plain"})
        response.set_header("Content-Type", "application/json")

        assert response.headers == {"Content-Type": "application/json"}
        assert response.get_header("CONTENT-TYPE") == "application/json"

    def test_set_header_chaining(self):
        """Test method chaining for headers."""
        response = (HTTPResponse()
            .set_header("X-One", "1")
            .set_header("X-Two", "2"))

        assert response.headers["X-One"] == "1"
        assert response.headers["X-Two"] == "2"


class TestResponseBuilder:
    """Tests for ResponseBuilder class."""

    def test_status(self):
        """Test setting status code."""
        response = ResponseBuilder().status(HTTPStatus.NO_CONTENT).build()
        assert response.status == HTTPStatus.NO_CONTENT

    def test_json_body(self):
        """Test JSON body encoding."""
        data = {"name": "Zoë", "age": 30}
        response = ResponseBuilder().json(data).build()

        assert response.headers["Content-Type"] == "application/json; charset=utf-8"
        assert json.loads(response.body) == data
        assert "Zoë".encode("utf-8") in response.body

    def test_text_body(self):
        """Test plain text body."""
        text = "Hello, World!"
        response = ResponseBuilder().text(text).build()

        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
        assert response.body == text.encode()

    def test_markup_text_is_html(self):
        response = ResponseBuilder().text("  \n<p>hi</p>").build()
        assert response.headers["Content-Type"] == "text/html; charset=utf-8"

    def test_close_connection(self):
        """Test connection close header."""
        response = ResponseBuilder().close_connection().build()
        assert response.headers["Connection"] == "close"

    def test_method_chaining(self):
        """Test fluent API chaining."""
        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .header("X-Custom", "value")
            .json({"key": "value"})
            .build())

        assert response.status == HTTPStatus.OK
        assert response.headers["X-Custom"] == "value"
        assert b'"key"' in response.body


class TestErrorResponse:

    def test_error_body(self):
        response = error_response(HTTPStatus.PAYLOAD_TOO_LARGE, "Body exceeds max size of 10 bytes")

        assert response.status == 413
        assert json.loads(response.body) == {"error": "Body exceeds max size of 10 bytes"}


class TestHTTPStatus:
    """Tests for HTTPStatus enum."""

    def test_status_phrases(self):
        """Test that all statuses have phrases."""
        assert HTTPStatus.OK.phrase == "OK"
        assert HTTPStatus.PAYLOAD_TOO_LARGE.phrase == "Payload Too Large"
        assert reason_phrase(500) == "Internal Server Error"

    def test_has_body(self):
        assert has_body(200)
        assert has_body(418)
        assert not has_body(100)
        assert not has_body(204)
        assert not has_body(304)


class TestFormatHTTPDate:
    """Tests for HTTP date formatting."""

    def test_format(self):
        """Test HTTP date format."""
        dt = datetime(2026, 1, 15, 12, 30, 45, tzinfo=timezone.utc)

        assert format_http_date(dt) == "Thu, 15 Jan 2026 12:30:45 GMT"

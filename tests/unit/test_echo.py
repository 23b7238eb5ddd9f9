"""
Unit tests for the echo handler.
"""

import gzip
import json
import logging
import time

import jwt
import pytest

from echoserver.config import ServerConfig
from echoserver.echo import EchoHandler, decode_jwt, parse_cookies, simplify_query
from echoserver.http.request import TlsSession


def echo_json(response) -> dict:
    return json.loads(response.body)


class TestHelpers:

    def test_parse_cookies(self):
        assert parse_cookies("session=abc123; theme=dark") == {"session": "abc123", "theme": "dark"}
        assert parse_cookies("a=b=c; novalue; =x") == {"a": "b=c"}
        assert parse_cookies(None) == {}

    def test_simplify_query(self):
        assert simplify_query({"a": ["1"], "b": ["2", "3"]}) == {"a": "1", "b": ["2", "3"]}

    def test_decode_jwt(self):
        token = jwt.encode({"sub": "1234", "name": "Ada"}, "secret", algorithm="HS256")
        decoded = decode_jwt(token)

        assert decoded["header"] == {"alg": "HS256", "typ": "JWT"}
        assert decoded["payload"] == {"sub": "1234", "name": "Ada"}
        assert decoded["signature"] == token.rsplit(".", 1)[-1]

    def test_decode_invalid_jwt(self):
        assert decode_jwt("not-a-jwt") is None

    def test_decode_jwt_with_non_finite_number(self):
        token = jwt.encode({"n": float("inf")}, "secret", algorithm="HS256")
        assert decode_jwt(token) is None


class TestEchoDocument:

    def test_basic_document(self, config, make_request):
        request = make_request(
            "GET", "/api/users?page=1&tag=a&tag=b",
            headers={
                "Host": "tobi.ferrets.example.com:8080",
                "Cookie": "session=abc123",
                "X-Forwarded-For": "203.0.113.7, 10.0.0.2",
            },
        )
        doc = echo_json(EchoHandler(config)(request))

        assert doc["path"] == "/api/users"
        assert doc["method"] == "GET"
        assert doc["body"] == ""
        assert doc["headers"]["host"] == "tobi.ferrets.example.com:8080"
        assert doc["cookies"] == {"session": "abc123"}
        assert doc["fresh"] is False
        assert doc["hostname"] == "tobi.ferrets.example.com"
        assert doc["ip"] == "203.0.113.7"
        assert doc["ips"] == ["203.0.113.7", "10.0.0.2"]
        assert doc["protocol"] == "http"
        assert doc["query"] == {"page": "1", "tag": ["a", "b"]}
        assert doc["subdomains"] == ["ferrets", "tobi"]
        assert doc["xhr"] is False
        assert doc["os"]["hostname"]
        assert doc["connection"] == {"servername": ""}
        assert "json" not in doc
        assert "jwt" not in doc
        assert "env" not in doc
        assert "clientCertificate" not in doc

    def test_key_order(self, config, make_request):
        request = make_request("POST", "/", headers={"Content-Type": "application/json"}, body=b"{}")
        doc = echo_json(EchoHandler(config)(request))

        assert list(doc)[:15] == [
            "path", "headers", "method", "body", "cookies", "fresh", "hostname",
            "ip", "ips", "protocol", "query", "subdomains", "xhr", "os", "connection",
        ]
        assert list(doc)[-1] == "json"

    def test_xhr(self, config, make_request):
        request = make_request(headers={"X-Requested-With": "XMLHttpRequest"})
        assert echo_json(EchoHandler(config)(request))["xhr"] is True

    def test_json_body(self, config, make_request):
        request = make_request(
            "POST", "/",
            headers={"Content-Type": "application/json; charset=utf-8"},
            body=b'{"name": "Ada", "tags": [1, 2]}',
        )
        doc = echo_json(EchoHandler(config)(request))

        assert doc["body"] == '{"name": "Ada", "tags": [1, 2]}'
        assert doc["json"] == {"name": "Ada", "tags": [1, 2]}

    def test_invalid_json_body_is_still_echoed(self, config, make_request):
        request = make_request(
            "POST", "/", headers={"Content-Type": "application/json"}, body=b"{nope",
        )
        doc = echo_json(EchoHandler(config)(request))

        assert doc["body"] == "{nope"
        assert "json" not in doc

    def test_nan_is_not_json(self, config, make_request):
        request = make_request("POST", "/", headers={"Content-Type": "application/json"}, body=b"NaN")
        assert "json" not in echo_json(EchoHandler(config)(request))

    @pytest.mark.parametrize("body", [b"1e400", b"{\"n\": -1e999}"])
    def test_float_overflow_is_not_json(self, config, make_request, body):
        request = make_request("POST", "/", headers={"Content-Type": "application/json"}, body=body)
        response = EchoHandler(config)(request)

        doc = json.loads(response.body, parse_constant=pytest.fail)
        assert doc["body"] == body.decode()
        assert "json" not in doc

    def test_deeply_nested_json_is_still_echoed(self, config, make_request):
        body = b"[" * 5000 + b"]" * 5000
        request = make_request("POST", "/", headers={"Content-Type": "application/json"}, body=body)
        response = EchoHandler(config)(request)

        assert response.status == 200
        doc = echo_json(response)
        assert len(doc["body"]) == 10000
        assert "json" not in doc

    def test_gzip_body(self, config, make_request):
        request = make_request(
            "POST", "/",
            headers={"Content-Encoding": "gzip", "Content-Type": "text/plain"},
            body=gzip.compress(b"compressed hello"),
        )
        assert echo_json(EchoHandler(config)(request))["body"] == "compressed hello"

    def test_body_too_large(self, config, make_request):
        handler = EchoHandler(ServerConfig(max_body_size=10))
        response = handler(make_request("POST", "/", body=b"x" * 11))

        assert response.status == 413
        assert echo_json(response) == {"error": "Body exceeds max size of 10 bytes"}

    def test_preserve_header_case(self, make_request):
        handler = EchoHandler(ServerConfig(preserve_header_case=True))
        request = make_request(headers={"Host": "h", "X-Custom-Header": "v"})

        assert echo_json(handler(request))["headers"] == {"Host": "h", "X-Custom-Header": "v"}

    def test_env_vars(self, make_request):
        handler = EchoHandler(ServerConfig(echo_include_env_vars=True), environ={"APP": "echo"})
        assert echo_json(handler(make_request()))["env"] == {"APP": "echo"}

    def test_jwt_header(self, make_request):
        token = jwt.encode({"sub": "42"}, "secret", algorithm="HS256")
        handler = EchoHandler(ServerConfig(jwt_header="Authorization"))

        doc = echo_json(handler(make_request(headers={"Authorization": f"Bearer {token}"})))
        assert doc["jwt"]["payload"] == {"sub": "42"}

        missing = echo_json(handler(make_request()))
        assert missing["jwt"] is None

    def test_tls_facts(self, config, make_request):
        tls = TlsSession(server_name="echo.local", peer_certificate={"subject": {"CN": "client"}})
        doc = echo_json(EchoHandler(config)(make_request(tls=tls)))

        assert doc["protocol"] == "https"
        assert doc["connection"] == {"servername": "echo.local"}
        assert doc["clientCertificate"] == {"subject": {"CN": "client"}}


class TestEchoResponse:

    def test_status_override(self, config, make_request):
        response = EchoHandler(config)(make_request(target="/?x-set-response-status-code=418"))

        assert response.status == 418
        assert response.headers["Content-Type"] == "application/json; charset=utf-8"

    def test_content_type_override(self, config, make_request):
        request = make_request(headers={"x-set-response-content-type": "text/csv"})
        response = EchoHandler(config)(request)

        assert response.headers["Content-Type"] == "text/csv"
        assert echo_json(response)["path"] == "/"

    def test_body_only(self, config, make_request):
        request = make_request("POST", "/?response_body_only=true", body=b"just this")
        response = EchoHandler(config)(request)

        assert response.body == b"just this"
        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"

    def test_body_only_html(self, config, make_request):
        request = make_request("POST", "/?response_body_only=true", body=b"<h1>hi</h1>")
        response = EchoHandler(config)(request)

        assert response.headers["Content-Type"] == "text/html; charset=utf-8"

    def test_delay(self, config, make_request):
        start = time.monotonic()
        EchoHandler(config)(make_request(headers={"x-set-response-delay-ms": "200"}))

        assert time.monotonic() - start >= 0.19

    def test_delay_beyond_timer_range_is_not_applied(self, config, make_request):
        start = time.monotonic()
        response = EchoHandler(config)(make_request(target="/?x-set-response-delay-ms=99999999999999999"))

        assert response.status == 200
        assert time.monotonic() - start < 1.0

    def test_echo_back_disabled(self, make_request):
        handler = EchoHandler(ServerConfig(echo_back_to_client=False))
        response = handler(make_request("POST", "/", body=b"data"))

        assert response.status == 204
        assert response.body == b""
        assert response.get_header("Content-Type") is None

    def test_echo_back_disabled_with_status(self, make_request):
        handler = EchoHandler(ServerConfig(echo_back_to_client=False))
        response = handler(make_request(target="/?x-set-response-status-code=202"))

        assert response.status == 202
        assert response.body == b""

    def test_override_body(self, config, make_request):
        handler = EchoHandler(config, override_body="<html>static</html>")
        response = handler(make_request(
            "POST", "/?x-set-response-status-code=500", body=b"ignored",
        ))

        assert response.status == 200
        assert response.body == b"<html>static</html>"
        assert response.headers["Content-Type"] == "text/html; charset=utf-8"

    def test_override_body_silenced_when_echo_back_disabled(self, make_request):
        handler = EchoHandler(ServerConfig(echo_back_to_client=False), override_body="static")
        response = handler(make_request())

        assert response.status == 204
        assert response.body == b""


class TestEchoLog:

    def test_document_logged(self, config, make_request, caplog):
        with caplog.at_level(logging.INFO, logger="echoserver.echo"):
            EchoHandler(config)(make_request(target="/logged"))

        records = [r for r in caplog.records if r.name == "echoserver.echo"]
        assert len(records) == 1
        assert '"path": "/logged"' in records[0].getMessage()
        assert "\n" in records[0].getMessage()

    def test_single_line(self, make_request, caplog):
        handler = EchoHandler(ServerConfig(log_without_newline=True))
        with caplog.at_level(logging.INFO, logger="echoserver.echo"):
            handler(make_request())

        message = [r for r in caplog.records if r.name == "echoserver.echo"][0].getMessage()
        assert "\n" not in message

    @pytest.mark.parametrize("overrides", [
        {"disable_request_logs": True},
        {"log_ignore_path": "^/health"},
    ])
    def test_not_logged(self, make_request, caplog, overrides):
        handler = EchoHandler(ServerConfig(**overrides))
        with caplog.at_level(logging.INFO, logger="echoserver.echo"):
            handler(make_request(target="/health"))

        assert not [r for r in caplog.records if r.name == "echoserver.echo"]

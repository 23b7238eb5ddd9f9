"""
Unit tests for application assembly.
"""

import json

from echoserver.app import create_app, load_override_body
from echoserver.config import ServerConfig


class TestLoadOverrideBody:

    def test_unset(self):
        assert load_override_body(None) is None

    def test_missing_file(self, tmp_path):
        assert load_override_body(str(tmp_path / "nope.html")) is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.html"
        path.write_text("")
        assert load_override_body(str(path)) is None

    def test_content(self, tmp_path):
        path = tmp_path / "body.html"
        path.write_text("<h1>maintenance</h1>")
        assert load_override_body(str(path)) == "<h1>maintenance</h1>"


class TestCreateApp:

    def test_plain_echo(self, make_request):
        app = create_app(ServerConfig())
        response = app(make_request("GET", "/hello"))

        assert response.status == 200
        assert json.loads(response.body)["path"] == "/hello"
        assert app.metrics is None
        assert "Access-Control-Allow-Origin" not in response.headers

    def test_cors_wraps_everything(self, make_request):
        app = create_app(ServerConfig(cors_allow_origin="*", prometheus_enabled=True))

        preflight = app(make_request("OPTIONS", "/x"))
        scrape = app(make_request("GET", "/metrics"))

        assert preflight.status == 204
        assert scrape.headers["Access-Control-Allow-Origin"] == "*"
        assert app.metrics.registry.get_sample_value(
            "http_request_duration_seconds_count", {"method": "OPTIONS", "status": "204"}
        ) is None

    def test_metrics_observe_echo(self, make_request):
        app = create_app(ServerConfig(prometheus_enabled=True))
        app(make_request("DELETE", "/thing?x-set-response-status-code=404"))

        assert app.metrics.registry.get_sample_value(
            "http_request_duration_seconds_count", {"method": "DELETE", "status": "404"}
        ) == 1

    def test_override_body_file(self, tmp_path, make_request):
        path = tmp_path / "static.txt"
        path.write_text("fixed reply")
        app = create_app(ServerConfig(override_response_body_file_path=str(path)))

        response = app(make_request("POST", "/whatever", body=b"ignored"))

        assert response.body == b"fixed reply"
        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"

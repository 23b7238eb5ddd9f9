"""
=============================================================================
ECHO HANDLER
=============================================================================

The innermost stage of the pipeline: reflects the request back to the
client as a JSON document.

=============================================================================
THE ECHO DOCUMENT
=============================================================================

    POST /api/users?page=2 HTTP/1.1
    Host: api.example.com
    Cookie: session=abc123; theme=dark
    Content-Type: application/json

    {"name": "Al"}

becomes

    {
      "path": "/api/users",
      "headers": {"host": "api.example.com", ...},
      "method": "POST",
      "body": "{\\"name\\": \\"Al\\"}",
      "cookies": {"session": "abc123", "theme": "dark"},
      "fresh": false,
      "hostname": "api.example.com",
      "ip": "203.0.113.7",
      "ips": [],
      "protocol": "http",
      "query": {"page": "2"},
      "subdomains": ["api"],        ← labels left of "example.com", reversed
      "xhr": false,
      "os": {"hostname": "echo-7f9c"},
      "connection": {"servername": ""},
      "json": {"name": "Al"}        ← only for JSON content types
    }

Optional keys, in this order, after "connection":

    clientCertificate   TLS connection that presented a certificate
    env                 ECHO_INCLUDE_ENV_VARS=true
    json                JSON content type AND the body parses
    jwt                 JWT_HEADER is set (null if the header is missing
                        or the token cannot be decoded)

=============================================================================
HANDLING ORDER
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  1. Override body file?  → return it (empty if echo-back is off)    │
    │  2. Read body            → 413 / 400 on failure                     │
    │  3. Build the document                                              │
    │  4. Resolve overrides    (header, then query parameter)             │
    │  5. Delay                (sleeps this worker only)                  │
    │  6. Render               empty / raw body / JSON document           │
    │  7. Status + Content-Type overrides, applied last                   │
    │  8. Log the document     on "echoserver.echo"                       │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import json
import logging
import math
import os
import socket
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import jwt

from .body import BodyError, read_body
from .config import ServerConfig
from .http.request import HTTPRequest
from .http.response import HTTPResponse, ResponseBuilder, error_response
from .http.status_codes import HTTPStatus
from .overrides import ResponseOverrides


logger = logging.getLogger(__name__)

# The echo record is a separate stream from the access log
echo_logger = logging.getLogger("echoserver.echo")


# =============================================================================
# HELPERS
# =============================================================================

def parse_cookies(header: Optional[str]) -> Dict[str, str]:
    """
    Parse a Cookie header.

        "session=abc123; theme=dark" → {"session": "abc123", "theme": "dark"}

    Pairs without "=" (or with an empty name) are dropped. The value is
    everything after the FIRST "=", so "a=b=c" gives {"a": "b=c"}.
    """
    cookies: Dict[str, str] = {}
    if not header:
        return cookies

    for pair in header.split(";"):
        name, sep, value = pair.strip().partition("=")
        if sep and name.strip():
            cookies[name.strip()] = value.strip()
    return cookies


def rebuild_headers(raw_headers: List[Tuple[str, str]]) -> Dict[str, str]:
    """
    Headers with their original casing, in arrival order.

    A repeated header keeps only its last value, with the casing of the
    first spelling that used that exact name.
    """
    headers: Dict[str, str] = {}
    for name, value in raw_headers:
        headers[name] = value
    return headers


def simplify_query(query_params: Mapping[str, List[str]]) -> Dict[str, Union[str, List[str]]]:
    """
    {"a": ["1"], "b": ["2", "3"]} → {"a": "1", "b": ["2", "3"]}
    """
    return {
        key: values[0] if len(values) == 1 else list(values)
        for key, values in query_params.items()
    }


def decode_jwt(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode a JWT WITHOUT verifying it.

    Returns:
        {"header": {...}, "payload": {...}, "signature": "<base64url>"},
        or None if the token is not a decodable JWT.
    """
    try:
        decoded = jwt.PyJWT().decode_complete(token, options={"verify_signature": False})
        # The token's JSON must survive being echoed as strict JSON
        json.dumps([decoded["header"], decoded["payload"]], allow_nan=False)
    except (jwt.exceptions.PyJWTError, ValueError, RecursionError) as e:
        logger.warning(f"Could not decode JWT: {e}")
        return None

    return {
        "header": decoded["header"],
        "payload": decoded["payload"],
        "signature": token.rsplit(".", 1)[-1],
    }


def _reject_constant(name: str):
    # JSON has no NaN or Infinity
    raise ValueError(f"Invalid JSON constant: {name}")


def _finite_float(text: str) -> float:
    # "1e400" would come back as inf and serialize as a bare Infinity
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Number out of range: {text}")
    return value


def parse_json(text: str) -> Any:
    """
    Strict json.loads: NaN, Infinity and numbers that overflow a float
    are rejected with ValueError, as is nesting too deep to decode.
    """
    try:
        return json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)
    except RecursionError as e:
        raise ValueError("JSON nested too deeply") from e


# =============================================================================
# ECHO HANDLER
# =============================================================================

class EchoHandler:
    """
    Final handler of the pipeline.

    Everything that cannot change between requests is computed once here:
    the override body, the server's hostname and the environment snapshot.

        handler = EchoHandler(config)
        response = handler(request)
    """

    def __init__(
        self,
        config: ServerConfig,
        override_body: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            config: Server configuration.
            override_body: Static body returned for every request, if any.
            environ: Environment to echo when ECHO_INCLUDE_ENV_VARS is on.
                Defaults to a snapshot of os.environ.
        """
        self.config = config
        self.override_body = override_body or None
        self.os_hostname = socket.gethostname()
        self.ignore_path = config.ignore_path_pattern

        self.environ: Optional[Dict[str, str]] = None
        if config.echo_include_env_vars:
            self.environ = dict(os.environ if environ is None else environ)

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        # ═══════════════════════════════════════════════════════════════════
        # STATIC OVERRIDE: complete bypass
        # ═══════════════════════════════════════════════════════════════════
        if self.override_body is not None:
            if not self.config.echo_back_to_client:
                return ResponseBuilder().status(HTTPStatus.NO_CONTENT).build()
            return ResponseBuilder().text(self.override_body).build()

        # ═══════════════════════════════════════════════════════════════════
        # BODY
        # ═══════════════════════════════════════════════════════════════════
        try:
            body = read_body(request.stream, gzip=request.is_gzip, max_size=self.config.max_body_size)
        except BodyError as e:
            logger.info(f"{request.method} {request.path}: {e}")
            return error_response(e.status_code, str(e))

        echo = self.build_document(request, body)

        # ═══════════════════════════════════════════════════════════════════
        # OVERRIDES + DELAY
        # ═══════════════════════════════════════════════════════════════════
        overrides = ResponseOverrides.from_request(request)

        if overrides.delay_ms > 0:
            time.sleep(overrides.delay_ms / 1000.0)

        response = self.render(echo, body, overrides)

        if self.ignore_path is None or not self.ignore_path.search(request.path):
            self._log_document(echo)

        return response

    def build_document(self, request: HTTPRequest, body: str) -> Dict[str, Any]:
        """Assemble the echo document for one request."""
        tls = request.tls

        echo: Dict[str, Any] = {
            "path": request.path,
            "headers": (rebuild_headers(request.raw_headers)
                        if self.config.preserve_header_case
                        else dict(request.headers)),
            "method": request.method,
            "body": body,
            "cookies": parse_cookies(request.get_header("cookie")),
            "fresh": False,
            "hostname": request.hostname,
            "ip": request.ip,
            "ips": request.ips,
            "protocol": request.protocol,
            "query": simplify_query(request.query_params),
            "subdomains": request.subdomains,
            "xhr": request.get_header("x-requested-with").lower() == "xmlhttprequest",
            "os": {"hostname": self.os_hostname},
            "connection": {"servername": tls.server_name if tls is not None else ""},
        }

        if tls is not None and tls.peer_certificate:
            echo["clientCertificate"] = tls.peer_certificate

        if self.environ is not None:
            echo["env"] = self.environ

        if request.is_json:
            try:
                echo["json"] = parse_json(body)
            except ValueError:
                logger.warning(f"Invalid JSON body with Content-Type: {request.get_header('content-type')}")

        if self.config.jwt_header:
            echo["jwt"] = self._decode_jwt_header(request)

        return echo

    def _decode_jwt_header(self, request: HTTPRequest) -> Optional[Dict[str, Any]]:
        value = request.get_header(self.config.jwt_header)
        tokens = value.split()
        if not tokens:
            return None
        # "Bearer eyJ..." → "eyJ..."
        return decode_jwt(tokens[-1])

    def render(self, echo: Dict[str, Any], body: str, overrides: ResponseOverrides) -> HTTPResponse:
        """
        Turn the document into a response.

        ECHO_BACK_TO_CLIENT=false sends no body at all: 204 unless the client
        asked for a specific status, and no Content-Type.
        """
        builder = ResponseBuilder()

        if not self.config.echo_back_to_client:
            builder.status(overrides.status or HTTPStatus.NO_CONTENT)
            return builder.build()

        if overrides.body_only:
            builder.text(body)
        else:
            builder.json(echo)

        if overrides.status is not None:
            builder.status(overrides.status)

        # Applied last so it wins over the inferred type
        if overrides.content_type:
            builder.content_type(overrides.content_type)

        return builder.build()

    def _log_document(self, echo: Dict[str, Any]):
        if self.config.disable_request_logs or not echo_logger.isEnabledFor(logging.INFO):
            return

        if self.config.log_without_newline:
            record = json.dumps(echo, ensure_ascii=False, default=str)
        else:
            record = json.dumps(echo, indent=2, ensure_ascii=False, default=str)
        echo_logger.info(f"request {record}")

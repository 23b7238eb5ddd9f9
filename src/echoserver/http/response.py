"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

Builds HTTP/1.1 responses with proper formatting per RFC 7230.

=============================================================================
HTTP RESPONSE ANATOMY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     HTTP RESPONSE STRUCTURE                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   HTTP/1.1 418 I'm a teapot\r\n             ← status line            │
    │   Content-Type: application/json; charset=utf-8\r\n                 │
    │   Content-Length: 27\r\n                    ← auto-calculated        │
    │   Date: Sun, 18 Oct 2026 12:00:00 GMT\r\n   ← auto-added             │
    │   Server: echoserver\r\n                    ← auto-added             │
    │   \r\n                                                              │
    │   {"path": "/", "method": ...}              ← body                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
RESPONSES WITHOUT A BODY
=============================================================================

Some responses must never carry body bytes, whatever the handler put in
response.body. Sending them anyway desynchronizes keep-alive clients:

    HEAD requests          headers only, Content-Length of the full body
    1xx, 204               no body and no Content-Length
    304                    no body

Because clients can ask for ANY status code through overrides, to_bytes()
enforces these rules rather than trusting the handler.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Union
import json

from .status_codes import HTTPStatus, reason_phrase, has_body


@dataclass
class HTTPResponse:
    """
    Represents an HTTP response to be sent to the client.

    `status` is a plain int so clients can request codes the server has
    no name for (e.g. 299). Use ResponseBuilder for convenient construction.
    """

    status: int = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """Example: "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {reason_phrase(self.status)}"

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """
        Set a response header, replacing any existing spelling of it.

        Returns self for method chaining.
        """
        self.remove_header(name)
        self.headers[name] = value
        return self

    def remove_header(self, name: str) -> "HTTPResponse":
        """Remove a header regardless of its casing."""
        lowered = name.lower()
        for key in [k for k in self.headers if k.lower() == lowered]:
            del self.headers[key]
        return self

    def to_bytes(self, server_name: str = "echoserver", head_only: bool = False) -> bytes:
        """
        Serialize the response to bytes for sending over the socket.

        Args:
            server_name: Value for the Server header.
            head_only: Serialize headers only (response to a HEAD request).

        Returns:
            Complete HTTP response ready for socket.sendall().
        """
        response_headers = dict(self.headers)
        body = self.body

        # =====================================================================
        # BODY RULES
        # =====================================================================
        if not has_body(self.status):
            body = b""
            if self.status != HTTPStatus.NOT_MODIFIED:
                response_headers = {
                    k: v for k, v in response_headers.items()
                    if k.lower() != "content-length"
                }
        elif self.get_header("Content-Length") is None:
            response_headers["Content-Length"] = str(len(body))

        if head_only:
            body = b""

        # =====================================================================
        # AUTO-ADDED HEADERS
        # =====================================================================
        if self.get_header("Date") is None:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if self.get_header("Server") is None:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("latin-1", errors="replace") + b"\r\n"
        return header_bytes + body


class ResponseBuilder:
    """
    Fluent builder for constructing HTTP responses.

    ==========================================================================
    METHOD CHAINING (FLUENT INTERFACE)
    ==========================================================================

        response = (ResponseBuilder()
            .status(HTTPStatus.PAYLOAD_TOO_LARGE)
            .json({"error": "Body exceeds max size of 1048576 bytes"})
            .build())

    Every method returns `self` except build().

    ==========================================================================
    """

    def __init__(self):
        self._status: int = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""

    def status(self, status: int) -> "ResponseBuilder":
        """Set the HTTP status code."""
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        """Add a single response header."""
        self._headers[name] = value
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        """Set the Content-Type header."""
        self._headers["Content-Type"] = content_type
        return self

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        """Set a raw body without touching Content-Type."""
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        """
        Set a string body.

        Strings that look like markup ("<...", leading whitespace allowed)
        are sent as text/html, everything else as text/plain.
        """
        if text.lstrip().startswith("<") and content_type.startswith("text/plain"):
            content_type = "text/html; charset=utf-8"
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = content_type
        return self

    def json(self, data: Any, pretty: bool = False) -> "ResponseBuilder":
        """
        Set a JSON response body.

        ensure_ascii=False keeps non-ASCII characters readable instead of
        escaping them to \\uXXXX.
        """
        indent = 2 if pretty else None
        self._body = json.dumps(data, indent=indent, ensure_ascii=False).encode("utf-8")
        self._headers["Content-Type"] = "application/json; charset=utf-8"
        return self

    def close_connection(self) -> "ResponseBuilder":
        """Ask the client to close the connection after this response."""
        self._headers["Connection"] = "close"
        return self

    def build(self) -> HTTPResponse:
        """Build the HTTPResponse."""
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Format: Day, DD Mon YYYY HH:MM:SS GMT
    Example: Sun, 18 Oct 2026 12:00:00 GMT

    HTTP dates are ALWAYS in GMT and always English, independent of
    the process locale.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def error_response(status: int, message: str) -> HTTPResponse:
    """
    JSON error body used for every failure the server reports itself:

        {"error": "Body exceeds max size of 1048576 bytes"}
    """
    return ResponseBuilder().status(status).json({"error": message}).build()

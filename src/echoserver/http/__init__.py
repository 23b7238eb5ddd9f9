"""
=============================================================================
HTTP PROTOCOL IMPLEMENTATION
=============================================================================

Translates between bytes on a TCP stream and structured HTTP messages.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ REQUEST PARSER (request.py)                                         │
    │ ─────────────────────────────────────────────────────────────────── │
    │ Input:   b"POST /x?a=1 HTTP/1.1\r\nHost: h\r\n..."  (head only)     │
    │ Output:  HTTPRequest(method="POST", path="/x", ...)                 │
    │                                                                      │
    │   • Any token method, raw (undecoded) path                          │
    │   • Lowercase header map AND original-case header list              │
    │   • Proxy-aware ip / ips / hostname / protocol / subdomains         │
    │   • Body left on the socket as a lazy stream                        │
    └─────────────────────────────────────────────────────────────────────┘

    ┌─────────────────────────────────────────────────────────────────────┐
    │ RESPONSE BUILDER (response.py)                                      │
    │ ─────────────────────────────────────────────────────────────────── │
    │ Input:   ResponseBuilder().status(418).json({...})                  │
    │ Output:  b"HTTP/1.1 418 I'm a teapot\r\n...\r\n\r\n{...}"            │
    └─────────────────────────────────────────────────────────────────────┘

    ┌─────────────────────────────────────────────────────────────────────┐
    │ STATUS CODES (status_codes.py)                                      │
    │ ─────────────────────────────────────────────────────────────────── │
    │ Reason phrases for every registered code, "Unknown" for the rest    │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, TlsSession
from .response import HTTPResponse, ResponseBuilder, error_response, format_http_date
from .status_codes import HTTPStatus, reason_phrase, has_body


__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "TlsSession",

    # Response building
    "HTTPResponse",
    "ResponseBuilder",
    "error_response",
    "format_http_date",

    # Status codes
    "HTTPStatus",
    "reason_phrase",
    "has_body",
]

"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses the head of an HTTP/1.1 request (request line + headers) into a
structured HTTPRequest. The body is NOT part of the parse: it stays on the
socket and is exposed as a lazy byte stream, because the echo server must
be able to count, decompress and cap it while it is being read.

=============================================================================
HTTP REQUEST ANATOMY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     HTTP REQUEST STRUCTURE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   POST /api/users?page=1&page=2 HTTP/1.1\r\n    ← request line      │
    │   Host: api.example.com:8080\r\n                ← headers           │
    │   X-Forwarded-For: 203.0.113.7, 10.0.0.2\r\n                        │
    │   Cookie: session=abc123; theme=dark\r\n                            │
    │   Content-Length: 13\r\n                                            │
    │   \r\n                                          ← end of head       │
    │   {"name":"Al"}                                 ← body (streamed)   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHAT AN ECHO SERVER NEEDS FROM A PARSER
=============================================================================

A normal server parses a request to route it. An echo server parses it to
REFLECT it, which changes a few rules:

1. ANY METHOD IS VALID
   "PURGE", "PROPFIND", "BREW"... any RFC 7230 token is echoed back.

2. THE PATH IS NOT DECODED
   "/a%20b" is reflected as "/a%20b". Nothing is served from disk, so
   there is no traversal check either.

3. ORIGINAL HEADER CASING IS KEPT
   Lookups use lowercase names, but the raw (name, value) list is kept
   in arrival order so the echo can reproduce "X-Custom-Header" exactly.

4. PROXY HEADERS ARE TRUSTED
   hostname, ip, ips and protocol honour X-Forwarded-Host,
   X-Forwarded-For and X-Forwarded-Proto. A diagnostic reflector sitting
   behind a load balancer should report what the client sent.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Iterable, List, Tuple
from urllib.parse import parse_qs, urlsplit
import ipaddress
import re


class HTTPParseError(Exception):
    """
    Raised when an HTTP request head cannot be parsed.

    Carries the status code to send back before closing the connection:

        400 Bad Request                - Malformed request line or framing
        431 Header Fields Too Large    - Head exceeds MAX_HEADER_SIZE
        501 Not Implemented            - Unknown Transfer-Encoding
        505 HTTP Version Not Supported - Not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class TlsSession:
    """
    What the TLS layer knows about a connection, captured once after the
    handshake.

    A plain connection has no TlsSession at all (request.tls is None), so
    code that needs TLS facts checks for the variant instead of probing
    the socket for methods.

    Attributes:
        server_name: SNI host name the client asked for ("" if none).
        peer_certificate: Decoded client certificate, empty if none was sent.
        version: Negotiated protocol, e.g. "TLSv1.3".
        cipher: Negotiated cipher suite name.
    """

    server_name: str = ""
    peer_certificate: Dict[str, Any] = field(default_factory=dict)
    version: Optional[str] = None
    cipher: Optional[str] = None


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    =========================================================================
    ATTRIBUTES EXPLAINED
    =========================================================================

        method:         Request method exactly as sent ("GET", "PURGE")

        target:         Request-target as sent, e.g. "/a%20b?x=1"
                        Used by the access log

        path:           Path part of the target, NOT percent-decoded

        version:        "HTTP/1.1" or "HTTP/1.0"

        headers:        Lowercase name → value. Repeated headers are
                        joined with ", " (Cookie with "; ")

        raw_headers:    [(Name, value), ...] in arrival order, casing intact

        query_params:   "?a=1&a=2&b=3" → {"a": ["1", "2"], "b": ["3"]}

        stream:         Iterable of raw body chunks, read lazily from the
                        socket (transfer framing already removed)

        client_address: (ip, port) of the TCP peer

        tls:            TlsSession for HTTPS connections, None for HTTP

    =========================================================================
    """

    method: str
    path: str
    target: str = ""
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    raw_headers: List[Tuple[str, str]] = field(default_factory=list)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    stream: Iterable[bytes] = ()

    client_address: Tuple[str, int] = ("", 0)
    tls: Optional[TlsSession] = None

    # =========================================================================
    # HEADER ACCESSORS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default

    @property
    def content_type(self) -> Optional[str]:
        """
        Media type without parameters, lowercased.

        "application/json; charset=utf-8" → "application/json"
        """
        ct = self.headers.get("content-type", "").split(";")[0].strip().lower()
        return ct or None

    @property
    def is_json(self) -> bool:
        """True for application/json and any +json media type."""
        ct = self.content_type or ""
        return ct == "application/json" or ct.endswith("+json")

    @property
    def is_gzip(self) -> bool:
        """True when the body is declared gzip-encoded."""
        return self.headers.get("content-encoding", "").strip().lower() == "gzip"

    @property
    def is_chunked(self) -> bool:
        """True when the body uses chunked transfer coding."""
        te = self.headers.get("transfer-encoding", "")
        return te.lower().rsplit(",", 1)[-1].strip() == "chunked"

    @property
    def content_length(self) -> int:
        """Declared Content-Length, 0 if absent. Validated by the parser."""
        value = self.headers.get("content-length", "")
        return int(value.split(",")[0]) if value else 0

    @property
    def expects_continue(self) -> bool:
        """True when the client waits for "100 Continue" before the body."""
        return (self.headers.get("expect", "").lower() == "100-continue"
                and self.version == "HTTP/1.1")

    @property
    def is_keep_alive(self) -> bool:
        """
        Check if this connection should be kept alive.

        HTTP/1.1: keep alive unless "Connection: close"
        HTTP/1.0: close unless "Connection: keep-alive"
        """
        tokens = [t.strip() for t in self.headers.get("connection", "").lower().split(",")]

        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens

    # =========================================================================
    # CLIENT INFORMATION (proxy-aware)
    # =========================================================================

    @property
    def ips(self) -> List[str]:
        """
        Proxy chain from X-Forwarded-For, client first.

        "203.0.113.7, 10.0.0.2" → ["203.0.113.7", "10.0.0.2"]
        """
        value = self.headers.get("x-forwarded-for", "")
        return [ip.strip() for ip in value.split(",") if ip.strip()]

    @property
    def ip(self) -> str:
        """Originating client: first forwarded address, else the TCP peer."""
        ips = self.ips
        return ips[0] if ips else self.client_address[0]

    @property
    def host(self) -> str:
        """Host as seen by the client: X-Forwarded-Host first, then Host."""
        forwarded = self.headers.get("x-forwarded-host", "")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return self.headers.get("host", "")

    @property
    def hostname(self) -> str:
        """
        Host without the port.

            "api.example.com:8080" → "api.example.com"
            "[::1]:8080"           → "[::1]"
        """
        host = self.host
        if not host:
            return ""
        if host.startswith("["):
            end = host.find("]")
            return host[:end + 1] if end != -1 else ""
        return host.split(":")[0]

    @property
    def subdomains(self) -> List[str]:
        """
        Subdomain labels, most specific last, without the two top labels.

            "tobi.ferrets.example.com" → ["ferrets", "tobi"]
            "127.0.0.1"                → []
        """
        hostname = self.hostname
        try:
            ipaddress.ip_address(hostname.strip("[]"))
            return []
        except ValueError:
            pass
        return list(reversed(hostname.split(".")))[2:]

    @property
    def protocol(self) -> str:
        """
        "https" on TLS connections. Otherwise the first X-Forwarded-Proto
        value, defaulting to "http".
        """
        if self.tls is not None:
            return "https"
        proto = self.headers.get("x-forwarded-proto", "")
        if proto:
            return proto.split(",")[0].strip()
        return "http"


class RequestParser:
    """
    Parses a raw request head into an HTTPRequest.

    ==========================================================================
    PARSER ARCHITECTURE
    ==========================================================================

        Head bytes (everything before \\r\\n\\r\\n)
              │
              ▼
        ┌───────────────────────────────────────────────────────────────────┐
        │  1. Decode as ISO-8859-1 (never fails, bytes map 1:1)            │
        │  2. Parse request line  → 400 / 505                               │
        │  3. Parse header lines  → lowercase map + raw list                │
        │  4. Validate framing    → 400 / 501                               │
        └───────────────────────────────────────────────────────────────────┘
              │
              ▼
        HTTPRequest (body stream attached later by the connection)

    ==========================================================================
    """

    # tchar from RFC 7230 section 3.2.6
    TOKEN = r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+"

    REQUEST_LINE_PATTERN = re.compile(rf"^({TOKEN}) (\S+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(rf"^({TOKEN}):[ \t]*(.*?)[ \t]*$")

    def parse(
        self,
        head: bytes,
        client_address: Tuple[str, int] = ("", 0),
        tls: Optional[TlsSession] = None,
    ) -> HTTPRequest:
        """
        Parse a request head.

        Args:
            head: Request line and headers, without the blank line.
            client_address: TCP peer (ip, port).
            tls: Session facts for HTTPS connections.

        Returns:
            HTTPRequest with an empty body stream.

        Raises:
            HTTPParseError: If the head is malformed.
        """
        # ISO-8859-1 is the historical header charset and maps every byte,
        # so non-ASCII header bytes survive instead of raising.
        text = head.decode("iso-8859-1")
        lines = text.split("\r\n")

        # Tolerate leading empty lines (RFC 7230 3.5)
        while lines and not lines[0]:
            lines.pop(0)
        if not lines:
            raise HTTPParseError("Empty request")

        method, target, version = self._parse_request_line(lines[0])
        path, query_params = self._split_target(target)
        headers, raw_headers = self._parse_headers(lines[1:])

        request = HTTPRequest(
            method=method,
            path=path,
            target=target,
            version=version,
            headers=headers,
            raw_headers=raw_headers,
            query_params=query_params,
            client_address=client_address,
            tls=tls,
        )
        self._validate_framing(request)
        return request

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        """
        Parse "METHOD SP REQUEST-TARGET SP HTTP-VERSION".

        Raises:
            HTTPParseError: 400 for a malformed line, 505 for other versions.
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line[:100]!r}")

        method, target, version = match.groups()

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        return method, target, version

    @staticmethod
    def _split_target(target: str) -> Tuple[str, Dict[str, List[str]]]:
        """
        Split a request-target into (path, query_params).

            "/users?page=1&page=2" → ("/users", {"page": ["1", "2"]})
            "http://h/x?y=1"       → ("/x", {"y": ["1"]})
            "*"                    → ("*", {})
        """
        if target.startswith("/") or target == "*":
            path, _, query = target.partition("?")
            path = path.split("#", 1)[0]
        else:
            # absolute-form, used when talking to a proxy
            parts = urlsplit(target)
            path, query = parts.path or "/", parts.query

        return path or "/", parse_qs(query, keep_blank_values=True)

    def _parse_headers(self, lines: List[str]) -> Tuple[Dict[str, str], List[Tuple[str, str]]]:
        """
        Parse header lines.

        Returns both views of the headers:

            headers      {"x-custom": "a, b"}     lowercase, duplicates joined
            raw_headers  [("X-Custom", "a"),      original casing and order
                          ("x-custom", "b")]
        """
        headers: Dict[str, str] = {}
        raw_headers: List[Tuple[str, str]] = []

        for line in lines:
            if not line:
                continue

            # Obsolete line folding: continuation of the previous header
            if line[0] in (" ", "\t"):
                if raw_headers:
                    name, value = raw_headers[-1]
                    raw_headers[-1] = (name, f"{value} {line.strip()}".strip())
                    key = name.lower()
                    headers[key] = f"{headers[key]} {line.strip()}".strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line[:100]!r}")

            name, value = match.groups()
            raw_headers.append((name, value))

            key = name.lower()
            if key in headers:
                separator = "; " if key == "cookie" else ", "
                headers[key] = headers[key] + separator + value
            else:
                headers[key] = value

        return headers, raw_headers

    @staticmethod
    def _validate_framing(request: HTTPRequest) -> None:
        """
        Reject bodies whose length cannot be determined safely.

        Conflicting or non-numeric Content-Length values are a classic
        request smuggling vector, so they end the connection with 400.
        """
        te = request.headers.get("transfer-encoding")
        if te is not None and not request.is_chunked:
            raise HTTPParseError(f"Unsupported Transfer-Encoding: {te}", status_code=501)

        value = request.headers.get("content-length")
        if value is None or te is not None:
            return

        values = {v.strip() for v in value.split(",")}
        if len(values) != 1 or not re.fullmatch(r"[0-9]+", next(iter(values))):
            raise HTTPParseError(f"Invalid Content-Length: {value!r}")

"""
=============================================================================
HTTP STATUS CODES
=============================================================================

Status codes the server itself produces, plus reason phrases for ANY code
a client may ask for.

=============================================================================
WHY TWO THINGS?
=============================================================================

The echo server lets a client choose the response status:

    GET /?x-set-response-status-code=418 HTTP/1.1

    HTTP/1.1 418 I'm a teapot

So the status line must be built for arbitrary integers in [100, 600),
not only for the handful of codes our own code paths return. HTTPStatus
names the codes the server emits on its own (errors, preflight, 100
Continue). reason_phrase() covers everything else.

    ┌────────────────────────────────────────────────────────────────────┐
    │                      STATUS CODE CATEGORIES                        │
    ├────────┬───────────────────────────────────────────────────────────┤
    │  1xx   │ INFORMATIONAL  (100 Continue before a request body)       │
    │  2xx   │ SUCCESS        (200 echo, 204 CORS preflight)             │
    │  3xx   │ REDIRECTION    (only when a client asks for one)          │
    │  4xx   │ CLIENT ERRORS  (400 bad head, 413 body, 431 head size)    │
    │  5xx   │ SERVER ERRORS  (500 handler crash, 505 bad version)       │
    └────────┴───────────────────────────────────────────────────────────┘

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    Status codes emitted by the server's own code paths.

    IntEnum, so members compare and format as plain integers:

        >>> HTTPStatus.PAYLOAD_TOO_LARGE == 413
        True
        >>> HTTPStatus.PAYLOAD_TOO_LARGE.phrase
        'Payload Too Large'
    """

    CONTINUE = 100
    OK = 200
    NO_CONTENT = 204
    NOT_MODIFIED = 304
    BAD_REQUEST = 400
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413
    REQUEST_HEADER_FIELDS_TOO_LARGE = 431
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    SERVICE_UNAVAILABLE = 503
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase used in the status line."""
        return reason_phrase(self)


def reason_phrase(code: int) -> str:
    """
    Get the reason phrase for any status code.

    Per RFC 7230 reason phrases are informational only, so unregistered
    codes (e.g. 599) get "Unknown" rather than an error.
    """
    return _REASON_PHRASES.get(int(code), "Unknown")


def has_body(code: int) -> bool:
    """1xx, 204 and 304 responses never carry a body (RFC 7230 3.3.3)."""
    return not (100 <= code < 200 or code in (204, 304))


# =============================================================================
# REASON PHRASES (IANA HTTP Status Code Registry)
# =============================================================================

_REASON_PHRASES = {
    100: "Continue",
    101: "Switching Protocols",
    102: "Processing",
    103: "Early Hints",
    200: "OK",
    201: "Created",
    202: "Accepted",
    203: "Non-Authoritative Information",
    204: "No Content",
    205: "Reset Content",
    206: "Partial Content",
    207: "Multi-Status",
    208: "Already Reported",
    226: "IM Used",
    300: "Multiple Choices",
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    304: "Not Modified",
    305: "Use Proxy",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    407: "Proxy Authentication Required",
    408: "Request Timeout",
    409: "Conflict",
    410: "Gone",
    411: "Length Required",
    412: "Precondition Failed",
    413: "Payload Too Large",
    414: "URI Too Long",
    415: "Unsupported Media Type",
    416: "Range Not Satisfiable",
    417: "Expectation Failed",
    418: "I'm a teapot",
    421: "Misdirected Request",
    422: "Unprocessable Entity",
    423: "Locked",
    424: "Failed Dependency",
    425: "Too Early",
    426: "Upgrade Required",
    428: "Precondition Required",
    429: "Too Many Requests",
    431: "Request Header Fields Too Large",
    451: "Unavailable For Legal Reasons",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
    505: "HTTP Version Not Supported",
    506: "Variant Also Negotiates",
    507: "Insufficient Storage",
    508: "Loop Detected",
    510: "Not Extended",
    511: "Network Authentication Required",
}

"""
=============================================================================
RESPONSE OVERRIDES
=============================================================================

A client can reshape the response it gets back, per request, with a header
or with a query parameter of the same name:

    ┌──────────────────────────────┬─────────────────────────────────────┐
    │ x-set-response-status-code   │ status in [100, 600), else ignored  │
    │ x-set-response-delay-ms      │ sleep before answering, if > 0 and  │
    │                              │ at most MAX_DELAY_MS                │
    │ x-set-response-content-type  │ Content-Type, applied last          │
    │ response_body_only=true      │ raw body instead of the echo JSON   │
    │                              │ (query parameter only)              │
    └──────────────────────────────┴─────────────────────────────────────┘

The header wins when both are given:

    GET /?x-set-response-status-code=500 HTTP/1.1
    x-set-response-status-code: 418

    → 418

Invalid values never produce an error; they are simply not applied.

=============================================================================
"""

import re
from dataclasses import dataclass
from typing import Optional

from .http.request import HTTPRequest


STATUS_CODE = "x-set-response-status-code"
DELAY_MS = "x-set-response-delay-ms"
CONTENT_TYPE = "x-set-response-content-type"
BODY_ONLY = "response_body_only"

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

# Largest delay a 32-bit millisecond timer holds. Anything above is ignored.
MAX_DELAY_MS = 2 ** 31 - 1


def parse_int(value: Optional[str]) -> Optional[int]:
    """
    Lenient integer parsing: the leading integer of a string wins.

        "418"    → 418
        "418abc" → 418
        " 25"    → 25
        "abc"    → None
    """
    if not value:
        return None
    match = _LEADING_INT.match(value)
    if not match:
        return None
    try:
        return int(match.group(1))
    except ValueError:
        # More digits than int() accepts from a string
        return None


@dataclass(frozen=True)
class ResponseOverrides:
    """Per-request response overrides. None means "not requested"."""

    status: Optional[int] = None
    delay_ms: int = 0
    content_type: Optional[str] = None
    body_only: bool = False

    @classmethod
    def from_request(cls, request: HTTPRequest) -> "ResponseOverrides":
        status = parse_int(_lookup(request, STATUS_CODE))
        if status is not None and not 100 <= status < 600:
            status = None

        delay_ms = parse_int(_lookup(request, DELAY_MS)) or 0
        if not 0 < delay_ms <= MAX_DELAY_MS:
            delay_ms = 0

        return cls(
            status=status,
            delay_ms=delay_ms,
            content_type=_lookup(request, CONTENT_TYPE) or None,
            body_only=request.get_query(BODY_ONLY) == "true",
        )


def _lookup(request: HTTPRequest, name: str) -> Optional[str]:
    """Header first, then the first query value of the same name."""
    return request.get_header(name) or request.get_query(name)

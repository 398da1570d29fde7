"""
Rejection classification.

Maps the signal that accompanied a probe failure to a verdict a human can
act on.  Pure functions only -- the verdict is advisory text and never feeds
back into the search.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

# The HTTP client refused to process the response before a status line was
# available (e.g. a response header longer than the client's parser limit).
CLIENT_REJECTED = "client-rejected"

StatusSignal = Optional[Union[int, str]]

REQUEST = "request"
RESPONSE = "response"


class Verdict(Enum):
    STANDARD = "standard"
    NON_STANDARD = "non-standard"
    SERVER_ERROR = "server-error"
    TRANSPORT_RESET = "transport-reset"
    CLIENT_REJECTED = "client-rejected"
    OTHER = "other"


@dataclass(frozen=True)
class Classification:
    verdict: Verdict
    title: str
    detail: str

    @property
    def compliant(self) -> bool:
        return self.verdict is Verdict.STANDARD

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict.value,
            "title": self.title,
            "detail": self.detail,
        }


_STANDARD_REQUEST_CODES = {
    414: ("HTTP 414 URI Too Long", "correct RFC 9110 response for oversized URLs."),
    431: (
        "HTTP 431 Request Header Fields Too Large",
        "correct RFC 6585 response for oversized headers.",
    ),
}


def classify_rejection(status: StatusSignal, direction: str = REQUEST) -> Classification:
    """Return the verdict for *status* observed while probing *direction*."""
    if status is None:
        return Classification(
            Verdict.TRANSPORT_RESET,
            "Connection reset (no HTTP response)",
            "the server closed the connection without sending a status code.",
        )
    if status == CLIENT_REJECTED:
        return Classification(
            Verdict.CLIENT_REJECTED,
            "Rejected by the client",
            "the HTTP client refused to process the oversized response before "
            "a status code was observable; the intermediary may allow more.",
        )
    if not isinstance(status, int):
        raise TypeError(f"unsupported status signal: {status!r}")

    if direction == RESPONSE:
        if status == 502:
            return Classification(
                Verdict.STANDARD,
                "HTTP 502 Bad Gateway",
                "correct response when the upstream sends headers the proxy "
                "cannot accept.",
            )
        if status == 500:
            return Classification(
                Verdict.SERVER_ERROR,
                "HTTP 500 Internal Server Error",
                "the proxy rejected the upstream response, but 500 is "
                "semantically imprecise here (502 expected).",
            )
    elif status in _STANDARD_REQUEST_CODES:
        title, detail = _STANDARD_REQUEST_CODES[status]
        return Classification(Verdict.STANDARD, title, detail)

    if 400 <= status < 500:
        expected = "502" if direction == RESPONSE else "414 or 431"
        return Classification(
            Verdict.NON_STANDARD,
            f"HTTP {status}",
            f"rejection with a non-standard 4xx code (expected {expected}).",
        )
    if status >= 500:
        return Classification(
            Verdict.SERVER_ERROR,
            f"HTTP {status}",
            "server error response rather than a proper rejection code.",
        )
    return Classification(
        Verdict.OTHER,
        f"HTTP {status}",
        "request was answered but the payload did not arrive intact.",
    )


def header_size_advice(size: int) -> str:
    """Practical reading of a discovered header-size limit."""
    if size < 4096:
        return "Very restrictive. Will likely break modern authentication (OIDC/OAuth2 with JWTs)."
    if size < 16384:
        return "Minimal limit. May work for simple apps but insufficient for complex OIDC scenarios."
    if size < 65536:
        return "Good for most applications. Handles typical OIDC/OAuth2 authentication flows."
    if size < 131072:
        return "Generous limit. Accommodates complex OIDC scenarios with multiple tokens."
    if size < 524288:
        return "Very large limit (common for complex OIDC setups). Monitor for potential abuse."
    return "Extremely large limit. May indicate misconfiguration or potential DoS risk."

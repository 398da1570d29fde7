"""
Header character probes.

Request direction: a ``probe<char>probe`` value is sent in ``X-Test-Char``
and compared with what ``/echo`` reports.  Response direction: ``/hdr?byte=HH``
asks the server to place a byte at index 5 of ``x-charset-test`` and we check
what survives the trip back.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from .api import EchoInfo, ProxyAPI

logger = logging.getLogger(__name__)

PASSED = "passed"
STRIPPED = "stripped"
MODIFIED = "modified"
CLIENT_BLOCKED = "client-blocked"
REJECTED = "rejected"
SERVER_REJECTED = "server-rejected"
ERROR = "error"

PROBE_HEADER = "X-Test-Char"
PROBE_MARKER = "probe"
RESPONSE_HEADER = "x-charset-test"
BYTE_INDEX = len(PROBE_MARKER)


@dataclass(frozen=True)
class CharCase:
    label: str
    payload: str
    critical: bool = False        # header injection risk when forwarded


REQUEST_CASES: List[CharCase] = [
    CharCase("Null byte (0x00)", "\x00", critical=True),
    CharCase("Carriage Return (0x0D)", "\r", critical=True),
    CharCase("Line Feed (0x0A)", "\n", critical=True),
    CharCase("CRLF injection", "\r\nInjected-Header: malicious", critical=True),
    CharCase("Vertical Tab (0x0B)", "\x0b"),
    CharCase("Form Feed (0x0C)", "\x0c"),
    CharCase("Bell (0x07)", "\x07"),
    CharCase("Backspace (0x08)", "\x08"),
    CharCase("DEL (0x7F)", "\x7f"),
    CharCase("HTAB (0x09)", "\t"),
    CharCase("First high-ASCII (0x80)", "\x80"),
    CharCase("Latin-1 non-breaking space (0xA0)", "\xa0"),
    CharCase("Highest byte (0xFF)", "\xff"),
]

RESPONSE_BYTES: List[tuple] = [
    ("09", "0x09 (HTAB)"),
    ("80", "0x80 (first high-ASCII)"),
    ("a0", "0xA0 (Latin-1 non-breaking space)"),
    ("e9", "0xE9 (Latin-1 e-acute)"),
    ("fe", "0xFE"),
    ("ff", "0xFF (highest byte)"),
]


@dataclass
class CharResult:
    label: str
    direction: str
    outcome: str
    detail: str = ""
    critical: bool = False

    @property
    def filtered(self) -> bool:
        """True when the character did not get through unchanged."""
        return self.outcome != PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "direction": self.direction,
            "outcome": self.outcome,
            "detail": self.detail,
            "critical": self.critical,
        }


def _byte_hex(value: int) -> str:
    return f"0x{value:02X}"


# ---------------------------------------------------------------------------
# Request direction
# ---------------------------------------------------------------------------

def compare_echo(case: CharCase, echo: EchoInfo) -> CharResult:
    """Decide the outcome of a request-direction case from the echo."""
    expected = PROBE_MARKER + case.payload + PROBE_MARKER
    name = PROBE_HEADER.lower()

    def result(outcome: str, detail: str) -> CharResult:
        return CharResult(case.label, "request", outcome, detail, case.critical)

    if not echo.has_header(name):
        return result(STRIPPED, "Header absent in echo; the proxy removed it.")
    if echo.is_redacted(name):
        return result(MODIFIED, "Header arrived but the server redacted its value.")

    value = echo.header(name)
    if value is not None:
        if value == expected:
            return result(PASSED, "Character arrived at the server intact.")
        got = _byte_hex(ord(value[BYTE_INDEX])) if len(value) > BYTE_INDEX else "(too short)"
        return result(MODIFIED, f"Header forwarded but altered: got {got} at the probe position.")

    raw = echo.header_bytes(name)
    expected_raw = list(expected.encode("utf-8"))
    if raw == expected_raw:
        return result(PASSED, "Bytes arrived at the server intact.")
    if raw is None:
        return result(MODIFIED, "Header arrived longer than expected; the proxy may have appended data.")
    got = _byte_hex(raw[BYTE_INDEX]) if len(raw) > BYTE_INDEX else "(too short)"
    return result(MODIFIED, f"Header forwarded but altered: got {got} at the probe position.")


async def probe_request_char(api: ProxyAPI, case: CharCase) -> CharResult:
    value = PROBE_MARKER + case.payload + PROBE_MARKER
    try:
        echo = await api.echo(headers={PROBE_HEADER: value})
    except ValueError as exc:
        # aiohttp refuses CR/LF in header values before anything is sent.
        return CharResult(case.label, "request", CLIENT_BLOCKED, str(exc), case.critical)
    except aiohttp.ClientResponseError as exc:
        return CharResult(
            case.label, "request", REJECTED, f"Proxy answered HTTP {exc.status}.", case.critical
        )
    except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
        logger.debug("charset request probe %s failed: %r", case.label, exc)
        return CharResult(case.label, "request", ERROR, f"Request failed: {exc!r}", case.critical)
    return compare_echo(case, echo)


async def probe_request_chars(
    api: ProxyAPI, cases: Sequence[CharCase] = REQUEST_CASES
) -> List[CharResult]:
    return [await probe_request_char(api, c) for c in cases]


# ---------------------------------------------------------------------------
# Response direction
# ---------------------------------------------------------------------------

def compare_response_byte(label: str, expected: int, ok: bool, reason: str,
                          raw: Optional[bytes]) -> CharResult:
    def result(outcome: str, detail: str) -> CharResult:
        return CharResult(label, "response", outcome, detail)

    if not ok:
        return result(SERVER_REJECTED, f"The server cannot place this byte in a header ({reason}).")
    if raw is None:
        return result(STRIPPED, f"The proxy removed the {RESPONSE_HEADER} response header.")
    expected_len = 2 * len(PROBE_MARKER) + 1
    if len(raw) == expected_len and raw[BYTE_INDEX] == expected:
        return result(PASSED, f"Byte {_byte_hex(expected)} arrived in the response header intact.")
    got = _byte_hex(raw[BYTE_INDEX]) if len(raw) > BYTE_INDEX else "(header too short)"
    return result(
        MODIFIED,
        f"Header present but altered: expected {_byte_hex(expected)}, got {got} "
        f"(header length: {len(raw)}).",
    )


async def probe_response_byte(api: ProxyAPI, hex_byte: str, label: str) -> CharResult:
    try:
        echo = await api.response_byte(hex_byte)
    except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
        logger.debug("charset response probe %s failed: %r", hex_byte, exc)
        return CharResult(
            label, "response", ERROR,
            f"Request failed; the proxy may have blocked the response: {exc!r}",
        )
    return compare_response_byte(label, int(hex_byte, 16), echo.ok, echo.reason, echo.raw)


async def probe_response_bytes(api: ProxyAPI, cases: Sequence[tuple] = RESPONSE_BYTES) -> List[CharResult]:
    return [await probe_response_byte(api, h, label) for h, label in cases]


async def probe_charset(api: ProxyAPI) -> List[CharResult]:
    """Both directions, request cases first."""
    results = await probe_request_chars(api)
    results.extend(await probe_response_bytes(api))
    return results

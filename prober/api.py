"""
Test-server API client.

Wraps the diagnostic endpoints exposed behind the intermediary under test
(``/echo``, ``/hdr``, ``/lb``, ``/ws``, ``/sse``).  All HTTP work goes through
a single ``aiohttp.ClientSession`` managed via async-context-manager protocol
(``async with ProxyAPI(url) as api: ...``).
"""
from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from .constants import (
    CLIENT_HEADER_LIMIT,
    COMMON_HEADERS,
    DEFAULT_BASE_URL,
    ECHO_PATH,
    HDR_PATH,
    LB_PATH,
    SSE_PATH,
    WS_PATH,
)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass
class NodeInfo:
    """Identity of the backend node that served a request."""

    hostname: str = ""
    node_name: str = ""
    hostname_hash: List[int] = field(default_factory=list)
    node_name_hash: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> NodeInfo:
        return cls(
            hostname=data.get("hostname") or "",
            node_name=data.get("node_name") or "",
            hostname_hash=list(data.get("hostname_hash") or []),
            node_name_hash=list(data.get("node_name_hash") or []),
        )

    @property
    def label(self) -> str:
        return self.node_name or self.hostname or "?"

    @property
    def fingerprint(self) -> str:
        """Short hex tag derived from the node (or host) hash."""
        digest = self.node_name_hash or self.hostname_hash
        return bytes(b & 0xFF for b in digest[:4]).hex()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "node_name": self.node_name,
            "fingerprint": self.fingerprint,
        }


@dataclass
class EchoInfo:
    """What the test server saw of our request."""

    headers: Dict[str, Any] = field(default_factory=dict)
    path: str = ""
    query: str = ""
    protocol: str = ""
    client_addr: str = ""
    node: NodeInfo = field(default_factory=NodeInfo)

    @classmethod
    def from_dict(cls, data: dict) -> EchoInfo:
        headers = data.get("headers") or {}
        return cls(
            headers={str(k).lower(): v for k, v in headers.items()},
            path=data.get("path") if isinstance(data.get("path"), str) else "",
            query=data.get("query") if isinstance(data.get("query"), str) else "",
            protocol=data.get("protocol") or "",
            client_addr=data.get("client_addr") or "",
            node=NodeInfo.from_dict(data),
        )

    # -- Header accessors ---------------------------------------------------

    def has_header(self, name: str) -> bool:
        return name.lower() in self.headers

    def header(self, name: str) -> Optional[str]:
        """Plain string value, or None when absent, redacted or binary."""
        value = self.headers.get(name.lower())
        return value if isinstance(value, str) else None

    def header_bytes(self, name: str) -> Optional[List[int]]:
        """Raw bytes of a non-UTF-8 header, when the server included them."""
        value = self.headers.get(name.lower())
        if isinstance(value, dict) and value.get("binary") and isinstance(value.get("data"), list):
            return [int(b) for b in value["data"]]
        return None

    def is_redacted(self, name: str) -> bool:
        value = self.headers.get(name.lower())
        return isinstance(value, dict) and bool(value.get("redacted"))


@dataclass
class ByteEcho:
    """Result of asking the server to emit one byte inside a response header."""

    ok: bool
    reason: str = ""
    raw: Optional[bytes] = None      # undecoded ``x-charset-test`` value


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------

class ProxyAPI:
    """Async context-manager around the test server's endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        client_header_limit: int = CLIENT_HEADER_LIMIT,
        connect_timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client_header_limit = client_header_limit
        self.connect_timeout = connect_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    # -- Context manager ----------------------------------------------------

    async def __aenter__(self) -> ProxyAPI:
        self._session = aiohttp.ClientSession(
            headers=COMMON_HEADERS,
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.connect_timeout),
            max_line_size=self.client_header_limit,
            max_field_size=self.client_header_limit,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    # -- URLs ---------------------------------------------------------------

    @property
    def echo_url(self) -> str:
        return self.base_url + ECHO_PATH

    @property
    def hdr_url(self) -> str:
        return self.base_url + HDR_PATH

    @property
    def lb_url(self) -> str:
        return self.base_url + LB_PATH

    @property
    def sse_url(self) -> str:
        return self.base_url + SSE_PATH

    @property
    def ws_url(self) -> str:
        parts = urlsplit(self.base_url + WS_PATH)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit((scheme,) + tuple(parts[1:]))

    # -- Internal helpers ---------------------------------------------------

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "ProxyAPI must be used as an async context manager "
                "(async with ProxyAPI(url) as api: ...)"
            )
        return self._session

    # -- Public methods -----------------------------------------------------

    async def echo(
        self,
        headers: Optional[Mapping[str, str]] = None,
        path_suffix: str = "",
    ) -> EchoInfo:
        """GET /echo and parse what the server saw.  Raises on non-2xx."""
        url = self.echo_url + (f"/{path_suffix}" if path_suffix else "")
        async with self.session.get(url, headers=headers) as resp:
            resp.raise_for_status()
            return EchoInfo.from_dict(await resp.json(content_type=None))

    async def lb(self) -> NodeInfo:
        """GET /lb with a cache-busting parameter."""
        params = {"cb": f"{time.time():.6f}{random.random():.6f}"}
        async with self.session.get(self.lb_url, params=params) as resp:
            resp.raise_for_status()
            return NodeInfo.from_dict(await resp.json(content_type=None))

    async def response_byte(self, hex_byte: str) -> ByteEcho:
        """GET /hdr?byte=HH: the server places that byte in ``x-charset-test``."""
        async with self.session.get(self.hdr_url, params={"byte": hex_byte}) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
            raw = None
            for name, value in resp.raw_headers:
                if name.lower() == b"x-charset-test":
                    raw = value
                    break
            return ByteEcho(
                ok=bool(data.get("ok")),
                reason=data.get("reason") or "",
                raw=raw,
            )

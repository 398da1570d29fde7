"""
Connection-resilience manager for the long-lived push channels.

Two transports are watched side by side:

    WebSocket  ws(s)://{base}/ws   first message {"type": "headers", ...}
    SSE        http(s)://{base}/sse  first event  ``event: headers``

Each transport is driven by a ``ConnectionSession``.  The lifecycle logic
itself lives in ``ConnectionMachine``, a plain state machine that turns
events into a list of ``Effect`` values and performs no I/O, so it can be
exercised without sockets or timers::

    CONNECTING --open--> OPEN --close--> CLOSED --(2 s)--> CONNECTING
    CONNECTING --close--> FAILED --(2 s)--> CONNECTING

There is no terminal state: a session reconnects until it is stopped.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
import websockets
import websockets.exceptions

from .constants import (
    COMMON_HEADERS,
    HISTORY_CAPACITY,
    RECONNECT_DELAY,
    SSE_CONNECT_TIMEOUT,
    SSE_READ_TIMEOUT,
    TICK_INTERVAL,
    WS_OPEN_TIMEOUT,
)
from .history import ConnectionEntry, ConnectionHistory, TransportType
from .stats import format_duration

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events and effects
# ---------------------------------------------------------------------------

class SessionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"


class EventKind(Enum):
    OPEN = "open"
    HEADERS = "headers"
    MESSAGE = "message"
    CLOSE = "close"
    TICK = "tick"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    at: float                 # wall-clock seconds
    data: Any = None


class EffectKind(Enum):
    STATUS = "status"
    SERVER_INFO = "server_info"
    PUBLISH = "publish"
    APPEND_HISTORY = "append_history"
    UPSERT_ERROR = "upsert_error"
    START_TICK = "start_tick"
    STOP_TICK = "stop_tick"
    RECONNECT = "reconnect"


@dataclass(frozen=True)
class Effect:
    kind: EffectKind
    text: str = ""
    badge: str = ""           # empty = keep the current badge
    entry: Optional[ConnectionEntry] = None
    data: Any = None
    delay: float = 0.0


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class ConnectionMachine:
    """
    Lifecycle of one logical persistent connection.

    Invariants:
      - connection ids are strictly increasing and never reused
      - failure_attempts resets only on OPEN
      - history is only written after the first successful OPEN
    """

    FAILURE_TEXT = "Failed to connect"

    def __init__(
        self,
        transport_type: TransportType,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self.transport_type = transport_type
        self.reconnect_delay = reconnect_delay
        self.state = SessionState.CLOSED
        self.connection_id = 0
        self.failure_attempts = 0
        self.ever_connected = False
        self.current_entry: Optional[ConnectionEntry] = None
        self._attempt_started = 0.0

    @property
    def label(self) -> str:
        return self.transport_type.value

    def begin_attempt(self, now: float) -> List[Effect]:
        """Enter CONNECTING with a freshly allocated connection id."""
        self.connection_id += 1
        self._attempt_started = now
        self.current_entry = None
        self.state = SessionState.CONNECTING
        return [
            Effect(
                EffectKind.STATUS,
                badge="CONNECTING...",
                text=f"Attempting {self.label} connection #{self.connection_id}...",
            )
        ]

    def transition(self, event: Event) -> Tuple[SessionState, List[Effect]]:
        """Apply *event* and return the new state plus the effects to run."""
        handler = {
            EventKind.OPEN: self._on_open,
            EventKind.HEADERS: self._on_headers,
            EventKind.MESSAGE: self._on_message,
            EventKind.CLOSE: self._on_close,
            EventKind.TICK: self._on_tick,
        }[event.kind]
        return self.state, handler(event)

    # -- Handlers -----------------------------------------------------------

    def _on_open(self, event: Event) -> List[Effect]:
        if self.state is not SessionState.CONNECTING:
            return []
        self.state = SessionState.OPEN
        self.ever_connected = True
        self.failure_attempts = 0
        self.current_entry = ConnectionEntry(
            id=self.connection_id,
            type=self.transport_type,
            started_at=self._attempt_started,
            active=True,
        )
        return [
            Effect(
                EffectKind.STATUS,
                badge="CONNECTED",
                text=f"{self.label} connected successfully",
            ),
            Effect(EffectKind.PUBLISH, entry=self.current_entry.copy()),
            Effect(EffectKind.START_TICK),
        ]

    def _on_headers(self, event: Event) -> List[Effect]:
        if self.state is not SessionState.OPEN:
            return []
        return [
            Effect(EffectKind.SERVER_INFO, data=event.data),
            Effect(EffectKind.STATUS, text="Headers received"),
        ]

    def _on_message(self, event: Event) -> List[Effect]:
        if self.state is not SessionState.OPEN:
            return []
        return [Effect(EffectKind.STATUS, text=f"Last: {event.data}")]

    def _on_tick(self, event: Event) -> List[Effect]:
        if self.state is not SessionState.OPEN or self.current_entry is None:
            return []
        self.current_entry.duration_seconds = self._elapsed(event.at)
        return [Effect(EffectKind.PUBLISH, entry=self.current_entry.copy())]

    def _on_close(self, event: Event) -> List[Effect]:
        if self.state not in (SessionState.CONNECTING, SessionState.OPEN):
            return []

        duration = self._elapsed(event.at)
        delay_text = f"{self.reconnect_delay:g}s"
        effects: List[Effect] = []

        if self.state is SessionState.OPEN:
            entry = self.current_entry
            entry.duration_seconds = duration
            entry.active = False
            self.current_entry = None
            self.state = SessionState.CLOSED
            effects += [
                Effect(EffectKind.STOP_TICK),
                Effect(
                    EffectKind.STATUS,
                    badge="DISCONNECTED",
                    text=f"Connection closed after {format_duration(duration)}. "
                         f"Reconnecting in {delay_text}...",
                ),
                Effect(EffectKind.APPEND_HISTORY, entry=entry.copy()),
                Effect(EffectKind.PUBLISH, entry=None),
            ]
        else:
            self.state = SessionState.FAILED
            if self.ever_connected:
                self.failure_attempts += 1
                entry = ConnectionEntry(
                    id=self.connection_id,
                    type=self.transport_type,
                    started_at=self._attempt_started,
                    duration_seconds=duration,
                    error=self.FAILURE_TEXT,
                    attempts=self.failure_attempts,
                )
                effects += [
                    Effect(
                        EffectKind.STATUS,
                        badge="FAILED",
                        text=f"Failed to reconnect (attempt #{self.connection_id}). "
                             f"Retrying in {delay_text}...",
                    ),
                    Effect(EffectKind.UPSERT_ERROR, entry=entry),
                ]
            else:
                effects.append(
                    Effect(
                        EffectKind.STATUS,
                        badge="FAILED",
                        text=f"Connection attempt #{self.connection_id} failed. "
                             f"Retrying in {delay_text}...",
                    )
                )

        effects.append(Effect(EffectKind.RECONNECT, delay=self.reconnect_delay))
        return effects

    def _elapsed(self, now: float) -> int:
        return max(0, int(now - self._attempt_started))


# ---------------------------------------------------------------------------
# Server-sent events decoding
# ---------------------------------------------------------------------------

_NEWLINE = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class SSEEvent:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None


class SSEDecoder:
    """Incremental ``text/event-stream`` parser (WHATWG field rules)."""

    def __init__(self) -> None:
        self._buffer = ""
        self._event = ""
        self._data: List[str] = []
        self._last_id: Optional[str] = None

    def feed(self, chunk: str) -> List[SSEEvent]:
        self._buffer += chunk
        events: List[SSEEvent] = []

        while True:
            m = _NEWLINE.search(self._buffer)
            if m is None:
                break
            # A trailing CR may be the first half of a CRLF split across chunks.
            if m.group() == "\r" and m.end() == len(self._buffer):
                break
            line = self._buffer[:m.start()]
            self._buffer = self._buffer[m.end():]
            event = self._process_line(line)
            if event is not None:
                events.append(event)

        return events

    def _process_line(self, line: str) -> Optional[SSEEvent]:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id" and "\0" not in value:
            self._last_id = value
        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        if not self._data:
            self._event = ""
            return None
        event = SSEEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
        )
        self._event = ""
        self._data = []
        return event


def parse_envelope(text: str) -> Tuple[EventKind, Any]:
    """Split a pushed message into the headers envelope or opaque text."""
    try:
        data = json.loads(text)
    except ValueError:
        return EventKind.MESSAGE, text
    if isinstance(data, dict) and data.get("type") == "headers":
        return EventKind.HEADERS, data
    return EventKind.MESSAGE, text


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

Emit = Callable[..., None]


class WebSocketTransport:
    """Full-duplex socket on ``/ws``."""

    type = TransportType.WEBSOCKET

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        open_timeout: float = WS_OPEN_TIMEOUT,
    ) -> None:
        self.url = url
        self.headers = headers if headers is not None else COMMON_HEADERS
        self.open_timeout = open_timeout

    async def run(self, emit: Emit) -> Optional[str]:
        """Connect and stream messages.  Returns a close reason, if any."""
        try:
            async with websockets.connect(
                self.url,
                additional_headers=self.headers,
                open_timeout=self.open_timeout,
                close_timeout=2,
            ) as ws:
                emit(EventKind.OPEN)
                async for message in ws:
                    if isinstance(message, bytes):
                        message = message.decode("utf-8", errors="replace")
                    kind, data = parse_envelope(message)
                    emit(kind, data)
        except asyncio.TimeoutError:
            return "open timeout"
        except websockets.exceptions.ConnectionClosed as exc:
            return f"connection closed: {exc}"
        except (websockets.exceptions.WebSocketException, OSError) as exc:
            return str(exc) or type(exc).__name__
        return None


class SSETransport:
    """Server-push stream on ``/sse``."""

    type = TransportType.SSE

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        connect_timeout: float = SSE_CONNECT_TIMEOUT,
        read_timeout: Optional[float] = SSE_READ_TIMEOUT,
    ) -> None:
        self.url = url
        self.headers = headers if headers is not None else COMMON_HEADERS
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

    async def run(self, emit: Emit) -> Optional[str]:
        timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )
        request_headers = {**self.headers, "Accept": "text/event-stream"}

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url, headers=request_headers) as resp:
                    content_type = resp.headers.get("Content-Type", "")
                    if resp.status != 200 or not content_type.startswith("text/event-stream"):
                        return f"HTTP {resp.status} ({content_type or 'no content type'})"

                    emit(EventKind.OPEN)
                    decoder = SSEDecoder()
                    async for raw in resp.content:
                        for ev in decoder.feed(raw.decode("utf-8", errors="replace")):
                            self._emit_event(emit, ev)
            return "stream ended"
        except asyncio.TimeoutError:
            return "read timeout"
        except (aiohttp.ClientError, OSError) as exc:
            return str(exc) or type(exc).__name__

    @staticmethod
    def _emit_event(emit: Emit, ev: SSEEvent) -> None:
        if ev.event == "headers":
            try:
                emit(EventKind.HEADERS, json.loads(ev.data))
                return
            except ValueError:
                logger.debug("SSE headers event is not JSON: %.80s", ev.data)
        emit(EventKind.MESSAGE, ev.data)


# ---------------------------------------------------------------------------
# Session driver
# ---------------------------------------------------------------------------

class ConnectionSession:
    """
    Runs one transport forever through a ``ConnectionMachine``.

    The transport task and the 1 s ticker both push ``Event`` objects into a
    queue; this driver is the only consumer, so effects are applied one at a
    time and the shared history never needs locking.
    """

    def __init__(
        self,
        machine: ConnectionMachine,
        transport,  # noqa: ANN001 (WebSocketTransport | SSETransport)
        history: ConnectionHistory,
        tick_interval: float = TICK_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.machine = machine
        self.transport = transport
        self.history = history
        self.tick_interval = tick_interval
        self.clock = clock

        self.badge = ""
        self.status_text = ""
        self.server_info: Optional[dict] = None
        self.attempts = 0

        self.on_status: Optional[Callable[[ConnectionSession], None]] = None
        self.on_update: Optional[Callable[[ConnectionSession], None]] = None
        self.on_server_info: Optional[Callable[[ConnectionSession, dict], None]] = None

        self._task: Optional[asyncio.Task] = None

    @property
    def transport_type(self) -> TransportType:
        return self.machine.transport_type

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Cancel the session; the only way it ever ends."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run(self, max_attempts: Optional[int] = None) -> None:
        """Connect, wait for the close, back off, repeat.  Forever by default."""
        while max_attempts is None or self.attempts < max_attempts:
            self.attempts += 1
            delay = await self._run_attempt()
            await asyncio.sleep(delay)

    # -- Internals ----------------------------------------------------------

    async def _run_attempt(self) -> float:
        queue: asyncio.Queue = asyncio.Queue()
        self._apply_all(self.machine.begin_attempt(self.clock()))

        pump = asyncio.create_task(self._pump(queue))
        ticker: Optional[asyncio.Task] = None
        delay: Optional[float] = None

        try:
            while delay is None:
                event = await queue.get()
                _, effects = self.machine.transition(event)
                for effect in effects:
                    if effect.kind is EffectKind.START_TICK:
                        ticker = asyncio.create_task(self._tick(queue))
                    elif effect.kind is EffectKind.STOP_TICK:
                        if ticker is not None:
                            ticker.cancel()
                    elif effect.kind is EffectKind.RECONNECT:
                        delay = effect.delay
                    else:
                        self._apply(effect)
        finally:
            tasks = [t for t in (pump, ticker) if t is not None]
            for t in tasks:
                if not t.done():
                    t.cancel()
            for outcome in await asyncio.gather(*tasks, return_exceptions=True):
                if isinstance(outcome, Exception):
                    logger.warning("%s transport failed: %r", self.machine.label, outcome)

        return delay

    async def _pump(self, queue: asyncio.Queue) -> None:
        def emit(kind: EventKind, data: Any = None) -> None:
            queue.put_nowait(Event(kind, self.clock(), data))

        reason: Optional[str] = "transport error"
        try:
            reason = await self.transport.run(emit)
            if reason:
                logger.debug(
                    "%s #%d closed: %s", self.machine.label, self.machine.connection_id, reason
                )
        finally:
            # Every attempt ends with exactly one CLOSE, whatever the transport did.
            emit(EventKind.CLOSE, reason)

    async def _tick(self, queue: asyncio.Queue) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            queue.put_nowait(Event(EventKind.TICK, self.clock()))

    def _apply_all(self, effects: List[Effect]) -> None:
        for effect in effects:
            self._apply(effect)

    def _apply(self, effect: Effect) -> None:
        if effect.kind is EffectKind.STATUS:
            if effect.badge:
                self.badge = effect.badge
            self.status_text = effect.text
            logger.info("%s: %s", self.machine.label, effect.text)
            if self.on_status:
                self.on_status(self)
        elif effect.kind is EffectKind.SERVER_INFO:
            self.server_info = effect.data
            if self.on_server_info:
                self.on_server_info(self, effect.data)
        elif effect.kind is EffectKind.APPEND_HISTORY:
            self.history.append(effect.entry)
            self._notify()
        elif effect.kind is EffectKind.UPSERT_ERROR:
            self.history.upsert_error(effect.entry)
            self._notify()
        elif effect.kind is EffectKind.PUBLISH:
            self._notify()

    def _notify(self) -> None:
        if self.on_update:
            self.on_update(self)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ConnectionRegistry:
    """Owns the shared history and every session writing into it."""

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        self.history = ConnectionHistory(capacity)
        self.sessions: List[ConnectionSession] = []
        self.on_update: Optional[Callable[[ConnectionRegistry], None]] = None
        self._stop_requested: Optional[asyncio.Event] = None

    def add(
        self,
        transport,  # noqa: ANN001
        reconnect_delay: float = RECONNECT_DELAY,
        tick_interval: float = TICK_INTERVAL,
    ) -> ConnectionSession:
        machine = ConnectionMachine(transport.type, reconnect_delay=reconnect_delay)
        session = ConnectionSession(machine, transport, self.history, tick_interval=tick_interval)
        session.on_update = self._session_updated
        self.sessions.append(session)
        return session

    def current_entries(self) -> List[ConnectionEntry]:
        return [
            s.machine.current_entry.copy()
            for s in self.sessions
            if s.machine.current_entry is not None
        ]

    def snapshot(self) -> List[ConnectionEntry]:
        """Live and finished entries, newest first -- what a display shows."""
        return self.history.merge(self.current_entries())

    async def run(self, duration: Optional[float] = None) -> None:
        """Run every session for *duration* seconds, or until ``request_stop``."""
        tasks = [s.start() for s in self.sessions]
        self._stop_requested = asyncio.Event()
        waiter = asyncio.ensure_future(self._stop_requested.wait())
        try:
            done, _ = await asyncio.wait(
                tasks + [waiter], timeout=duration or None,
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in done:
                if task is not waiter:
                    task.result()
        finally:
            waiter.cancel()
            await self.stop()

    def request_stop(self) -> None:
        """Make a running ``run`` return; safe to call from a signal handler."""
        if self._stop_requested is not None:
            self._stop_requested.set()

    async def stop(self) -> None:
        for s in self.sessions:
            await s.stop()

    def _session_updated(self, session: ConnectionSession) -> None:
        if self.on_update:
            self.on_update(self)

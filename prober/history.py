"""
Connection history.

A bounded, most-recent-first log of persistent-connection lifetimes shared by
the WebSocket and SSE sessions.  Entries live in memory only; the log is owned
by whoever creates it (normally a ``ConnectionRegistry``), so independent
runs never see each other's entries.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .constants import HISTORY_CAPACITY
from .stats import format_duration


class TransportType(Enum):
    WEBSOCKET = "WebSocket"
    SSE = "SSE"

    @property
    def short(self) -> str:
        return "SSE" if self is TransportType.SSE else "WS"


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

@dataclass
class ConnectionEntry:
    """One observed connection lifetime (live or finished)."""

    id: int
    type: TransportType
    started_at: float                # epoch seconds of the connect attempt
    duration_seconds: int = 0
    active: bool = False
    error: Optional[str] = None
    attempts: int = 0                # consecutive failures, only with ``error``

    def copy(self) -> ConnectionEntry:
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "started_at": datetime.fromtimestamp(self.started_at).isoformat(),
            "duration_seconds": self.duration_seconds,
            "active": self.active,
        }
        if self.error:
            result["error"] = self.error
            result["attempts"] = self.attempts
        return result


# ---------------------------------------------------------------------------
# Log
# ---------------------------------------------------------------------------

class ConnectionHistory:
    """
    Bounded history of finished connections.

    Invariants:
      - never more than ``capacity`` entries; the oldest are evicted first
      - at most one error entry per transport type; a new failure replaces it
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: List[ConnectionEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[ConnectionEntry]:
        """Snapshot, most recent first."""
        return list(self._entries)

    def append(self, entry: ConnectionEntry) -> None:
        """Record a finished connection as the most recent entry."""
        self._entries.insert(0, entry)
        self.evict_overflow()

    def upsert_error(self, entry: ConnectionEntry) -> bool:
        """
        Record a failed attempt, replacing this transport's error entry.

        Returns True when an existing error entry was replaced rather than a
        new one added.
        """
        if not entry.error:
            raise ValueError("upsert_error() needs an entry with an error")

        kept = [e for e in self._entries if not (e.error and e.type is entry.type)]
        replaced = len(kept) != len(self._entries)
        kept.insert(0, entry)
        self._entries = kept
        self.evict_overflow()
        return replaced

    def evict_overflow(self) -> int:
        """Drop entries beyond capacity.  Returns how many were removed."""
        excess = len(self._entries) - self.capacity
        if excess <= 0:
            return 0
        del self._entries[self.capacity:]
        return excess

    def merge(self, live: Iterable[Optional[ConnectionEntry]]) -> List[ConnectionEntry]:
        """Live entries plus history, newest connect attempt first."""
        merged = [e for e in live if e is not None] + self._entries
        merged.sort(key=lambda e: e.started_at, reverse=True)
        return merged

    def error_entries(self, transport: Optional[TransportType] = None) -> List[ConnectionEntry]:
        return [
            e for e in self._entries
            if e.error and (transport is None or e.type is transport)
        ]


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def entry_status(entry: ConnectionEntry) -> str:
    if entry.active:
        return "Active"
    if entry.error:
        text = f"Error: {entry.error}"
        if entry.attempts > 1:
            text += f" ({entry.attempts} attempts)"
        return text
    return "Closed normally"


def format_history_rows(entries: List[ConnectionEntry]) -> List[dict]:
    """
    Flatten entries into dicts for tabular display.  Each dict has:
    time, id, type, duration, status, state.
    """
    rows = []
    for e in entries:
        rows.append({
            "time": datetime.fromtimestamp(e.started_at).strftime("%H:%M:%S"),
            "id": e.id,
            "type": e.type.short,
            "duration": format_duration(e.duration_seconds),
            "status": entry_status(e),
            "state": "active" if e.active else "error" if e.error else "closed",
        })
    return rows

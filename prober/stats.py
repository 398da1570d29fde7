"""
Formatting and small aggregation helpers.

Pure functions -- no I/O, no side effects.
"""
from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, Optional


def format_bytes(size: float) -> str:
    """Human-readable byte count (binary units, two decimals)."""
    if size == 0:
        return "0 Bytes"
    if size < 1024:
        return f"{int(size)} Bytes"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def format_duration(seconds: float) -> str:
    """``42s`` below a minute, ``3m 5s`` above."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    mins, secs = divmod(seconds, 60)
    return f"{mins}m {secs}s"


def format_rate(bytes_per_second: float) -> str:
    return f"{format_bytes(bytes_per_second)}/s"


def format_status(status) -> str:  # noqa: ANN001 (StatusSignal)
    if status is None:
        return "reset"
    if isinstance(status, int):
        return f"HTTP {status}"
    return str(status)


def count_nodes(names: Iterable[Optional[str]]) -> Dict[str, int]:
    """Occurrences per node name, most frequent first.  ``None`` is skipped."""
    counts = Counter(n for n in names if n)
    return dict(counts.most_common())

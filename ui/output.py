"""
Output formatting -- JSON export and plain text.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from prober.boundary import ProbeResult
from prober.charset import CharResult
from prober.history import ConnectionEntry
from prober.lb import LoadBalancerResult
from prober.stats import format_bytes, format_status

REPORT_VERSION = 1


def create_report_json(
    base_url: str,
    probes: Optional[List[ProbeResult]] = None,
    charset: Optional[List[CharResult]] = None,
    lb: Optional[LoadBalancerResult] = None,
    connections: Optional[List[ConnectionEntry]] = None,
    bandwidth: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """Build the JSON report; sections that did not run are omitted."""
    result: Dict[str, Any] = {
        "version": REPORT_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "target": base_url,
    }
    if probes:
        result["limits"] = [p.to_dict() for p in probes]
    if charset:
        result["charset"] = [c.to_dict() for c in charset]
    if lb is not None:
        result["load_balancer"] = lb.to_dict()
    if connections:
        result["connections"] = [e.to_dict() for e in connections]
    if bandwidth:
        result["bandwidth_bps"] = {k: round(v, 1) for k, v in bandwidth.items()}
    return result


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except OSError as exc:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise OSError(f"Failed to save JSON to {filepath}: {exc}") from exc


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------

def _limit_line(p: ProbeResult) -> str:
    if not p.limit_found:
        return f"{p.label}: >= {format_bytes(p.max_working_size)} (no rejection up to ceiling)"
    line = f"{p.label}: {format_bytes(p.max_working_size)} (rejected with {format_status(p.rejection_status)})"
    if p.classification is not None:
        line += f" [{p.classification.verdict.value}]"
    return line


def format_text_result(
    base_url: str,
    probes: Optional[List[ProbeResult]] = None,
    charset: Optional[List[CharResult]] = None,
    lb: Optional[LoadBalancerResult] = None,
    connections: Optional[List[ConnectionEntry]] = None,
) -> str:
    sep = "=" * 50
    mid = "-" * 50
    lines = [sep, "Proxy Probe Results", sep, f"Target: {base_url}"]

    if probes:
        lines.append(mid)
        lines.extend(_limit_line(p) for p in probes)
    if charset:
        lines.append(mid)
        lines.extend(f"{c.direction} {c.label}: {c.outcome}" for c in charset)
    if lb is not None:
        lines.append(mid)
        dist = ", ".join(f"{name}={count}" for name, count in lb.distribution().items())
        lines.append(f"Load balancer: {lb.distinct_nodes} node(s) {dist}".rstrip())
        if lb.errors:
            lines.append(f"Load balancer errors: {lb.errors}")
    if connections:
        lines.append(mid)
        for e in connections:
            state = "active" if e.active else f"error: {e.error}" if e.error else "closed"
            lines.append(f"{e.type.short} #{e.id}: {e.duration_seconds}s {state}")

    lines.append(sep)
    return "\n".join(lines)

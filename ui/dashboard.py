"""
Rich-based terminal dashboard for probe results.

All formatting helpers live in ``prober.stats`` / ``prober.history`` -- this
module only does presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from prober.boundary import ProbeResult
from prober.charset import CharResult
from prober.classify import Verdict
from prober.connection import ConnectionRegistry
from prober.history import ConnectionEntry, format_history_rows
from prober.lb import LoadBalancerResult
from prober.stats import format_bytes, format_rate, format_status

console = Console()


_VERDICT_STYLE = {
    Verdict.STANDARD: "green",
    Verdict.NON_STANDARD: "yellow",
    Verdict.SERVER_ERROR: "red",
    Verdict.TRANSPORT_RESET: "red",
    Verdict.CLIENT_REJECTED: "magenta",
    Verdict.OTHER: "yellow",
}

_CHAR_OUTCOME = {
    "passed": ("yellow", "Not filtered"),
    "stripped": ("green", "Stripped"),
    "modified": ("yellow", "Modified"),
    "client-blocked": ("dim", "Client blocked"),
    "rejected": ("green", "Rejected"),
    "server-rejected": ("dim", "Not sendable by server"),
    "error": ("red", "Error"),
}

_BADGE_STYLE = {
    "CONNECTED": "bold green",
    "CONNECTING...": "bold yellow",
    "DISCONNECTED": "bold red",
    "FAILED": "bold red",
}


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header(base_url: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Proxy Probe[/bold cyan]\n"
            f"[dim]Limits and behaviour of the intermediary in front of {base_url}[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_probe_result(result: ProbeResult) -> None:
    """Print a boundary search result with its classification and notes."""
    table = Table(title=result.label, box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if result.limit_found:
        table.add_row("Max working size", f"[bold green]{format_bytes(result.max_working_size)}[/bold green]")
        table.add_row("Rejected with", format_status(result.rejection_status))
    else:
        table.add_row("Max working size", f"[bold yellow]>= {format_bytes(result.max_working_size)}[/bold yellow]")
        table.add_row("Rejected with", "[dim]never[/dim]")
    table.add_row("Direction", result.direction)
    table.add_row("Probes", f"{result.invocations} (~{result.total_probes} expected)")
    table.add_row("Duration", f"{result.duration_ms / 1000:.1f} s")
    if result.stall_warnings:
        table.add_row("Stall warnings", f"[yellow]{result.stall_warnings}[/yellow]")
    console.print(table)

    c = result.classification
    if c is not None:
        style = _VERDICT_STYLE[c.verdict]
        console.print(f"  [{style}]{c.title}[/{style}]: {c.detail}")
    for note in result.notes:
        console.print(f"  [dim]{note}[/dim]")
    console.print()


def print_bandwidth(estimates: Dict[str, float]) -> None:
    """One line per direction with the final bandwidth estimate."""
    if not estimates:
        return
    parts = [f"{kind}: {format_rate(bps)}" for kind, bps in sorted(estimates.items())]
    console.print(f"[dim]Estimated bandwidth -- {', '.join(parts)}[/dim]")
    console.print()


def print_charset_results(results: List[CharResult]) -> None:
    for direction in ("request", "response"):
        rows = [r for r in results if r.direction == direction]
        if not rows:
            continue
        table = Table(title=f"{direction.title()} Header Characters", box=box.ROUNDED)
        table.add_column("Character", style="bold")
        table.add_column("Outcome")
        table.add_column("Detail", style="dim")
        for r in rows:
            style, text = _CHAR_OUTCOME.get(r.outcome, ("", r.outcome))
            if r.critical and r.outcome == "passed":
                style, text = "bold red", "Forwarded (injection risk)"
            table.add_row(r.label, f"[{style}]{text}[/{style}]" if style else text, r.detail)
        console.print(table)
    console.print()


def print_lb_results(result: LoadBalancerResult) -> None:
    table = Table(title="Load Balancer Distribution", box=box.ROUNDED)
    table.add_column("Node", style="bold")
    table.add_column("Responses", justify="right")
    table.add_column("Share", justify="right")

    total = len(result.samples)
    for name, count in result.distribution().items():
        table.add_row(name, str(count), f"{count / total:.0%}")
    if result.errors:
        table.add_row("[red]errors[/red]", str(result.errors), f"{result.errors / total:.0%}")
    console.print(table)

    if result.distinct_nodes > 1:
        console.print(f"  [green]{result.distinct_nodes} backend nodes answered.[/green]")
    elif result.distinct_nodes == 1:
        console.print("  [yellow]Every response came from the same node.[/yellow]")
    console.print()


def build_history_table(entries: List[ConnectionEntry]) -> Table:
    table = Table(title="Connection History", box=box.SIMPLE)
    table.add_column("Time", style="dim")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Duration", justify="right")
    table.add_column("Status")

    for row in format_history_rows(entries):
        style = {"active": "green", "error": "red"}.get(row["state"])
        table.add_row(
            row["time"], str(row["id"]), row["type"], row["duration"], row["status"],
            style=style,
        )
    return table


def print_history_table(entries: List[ConnectionEntry]) -> None:
    if not entries:
        console.print("[dim]No connections recorded.[/dim]")
        return
    console.print(build_history_table(entries))


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Manages a ``rich`` progress bar during a boundary search."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[cyan]{task.fields[message]}[/cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None

    def start(self, description: str) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(description, total=100, message="")

    def update(self, fraction: float, message: str = "") -> None:
        if self._task_id is None:
            return
        self.progress.update(self._task_id, completed=fraction * 100, message=message)

    def stall(self, size: int, timeout_ms: float) -> None:
        console.print(
            f"[yellow]  still waiting on {format_bytes(size)} "
            f"(expected within {timeout_ms / 1000:.1f} s)[/yellow]"
        )

    def stop(self) -> None:
        self.progress.stop()
        self._task_id = None


# ---------------------------------------------------------------------------
# Live connection monitor
# ---------------------------------------------------------------------------

class LiveMonitor:
    """Redraws session badges and the merged history on every update."""

    def __init__(self, registry: ConnectionRegistry, refresh_per_second: float = 4) -> None:
        self.registry = registry
        self.live = Live(console=console, refresh_per_second=refresh_per_second)
        self._server_info: Optional[dict] = None

    def render(self) -> Group:
        status = Table(show_header=False, box=None, padding=(0, 1))
        status.add_column(style="bold")
        status.add_column()
        status.add_column(style="dim")
        for s in self.registry.sessions:
            style = _BADGE_STYLE.get(s.badge, "")
            badge = f"[{style}]{s.badge}[/{style}]" if style else s.badge
            status.add_row(s.transport_type.value, badge, s.status_text)

        parts = [Panel(status, title="[bold]Persistent Connections[/bold]", border_style="blue")]
        if self._server_info:
            node = self._server_info.get("node_name") or self._server_info.get("hostname")
            if node:
                parts.append(f"[dim]Serving node: {node}[/dim]")
        parts.append(build_history_table(self.registry.snapshot()))
        return Group(*parts)

    def start(self) -> None:
        for s in self.registry.sessions:
            s.on_status = self._on_session
            s.on_server_info = self._on_server_info
        self.registry.on_update = lambda _registry: self.refresh()
        self.live.start()
        self.refresh()

    def refresh(self) -> None:
        self.live.update(self.render())

    def stop(self) -> None:
        self.refresh()
        self.live.stop()

    def _on_session(self, _session) -> None:  # noqa: ANN001
        self.refresh()

    def _on_server_info(self, _session, info: dict) -> None:  # noqa: ANN001
        self._server_info = info
        self.refresh()

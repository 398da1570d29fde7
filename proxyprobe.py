#!/usr/bin/env python3
"""
Proxy Probe -- find the limits of the HTTP intermediary in front of a server.

Usage::

    python proxyprobe.py https://example.test          # every probe, rich dashboard
    python proxyprobe.py URL --test header --test path # selected probes
    python proxyprobe.py URL --simple                  # plain text
    python proxyprobe.py URL --json                    # JSON to stdout
    python proxyprobe.py URL -o report.json            # save to file
    python proxyprobe.py URL --monitor --duration 600  # watch WS/SSE connections
    python proxyprobe.py URL --ceiling 1048576 -v      # smaller search, debug log
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler

from prober.api import ProxyAPI
from prober.bandwidth import BandwidthRegistry
from prober.boundary import ProbeResult
from prober.charset import CharResult, probe_charset
from prober.classify import RESPONSE
from prober.config import config_path, load_config
from prober.connection import ConnectionRegistry, SSETransport, WebSocketTransport
from prober.constants import (
    MAX_CEILING,
    MAX_LB_REQUESTS,
    MAX_MONITOR_SECONDS,
    MIN_CEILING,
    MIN_LB_REQUESTS,
)
from prober.history import ConnectionEntry
from prober.lb import LoadBalancerResult, probe_load_balancer
from prober.size_tests import DIMENSIONS, Dimension, SizeTester
from ui.dashboard import (
    LiveMonitor,
    ProgressDisplay,
    console,
    print_bandwidth,
    print_charset_results,
    print_header,
    print_history_table,
    print_lb_results,
    print_probe_result,
)
from ui.output import create_report_json, format_text_result, save_json

logger = logging.getLogger("proxyprobe")

SIZE_TESTS = [d.value for d in Dimension]
TEST_CHOICES = SIZE_TESTS + ["charset", "lb", "all"]


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------

def _validate(
    ceiling: int,
    response_ceiling: int,
    lb_requests: int,
    monitor_seconds: float,
    reconnect_delay: float,
    client_header_limit: int,
) -> None:
    """Raise ``ValueError`` if any parameter is out of range."""
    if not MIN_CEILING <= ceiling <= MAX_CEILING:
        raise ValueError(f"Ceiling must be between {MIN_CEILING} and {MAX_CEILING} bytes")
    if not MIN_CEILING <= response_ceiling <= MAX_CEILING:
        raise ValueError(f"Response ceiling must be between {MIN_CEILING} and {MAX_CEILING} bytes")
    if not MIN_LB_REQUESTS <= lb_requests <= MAX_LB_REQUESTS:
        raise ValueError(f"LB requests must be between {MIN_LB_REQUESTS} and {MAX_LB_REQUESTS}")
    if not 0 <= monitor_seconds <= MAX_MONITOR_SECONDS:
        raise ValueError(f"Monitor duration must be between 0 and {MAX_MONITOR_SECONDS} s")
    if reconnect_delay <= 0:
        raise ValueError("Reconnect delay must be positive")
    if client_header_limit < 1:
        raise ValueError("Client header limit must be positive")


def _resolve_tests(selected: Optional[Sequence[str]], monitor: bool) -> List[str]:
    """Expand ``--test`` choices; no selection means everything unless monitoring."""
    if not selected:
        return [] if monitor else SIZE_TESTS + ["charset", "lb"]
    if "all" in selected:
        return SIZE_TESTS + ["charset", "lb"]
    resolved: List[str] = []
    for name in selected:
        if name not in resolved:
            resolved.append(name)
    return resolved


def _log_handler() -> logging.Handler:
    # Logs go to stderr; stdout carries the report.
    return RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[_log_handler()],
    )


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------

async def _run_size_tests(
    tester: SizeTester,
    dimensions: List[Dimension],
    ceiling: int,
    response_ceiling: int,
    show_ui: bool,
) -> List[ProbeResult]:
    results = []
    for dim in dimensions:
        info = DIMENSIONS[dim]
        limit = response_ceiling if info.direction == RESPONSE else ceiling

        progress = None
        if show_ui:
            progress = ProgressDisplay()
            progress.start(info.label)
            tester.on_progress = progress.update
            tester.on_stall = progress.stall

        try:
            result = await tester.run(dim, limit)
        finally:
            if progress:
                progress.stop()

        results.append(result)
        if show_ui:
            print_probe_result(result)
    return results


async def _run_monitor(
    api: ProxyAPI,
    duration: float,
    reconnect_delay: float,
    show_ui: bool,
) -> List[ConnectionEntry]:
    registry = ConnectionRegistry()
    registry.add(WebSocketTransport(api.ws_url), reconnect_delay=reconnect_delay)
    registry.add(SSETransport(api.sse_url), reconnect_delay=reconnect_delay)

    # Ctrl-C ends the monitor but still lets the report run.
    loop = asyncio.get_running_loop()
    previous = signal.getsignal(signal.SIGINT)
    try:
        loop.add_signal_handler(signal.SIGINT, registry.request_stop)
        handled = True
    except (NotImplementedError, RuntimeError, ValueError):
        handled = False

    monitor = LiveMonitor(registry) if show_ui else None
    if monitor:
        monitor.start()
    try:
        await registry.run(duration or None)
    finally:
        if monitor:
            monitor.stop()
        if handled:
            loop.remove_signal_handler(signal.SIGINT)
            if previous is not None:
                signal.signal(signal.SIGINT, previous)
    return registry.snapshot()


async def run_probe(
    base_url: str,
    *,
    tests: Sequence[str],
    monitor: bool = False,
    monitor_seconds: float = 0.0,
    ceiling: int,
    response_ceiling: int,
    client_header_limit: int,
    lb_requests: int,
    reconnect_delay: float,
    json_output: bool = False,
    output_file: Optional[str] = None,
    simple: bool = False,
) -> Dict[str, Any]:
    """Run the selected probes against *base_url* and return the JSON report."""

    show_ui = not json_output and not simple
    if show_ui:
        print_header(base_url)

    bandwidth = BandwidthRegistry()
    probes: List[ProbeResult] = []
    charset: Optional[List[CharResult]] = None
    lb: Optional[LoadBalancerResult] = None
    connections: Optional[List[ConnectionEntry]] = None

    api = ProxyAPI(base_url, client_header_limit=client_header_limit)
    dimensions = [Dimension(t) for t in tests if t in SIZE_TESTS]

    if dimensions or "charset" in tests or "lb" in tests:
        async with api:
            # -- Size limits ------------------------------------------------
            if dimensions:
                tester = SizeTester(api, bandwidth)
                probes = await _run_size_tests(
                    tester, dimensions, ceiling, response_ceiling, show_ui
                )
                if show_ui:
                    print_bandwidth(bandwidth.snapshot())

            # -- Header characters ------------------------------------------
            if "charset" in tests:
                if show_ui:
                    console.print("[bold]Testing header characters...[/bold]")
                charset = await probe_charset(api)
                if show_ui:
                    print_charset_results(charset)

            # -- Load balancer ----------------------------------------------
            if "lb" in tests:
                if show_ui:
                    console.print(f"[bold]Sending {lb_requests} load balancer requests...[/bold]")
                lb = await probe_load_balancer(api, lb_requests)
                if show_ui:
                    print_lb_results(lb)

    # -- Persistent connections ---------------------------------------------
    if monitor:
        if show_ui:
            until = f"for {monitor_seconds:g}s" if monitor_seconds else "until Ctrl-C"
            console.print(f"[bold]Monitoring WebSocket and SSE connections {until}...[/bold]")
        connections = await _run_monitor(api, monitor_seconds, reconnect_delay, show_ui)
        if show_ui:
            print_history_table(connections)

    # -- Report -------------------------------------------------------------
    report = create_report_json(
        base_url,
        probes=probes,
        charset=charset,
        lb=lb,
        connections=connections,
        bandwidth=bandwidth.snapshot(),
    )

    if json_output:
        print(json.dumps(report, indent=2))
    elif simple:
        print(format_text_result(base_url, probes, charset, lb, connections))

    if output_file:
        save_json(report, output_file)
        if not json_output:
            console.print(f"\n[green]Report saved to:[/green] {output_file}")

    return report


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Proxy Probe -- discover limits and behaviour of HTTP intermediaries",
    )
    parser.add_argument("url", nargs="?", help="Base URL of the test server (default: from config)")

    # Selection
    parser.add_argument(
        "--test", "-t", action="append", choices=TEST_CHOICES, metavar="NAME",
        help=f"Probe to run, repeatable ({', '.join(TEST_CHOICES)})",
    )
    parser.add_argument("--monitor", "-m", action="store_true", help="Watch WebSocket and SSE connections")
    parser.add_argument("--duration", type=float, metavar="SECS", help="Monitor duration, 0 = until Ctrl-C")

    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save results to JSON file")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every probe")

    # Tunables
    parser.add_argument("--ceiling", type=int, metavar="BYTES", help="Request-direction search ceiling")
    parser.add_argument("--response-ceiling", type=int, metavar="BYTES", help="Response-direction search ceiling")
    parser.add_argument("--client-header-limit", type=int, metavar="BYTES", help="Largest response header we accept")
    parser.add_argument("--lb-requests", type=int, metavar="N", help="Load balancer sample size (default: 15)")
    parser.add_argument("--reconnect-delay", type=float, metavar="SECS", help="Delay between connection attempts")
    return parser


def _pick(value: Any, config: Dict[str, Any], key: str) -> Any:
    return value if value is not None else config[key]


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config()
    logger.debug("config file: %s", config_path())

    base_url = _pick(args.url, config, "base_url")
    ceiling = _pick(args.ceiling, config, "ceiling")
    response_ceiling = _pick(args.response_ceiling, config, "response_ceiling")
    client_header_limit = _pick(args.client_header_limit, config, "client_header_limit")
    lb_requests = _pick(args.lb_requests, config, "lb_requests")
    reconnect_delay = _pick(args.reconnect_delay, config, "reconnect_delay")
    monitor_seconds = _pick(args.duration, config, "monitor_seconds")

    try:
        _validate(
            ceiling=ceiling,
            response_ceiling=response_ceiling,
            lb_requests=lb_requests,
            monitor_seconds=monitor_seconds,
            reconnect_delay=reconnect_delay,
            client_header_limit=client_header_limit,
        )
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    try:
        asyncio.run(
            run_probe(
                base_url,
                tests=_resolve_tests(args.test, args.monitor),
                monitor=args.monitor,
                monitor_seconds=monitor_seconds,
                ceiling=ceiling,
                response_ceiling=response_ceiling,
                client_header_limit=client_header_limit,
                lb_requests=lb_requests,
                reconnect_delay=reconnect_delay,
                json_output=args.json,
                output_file=args.output,
                simple=args.simple,
            )
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped by user[/yellow]")
        sys.exit(1)
    except Exception as exc:
        logger.debug("run failed", exc_info=True)
        console.print(f"\n[red]Error: {exc}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()

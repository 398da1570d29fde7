"""UI layer -- Rich dashboard and output formatters."""

from .dashboard import (
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
from .output import (
    create_report_json,
    format_text_result,
    save_json,
)

__all__ = [
    "LiveMonitor",
    "ProgressDisplay",
    "console",
    "create_report_json",
    "format_text_result",
    "print_bandwidth",
    "print_charset_results",
    "print_header",
    "print_history_table",
    "print_lb_results",
    "print_probe_result",
    "save_json",
]

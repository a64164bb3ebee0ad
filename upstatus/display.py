"""Plain-text rendering of monitor statistics for the terminal."""

from .models import MonitorStats

PENDING_STATUS = "pending"


def _render_table(headers: list[str], rows: list[list[str]]) -> str:
    """Render rows as a left-aligned table with a header separator."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def fmt(cells: list[str]) -> str:
        return "  ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)).rstrip()

    lines = [fmt(headers), "  ".join("-" * w for w in widths)]
    lines.extend(fmt(row) for row in rows)
    return "\n".join(lines)


def format_monitor_stats(stats: MonitorStats) -> str:
    """Render one monitor's statistics as a metric/value table."""
    last_status = stats.last_check.status.value if stats.last_check else "N/A"
    rows = [
        ["URL", stats.url],
        ["Checks", str(stats.checks)],
        ["Uptime", f"{stats.uptime:g}%"],
        ["Avg Response", f"{stats.avg_response_time}ms"],
        ["Last Status", last_status],
    ]
    if stats.last_check and stats.last_check.error_message:
        rows.append(["Last Error", stats.last_check.error_message])
    return f"{stats.name} Statistics\n" + _render_table(["Metric", "Value"], rows)


def format_stats_table(stats: list[MonitorStats]) -> str:
    """Render a summary row per monitor."""
    rows = [
        [
            s.name,
            f"{s.uptime:g}%",
            f"{s.avg_response_time}ms",
            str(s.checks),
            s.last_check.status.value if s.last_check else PENDING_STATUS,
        ]
        for s in stats
    ]
    return _render_table(["Name", "Uptime", "Avg Time", "Checks", "Status"], rows)

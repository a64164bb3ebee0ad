"""JSON and CSV export of monitor statistics."""

import csv
import io
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .models import CheckResult, MonitorStats

EXPORT_FORMATS = ("json", "csv")

CSV_HEADERS = [
    "URL",
    "Name",
    "Checks",
    "Uptime %",
    "Avg Response Time (ms)",
    "Last Status",
    "Last Check Time",
]

MISSING_VALUE = "N/A"


class ExportError(Exception):
    """Raised when stats cannot be exported."""

    pass


def format_timestamp(dt: datetime) -> str:
    """Format a timestamp as ISO-8601 UTC with a ``Z`` suffix."""
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _check_result_to_dict(result: CheckResult) -> dict[str, Any]:
    """Convert a CheckResult to a JSON-serializable dictionary."""
    data: dict[str, Any] = {
        "url": result.url,
        "name": result.name,
        "status": result.status.value,
    }
    if result.status_code is not None:
        data["statusCode"] = result.status_code
    data["responseTime"] = result.response_time_ms
    if result.error_message is not None:
        data["error"] = result.error_message
    data["timestamp"] = format_timestamp(result.checked_at)
    return data


def stats_to_dict(stats: MonitorStats) -> dict[str, Any]:
    """Convert a MonitorStats snapshot to a JSON-serializable dictionary."""
    data: dict[str, Any] = {
        "url": stats.url,
        "name": stats.name,
        "checks": stats.checks,
        "uptime": stats.uptime,
        "avgResponseTime": stats.avg_response_time,
    }
    if stats.last_check is not None:
        data["lastCheck"] = _check_result_to_dict(stats.last_check)
    data["history"] = [_check_result_to_dict(r) for r in stats.history]
    return data


def export_to_json(stats: list[MonitorStats]) -> str:
    return json.dumps([stats_to_dict(s) for s in stats], indent=2)


def export_to_csv(stats: list[MonitorStats]) -> str:
    """Render stats as CSV with every field quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for s in stats:
        last = s.last_check
        writer.writerow(
            [
                s.url,
                s.name,
                str(s.checks),
                f"{s.uptime:g}",
                str(s.avg_response_time),
                last.status.value if last else MISSING_VALUE,
                format_timestamp(last.checked_at) if last else MISSING_VALUE,
            ]
        )
    return buffer.getvalue().rstrip("\n")


def export_stats(stats: list[MonitorStats], fmt: str) -> str:
    """Export stats in the given format (``json`` or ``csv``).

    Raises:
        ExportError: If the format is not supported.
    """
    if fmt == "json":
        return export_to_json(stats)
    if fmt == "csv":
        return export_to_csv(stats)
    raise ExportError(f'Unsupported export format "{fmt}" (must be one of: {", ".join(EXPORT_FORMATS)})')


def write_export(data: str, file_path: str) -> None:
    """Write exported data to a file.

    Raises:
        ExportError: If the file cannot be written.
    """
    try:
        Path(file_path).write_text(data, encoding="utf-8")
    except OSError as e:
        raise ExportError(f"Failed to write export file {file_path}: {e}")

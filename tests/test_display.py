"""Tests for terminal rendering of statistics."""

from datetime import UTC, datetime

from upstatus.display import format_monitor_stats, format_stats_table
from upstatus.models import CheckResult, CheckStatus, MonitorStats


def _stats(
    name: str = "example.com",
    status: CheckStatus | None = CheckStatus.UP,
    error: str | None = None,
) -> MonitorStats:
    last = None
    if status is not None:
        last = CheckResult(
            url="https://example.com",
            name=name,
            status=status,
            status_code=200 if status is not CheckStatus.DOWN else None,
            response_time_ms=150,
            error_message=error,
            checked_at=datetime(2024, 1, 15, 10, 30, tzinfo=UTC),
        )
    return MonitorStats(
        url="https://example.com",
        name=name,
        checks=1 if last else 0,
        uptime=100.0 if status is CheckStatus.UP or status is None else 0.0,
        avg_response_time=150 if last else 0,
        last_check=last,
        history=(last,) if last else (),
    )


class TestFormatMonitorStats:
    """Tests for the per-monitor metric table."""

    def test_title_and_rows(self) -> None:
        output = format_monitor_stats(_stats())
        lines = output.splitlines()

        assert lines[0] == "example.com Statistics"
        assert lines[1].split() == ["Metric", "Value"]
        assert "https://example.com" in output
        assert "100%" in output
        assert "150ms" in output
        assert lines[-1].split() == ["Last", "Status", "up"]

    def test_pending_monitor(self) -> None:
        output = format_monitor_stats(_stats(status=None))

        assert output.splitlines()[-1].split() == ["Last", "Status", "N/A"]

    def test_includes_last_error(self) -> None:
        output = format_monitor_stats(_stats(status=CheckStatus.DOWN, error="Connection refused"))

        assert output.splitlines()[-1].endswith("Connection refused")


class TestFormatStatsTable:
    """Tests for the multi-monitor summary table."""

    def test_one_row_per_monitor(self) -> None:
        output = format_stats_table([_stats("alpha"), _stats("beta", CheckStatus.DEGRADED)])
        lines = output.splitlines()

        assert lines[0].split() == ["Name", "Uptime", "Avg", "Time", "Checks", "Status"]
        assert set(lines[1]) <= {"-", " "}
        assert lines[2].split() == ["alpha", "100%", "150ms", "1", "up"]
        assert lines[3].split() == ["beta", "0%", "150ms", "1", "degraded"]

    def test_pending_status(self) -> None:
        output = format_stats_table([_stats(status=None)])

        assert output.splitlines()[2].split() == ["example.com", "100%", "0ms", "0", "pending"]

    def test_columns_align(self) -> None:
        output = format_stats_table([_stats("a"), _stats("a-much-longer-name")])
        lines = output.splitlines()

        assert lines[2].index("100%") == lines[3].index("100%")

    def test_empty(self) -> None:
        assert len(format_stats_table([]).splitlines()) == 2

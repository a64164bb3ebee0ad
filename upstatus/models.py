"""Data models for endpoint check results and rolling statistics."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CheckStatus(str, Enum):
    """Classification of a single check."""

    UP = "up"
    DEGRADED = "degraded"  # expected status, but slower than the threshold
    DOWN = "down"


@dataclass(frozen=True)
class CheckResult:
    """Result of one logical check, possibly spanning several attempts.

    Attributes:
        url: Normalized URL that was checked.
        name: Display name of the endpoint.
        status: Classification of the check (up, degraded or down).
        status_code: HTTP status code, or None if no response was received.
        response_time_ms: Measured response time in milliseconds.
        error_message: Error description if the check failed, None otherwise.
        checked_at: Timestamp (UTC) when the check started.
        attempts: Number of HTTP attempts made for this check.
    """

    url: str
    name: str
    status: CheckStatus
    status_code: int | None
    response_time_ms: int
    error_message: str | None
    checked_at: datetime
    attempts: int = 1

    @property
    def is_up(self) -> bool:
        return self.status is CheckStatus.UP


@dataclass(frozen=True)
class MonitorStats:
    """Read-only snapshot of a monitor's rolling statistics.

    Attributes:
        url: Normalized URL being monitored.
        name: Display name of the endpoint.
        checks: Cumulative number of recorded checks.
        uptime: Percentage of ``up`` results in the history (one decimal).
        avg_response_time: Mean response time over the history (ms, rounded).
        last_check: Most recent result, or None before the first check.
        history: Most recent results, oldest first.
    """

    url: str
    name: str
    checks: int = 0
    uptime: float = 100.0
    avg_response_time: int = 0
    last_check: CheckResult | None = None
    history: tuple[CheckResult, ...] = field(default_factory=tuple)

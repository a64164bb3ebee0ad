"""Endpoint monitor: classified checks with retry and a rolling history."""

import logging
import math
import socket
import ssl
import time
from collections import deque
from collections.abc import Callable, Iterable, Iterator, Mapping
from datetime import UTC, datetime
from enum import Enum
from threading import Event, Lock, Thread, Timer, current_thread
from urllib.parse import urlparse

import requests

from .config import EndpointConfig, resolve_endpoint_config
from .models import CheckResult, CheckStatus, MonitorStats
from .transport import AbortableAdapter

logger = logging.getLogger(__name__)

# Rolling window used for uptime and average response time.
HISTORY_SIZE = 100

USER_AGENT = "UpStatus/0.3"

# Request bodies are only sent for these methods.
BODY_METHODS = ("POST", "PUT", "PATCH")

# Extra seconds stop() waits for the worker beyond one request timeout.
STOP_GRACE_SECONDS = 1.0


class TransportErrorKind(Enum):
    """Structured kind of a failed HTTP attempt."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    NAME_RESOLUTION = "name_resolution"
    NETWORK = "network"
    TLS = "tls"
    REDIRECT = "redirect"
    OTHER = "other"


# Kinds eligible for retry. Everything else ends the check immediately.
TRANSIENT_ERROR_KINDS = frozenset(
    {
        TransportErrorKind.TIMEOUT,
        TransportErrorKind.CONNECTION_REFUSED,
        TransportErrorKind.NAME_RESOLUTION,
        TransportErrorKind.NETWORK,
    }
)


class ResponseDeadlineError(TimeoutError):
    """Raised when an attempt runs past the configured timeout."""

    pass


def _iter_error_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield an exception and every exception it wraps.

    Follows ``__cause__``/``__context__`` plus the ``reason`` attribute and
    exception ``args`` used by requests and urllib3 to wrap socket errors.
    """
    seen: set[int] = set()
    pending: list[BaseException | None] = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        pending.append(current.__cause__)
        pending.append(current.__context__)
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            pending.append(reason)
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def _chain_has(chain: Iterable[BaseException], types: type | tuple[type, ...]) -> bool:
    return any(isinstance(e, types) for e in chain)


def classify_transport_error(exc: BaseException) -> TransportErrorKind:
    """Classify a failed attempt by the structured type of its error."""
    chain = list(_iter_error_chain(exc))

    if _chain_has(chain, (requests.exceptions.Timeout, TimeoutError)):
        return TransportErrorKind.TIMEOUT
    if _chain_has(chain, (requests.exceptions.SSLError, ssl.SSLError)):
        return TransportErrorKind.TLS
    if _chain_has(chain, requests.exceptions.TooManyRedirects):
        return TransportErrorKind.REDIRECT
    if _chain_has(chain, ConnectionRefusedError):
        return TransportErrorKind.CONNECTION_REFUSED
    if _chain_has(chain, socket.gaierror):
        return TransportErrorKind.NAME_RESOLUTION
    if _chain_has(chain, (requests.exceptions.ConnectionError, OSError)):
        return TransportErrorKind.NETWORK
    return TransportErrorKind.OTHER


def is_transient_error(exc: BaseException) -> bool:
    """Return True if a failed attempt should be retried."""
    return classify_transport_error(exc) in TRANSIENT_ERROR_KINDS


def _describe_transport_error(kind: TransportErrorKind, exc: BaseException, config: EndpointConfig) -> str:
    if kind is TransportErrorKind.TIMEOUT:
        return f"Request timed out after {config.timeout}ms"
    if kind is TransportErrorKind.CONNECTION_REFUSED:
        return "Connection refused"
    if kind is TransportErrorKind.NAME_RESOLUTION:
        return f"DNS resolution failed for {urlparse(config.url).hostname}"
    if kind is TransportErrorKind.REDIRECT:
        return f"Too many redirects (max {config.max_redirects})"
    if kind is TransportErrorKind.TLS:
        return f"TLS error: {exc}"
    if kind is TransportErrorKind.NETWORK:
        return f"Network error: {exc}"
    return str(exc) or exc.__class__.__name__


def classify_response(status_code: int, response_time_ms: int, config: EndpointConfig) -> CheckStatus:
    """Classify a completed response.

    An unexpected status is always ``down``, regardless of latency.
    """
    if status_code not in config.expected_codes:
        return CheckStatus.DOWN
    if response_time_ms > config.degraded_threshold:
        return CheckStatus.DEGRADED
    return CheckStatus.UP


def backoff_delay_ms(retry_delay: int, attempt: int) -> int:
    """Backoff before the retry that follows ``attempt`` (1-indexed)."""
    return retry_delay * (2 ** (attempt - 1))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _elapsed_ms(start: float) -> int:
    return _round_half_up((time.monotonic() - start) * 1000)


def compute_uptime(history: Iterable[CheckResult]) -> float:
    """Percentage of ``up`` results, rounded to one decimal place."""
    results = list(history)
    if not results:
        return 100.0
    up_count = sum(1 for r in results if r.status is CheckStatus.UP)
    return _round_half_up(up_count / len(results) * 1000) / 10


def compute_avg_response_time(history: Iterable[CheckResult]) -> int:
    """Mean response time in milliseconds, rounded to the nearest integer."""
    results = list(history)
    if not results:
        return 0
    return _round_half_up(sum(r.response_time_ms for r in results) / len(results))


class Monitor:
    """Monitors a single endpoint on its own schedule.

    Each running monitor owns one daemon thread that performs a check
    immediately and then every ``interval`` seconds. Checks of the same
    monitor never overlap; different monitors never share state.

    Example:
        monitor = Monitor(EndpointConfig(url="https://example.com"))
        monitor.start()
        # ... later ...
        monitor.stop()
        stats = monitor.get_stats()
    """

    def __init__(
        self,
        config: EndpointConfig | Mapping,
        on_check: Callable[[CheckResult], None] | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Endpoint configuration, or a raw mapping that is resolved
                over the built-in defaults.
            on_check: Optional callback invoked after each recorded check.

        Raises:
            ConfigError: If a raw mapping fails validation.
        """
        if not isinstance(config, EndpointConfig):
            config = resolve_endpoint_config(config)
        self._config = config
        self._on_check = on_check

        self._adapter = AbortableAdapter()
        self._session = requests.Session()
        self._session.max_redirects = config.max_redirects
        self._session.mount("http://", self._adapter)
        self._session.mount("https://", self._adapter)

        self._check_lock = Lock()
        self._stats_lock = Lock()
        self._lifecycle_lock = Lock()

        self._history: deque[CheckResult] = deque(maxlen=HISTORY_SIZE)
        self._checks = 0
        self._uptime = 100.0
        self._avg_response_time = 0
        self._last_check: CheckResult | None = None

        self._running = False
        self._stop_event = Event()
        self._thread: Thread | None = None

    @property
    def config(self) -> EndpointConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.display_name

    @property
    def key(self) -> str:
        return self._config.key

    def check(self, cancel_event: Event | None = None) -> CheckResult:
        """Perform one classified check, retrying transient failures.

        Never raises. The result is recorded in the rolling history unless
        the check was aborted through ``cancel_event`` (set by ``stop()``).

        Args:
            cancel_event: Event that aborts pending backoff waits and further
                attempts when set.

        Returns:
            Exactly one CheckResult for this check.
        """
        cancel = cancel_event if cancel_event is not None else Event()

        with self._check_lock:
            try:
                result, aborted = self._run_check(cancel)
            except Exception as e:
                logger.error("Unexpected error checking %s: %s", self.name, e)
                result = self._result(CheckStatus.DOWN, None, 0, f"Unexpected error: {e}", datetime.now(UTC), 1)
                aborted = cancel.is_set()

            if aborted:
                logger.debug("%s: check aborted", self.name)
                return result

            self._record(result)

        self._log_result(result)

        if self._on_check is not None:
            try:
                self._on_check(result)
            except Exception as e:
                logger.error("Check callback failed for %s: %s", self.name, e)

        return result

    def _run_check(self, cancel: Event) -> tuple[CheckResult, bool]:
        """Run the attempt loop. Returns the result and whether it was aborted."""
        config = self._config
        checked_at = datetime.now(UTC)
        first_start = time.monotonic()
        max_attempts = config.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            if cancel.is_set():
                return self._aborted(first_start, checked_at, attempt - 1), True

            attempt_start = time.monotonic()
            try:
                response = self._send()
                elapsed_ms = _elapsed_ms(attempt_start)
            except Exception as e:
                if cancel.is_set():
                    return self._aborted(first_start, checked_at, attempt), True

                kind = classify_transport_error(e)
                error_message = _describe_transport_error(kind, e, config)

                if kind in TRANSIENT_ERROR_KINDS and attempt < max_attempts:
                    delay_ms = backoff_delay_ms(config.retry_delay, attempt)
                    logger.warning(
                        "%s: attempt %d/%d failed (%s), retrying in %dms",
                        self.name,
                        attempt,
                        max_attempts,
                        error_message,
                        delay_ms,
                    )
                    if cancel.wait(delay_ms / 1000):
                        return self._aborted(first_start, checked_at, attempt), True
                    continue

                elapsed_ms = _elapsed_ms(first_start)
                return self._result(CheckStatus.DOWN, None, elapsed_ms, error_message, checked_at, attempt), False

            if cancel.is_set():
                return self._aborted(first_start, checked_at, attempt), True

            status_code = response.status_code
            if not config.follow_redirects and 300 <= status_code < 400:
                location = response.headers.get("Location", "unknown location")
                error_message = f"Redirect ({status_code}) to {location} not followed: redirects are disabled"
                return self._result(CheckStatus.DOWN, status_code, elapsed_ms, error_message, checked_at, attempt), False

            status = classify_response(status_code, elapsed_ms, config)
            error_message = None
            if status is CheckStatus.DOWN:
                error_message = f"Unexpected status {status_code} (expected {self._expected_label()})"
            return self._result(status, status_code, elapsed_ms, error_message, checked_at, attempt), False

        # Unreachable: the last attempt always returns.
        raise AssertionError("check loop exited without a result")

    def _send(self) -> requests.Response:
        """Issue one HTTP attempt and return once headers are received.

        The socket timeout only bounds each individual read, so a deadline
        timer aborts the whole attempt once ``timeout`` ms have passed.

        Raises:
            ResponseDeadlineError: If the attempt hit the deadline.
        """
        config = self._config
        headers = {"User-Agent": USER_AGENT, **config.headers}
        data = None

        if config.body is not None and config.method in BODY_METHODS:
            data = config.body.encode("utf-8")
            if not any(name.lower() == "content-type" for name in headers):
                headers["Content-Type"] = config.content_type

        expired = Event()

        def expire() -> None:
            expired.set()
            self._adapter.abort()

        deadline = Timer(config.timeout / 1000, expire)
        deadline.daemon = True
        deadline.start()
        try:
            response = self._session.request(
                config.method,
                config.url,
                headers=headers,
                data=data,
                timeout=config.timeout / 1000,
                allow_redirects=config.follow_redirects,
                stream=True,
            )
            response.close()
        except Exception as e:
            if expired.is_set():
                raise ResponseDeadlineError(f"Attempt exceeded {config.timeout}ms") from e
            raise
        finally:
            deadline.cancel()

        if expired.is_set():
            raise ResponseDeadlineError(f"Attempt exceeded {config.timeout}ms")
        return response

    def _expected_label(self) -> str:
        return ", ".join(str(code) for code in sorted(self._config.expected_codes))

    def _result(
        self,
        status: CheckStatus,
        status_code: int | None,
        response_time_ms: int,
        error_message: str | None,
        checked_at: datetime,
        attempts: int,
    ) -> CheckResult:
        return CheckResult(
            url=self._config.url,
            name=self.name,
            status=status,
            status_code=status_code,
            response_time_ms=response_time_ms,
            error_message=error_message,
            checked_at=checked_at,
            attempts=attempts,
        )

    def _aborted(self, first_start: float, checked_at: datetime, attempts: int) -> CheckResult:
        elapsed_ms = _elapsed_ms(first_start)
        return self._result(CheckStatus.DOWN, None, elapsed_ms, "Check aborted: monitor stopped", checked_at, attempts)

    def _record(self, result: CheckResult) -> None:
        """Append a result and recompute the derived statistics."""
        with self._stats_lock:
            self._checks += 1
            self._last_check = result
            self._history.append(result)
            self._uptime = compute_uptime(self._history)
            self._avg_response_time = compute_avg_response_time(self._history)

    def _log_result(self, result: CheckResult) -> None:
        if result.status is CheckStatus.UP:
            logger.debug("%s is UP (%s, %dms)", self.name, result.status_code, result.response_time_ms)
        elif result.status is CheckStatus.DEGRADED:
            logger.warning(
                "%s is SLOW (%s, %dms > %dms)",
                self.name,
                result.status_code,
                result.response_time_ms,
                self._config.degraded_threshold,
            )
        else:
            logger.warning("%s is DOWN: %s", self.name, result.error_message)

    def get_stats(self) -> MonitorStats:
        """Return a snapshot copy of the current statistics."""
        with self._stats_lock:
            return MonitorStats(
                url=self._config.url,
                name=self.name,
                checks=self._checks,
                uptime=self._uptime,
                avg_response_time=self._avg_response_time,
                last_check=self._last_check,
                history=tuple(self._history),
            )

    def start(self) -> None:
        """Start checking in a background thread. No-op if already running."""
        with self._lifecycle_lock:
            if self._running:
                logger.debug("Monitor for %s already running", self.name)
                return

            self._running = True
            self._stop_event = Event()
            self._thread = Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                daemon=True,
                name=f"monitor-{self.key}",
            )
            self._thread.start()

        logger.info("Starting monitor for %s (%s, every %ds)", self.name, self._config.url, self._config.interval)

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop the monitor. No-op if not running.

        Interrupts any pending backoff wait and aborts the attempt in flight.
        The aborted check is discarded, so stats never change after stop.

        Args:
            wait: Whether to wait for the worker thread to exit.
            timeout: Maximum seconds to wait (default: request timeout plus a
                short grace period).
        """
        with self._lifecycle_lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()

        self._adapter.abort()

        if wait:
            self.join(timeout)
        logger.info("Stopped monitor for %s", self.name)

    def close(self) -> None:
        """Stop the monitor and release its connection pool."""
        self.stop()
        self._session.close()

    def join(self, timeout: float | None = None) -> None:
        """Wait for a stopped monitor's worker thread to exit."""
        thread = self._thread
        if thread is None or thread is current_thread() or self._running:
            return

        if timeout is None:
            timeout = self._config.timeout / 1000 + STOP_GRACE_SECONDS
        thread.join(timeout=timeout)

        if thread.is_alive():
            logger.warning("Monitor thread for %s did not stop within timeout", self.name)

    def is_running(self) -> bool:
        """Check if the monitor is currently scheduled."""
        return self._running

    def _run_loop(self, stop_event: Event) -> None:
        """Check loop - runs in the monitor's background thread."""
        interval = self._config.interval
        next_run = time.monotonic()

        while not stop_event.is_set():
            self.check(cancel_event=stop_event)

            next_run += interval
            now = time.monotonic()
            if next_run <= now:
                # The check overran one or more ticks; skip them instead of queueing.
                missed = int((now - next_run) // interval) + 1
                next_run += missed * interval
                logger.debug("%s: skipped %d overlapping check(s)", self.name, missed)

            stop_event.wait(next_run - now)

        logger.debug("Monitor loop for %s exited", self.name)

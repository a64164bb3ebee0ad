"""UpStatus - Simple uptime monitor for HTTP endpoints."""

import argparse
import logging
import signal
import sys
from collections.abc import Callable
from threading import Event
from typing import Optional

__version__ = "0.3.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

# Concurrent checks in --once mode.
MAX_WORKERS = 8

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False, stream=None) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=stream or sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _validated(validator: Callable) -> Callable[[str], object]:
    """Wrap a config validator as an argparse ``type`` callable."""
    from .config import ConfigError

    def convert(value: str) -> object:
        try:
            return validator(value)
        except ConfigError as e:
            raise argparse.ArgumentTypeError(str(e))

    return convert


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number (got: {value!r})")
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must be non-negative (got: {value})")
    return parsed


def _parse_header(value: str) -> tuple[str, str]:
    """Parse a ``Name: value`` header argument."""
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Invalid header '{value}' (expected 'Name: value')")
    return name.strip(), header_value.strip()


def _cli_overrides(args: argparse.Namespace) -> dict:
    """Collect endpoint defaults given on the command line."""
    expected_status = args.expected_status
    if expected_status is not None and len(expected_status) == 1:
        expected_status = expected_status[0]

    overrides = {
        "interval": args.interval,
        "timeout": args.timeout,
        "expected_status": expected_status,
        "degraded_threshold": args.degraded_threshold,
        "method": args.method,
        "body": args.body,
        "max_retries": args.retries,
        "retry_delay": args.retry_delay,
    }
    if args.headers:
        overrides["headers"] = dict(args.headers)
    if args.no_follow_redirects:
        overrides["follow_redirects"] = False
    return {key: value for key, value in overrides.items() if value is not None}


def _collect_configs(args: argparse.Namespace) -> list:
    """Build endpoint configs from the config file and URL arguments.

    Raises:
        ConfigError: If the config file is invalid.
    """
    from .config import ConfigError, load_config, resolve_endpoint_config

    overrides = _cli_overrides(args)
    configs = []

    if args.config:
        configs.extend(load_config(args.config, overrides))

    for url in args.urls:
        try:
            configs.append(resolve_endpoint_config({"url": url}, overrides))
        except ConfigError as e:
            logger.warning("Skipping invalid argument: %s (%s)", url, e)

    return configs


def _run_once(registry) -> None:
    """Check every endpoint once, concurrently."""
    from concurrent.futures import ThreadPoolExecutor, as_completed

    monitors = registry.monitors()
    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(monitors))) as executor:
        futures = {executor.submit(monitor.check): monitor for monitor in monitors}
        for future in as_completed(futures):
            result = future.result()
            logger.info("%s: %s (%dms)", result.name, result.status.value.upper(), result.response_time_ms)


def _format_stats(stats: list) -> str:
    """Detail view for a single endpoint, summary table otherwise."""
    from .display import format_monitor_stats, format_stats_table

    if len(stats) == 1:
        return format_monitor_stats(stats[0])
    return format_stats_table(stats)


def _emit_output(registry, args: argparse.Namespace) -> None:
    """Print the stats and write the export, if one was requested."""
    from .export import export_stats, export_to_json, write_export

    stats = registry.snapshot()

    if args.json:
        print(export_to_json(stats))
    else:
        print(_format_stats(stats))

    if args.export:
        data = export_stats(stats, args.export)
        if args.output:
            write_export(data, args.output)
            logger.info("Exported %s stats to %s", args.export, args.output)
        elif not args.json:
            print(data)
    elif args.output:
        data = export_to_json(stats) if args.json else _format_stats(stats)
        write_export(data, args.output)
        logger.info("Saved output to %s", args.output)


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - monitor endpoints until shutdown."""
    global _shutdown_event

    # Keep stdout clean for machine-readable output
    _setup_logging(args.verbose, stream=sys.stderr if args.json else sys.stdout)

    logger.info("UpStatus %s starting...", __version__)

    from .config import ConfigError
    from .display import format_stats_table
    from .export import ExportError
    from .models import CheckStatus
    from .registry import MonitorRegistry

    # 1. Load configuration
    try:
        configs = _collect_configs(args)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    if not configs:
        logger.error("No valid URLs to monitor (pass URLs or --config)")
        sys.exit(1)

    # 2. Register monitors
    registry = MonitorRegistry()
    try:
        for config in configs:
            registry.add(config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    # 3. Single pass for scripts and CI
    if args.once:
        _run_once(registry)
        try:
            _emit_output(registry, args)
        except ExportError as e:
            logger.error("Export error: %s", e)
            sys.exit(1)
        stats = registry.snapshot()
        if any(s.last_check is not None and s.last_check.status is CheckStatus.DOWN for s in stats):
            sys.exit(1)
        return

    # 4. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    summary_seconds = min(config.interval for config in configs) * args.summary_every

    try:
        registry.start_all()
        logger.info("Monitoring %d endpoint(s), press Ctrl+C to stop", len(registry))

        # 5. Print a summary periodically until shutdown
        while not _shutdown_event.wait(summary_seconds):
            if not args.json:
                print("\n" + format_stats_table(registry.snapshot()))

    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        logger.info("Shutting down...")
        registry.stop_all()

    # 6. Final statistics
    if not args.json:
        print("\nFinal Statistics")
    try:
        _emit_output(registry, args)
    except ExportError as e:
        logger.error("Export error: %s", e)
        sys.exit(1)

    logger.info("Shutdown complete")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the upstatus command."""
    from .config import (
        HTTP_METHODS,
        validate_interval,
        validate_status,
        validate_timeout,
    )
    from .export import EXPORT_FORMATS

    parser = argparse.ArgumentParser(
        prog="upstatus",
        description="UpStatus - Simple uptime monitor for HTTP endpoints",
        epilog=(
            "examples:\n"
            "  upstatus https://api.example.com\n"
            "  upstatus https://site1.com https://site2.com -i 60\n"
            "  upstatus https://api.example.com -m POST -b '{\"key\":\"value\"}'\n"
            "  upstatus https://api.example.com --export json -o results.json"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"upstatus {__version__}",
    )
    parser.add_argument(
        "urls",
        nargs="*",
        metavar="URL",
        help="Endpoints to monitor (bare hostnames get https://)",
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to a YAML or JSON config file with a 'monitors' list",
    )
    parser.add_argument(
        "-i", "--interval",
        type=_validated(validate_interval),
        help="Check interval in seconds (default: 30, min: 1)",
    )
    parser.add_argument(
        "-t", "--timeout",
        type=_validated(validate_timeout),
        help="Request timeout in milliseconds (default: 10000)",
    )
    parser.add_argument(
        "-d", "--degraded-threshold",
        type=_validated(validate_interval),
        help="Response time threshold for degraded, in ms (default: 2000)",
    )
    parser.add_argument(
        "-s", "--status",
        dest="expected_status",
        type=_validated(validate_status),
        action="append",
        help="Expected status code; repeat to accept several (default: 200)",
    )
    parser.add_argument(
        "-m", "--method",
        type=str.upper,
        choices=HTTP_METHODS,
        help="HTTP method (default: GET)",
    )
    parser.add_argument(
        "-b", "--body",
        help="Request body (sent for POST/PUT/PATCH)",
    )
    parser.add_argument(
        "-H", "--header",
        dest="headers",
        type=_parse_header,
        action="append",
        help="Extra request header 'Name: value'; may be repeated",
    )
    parser.add_argument(
        "--retries",
        type=_non_negative_int,
        help="Retries for network failures (default: 0)",
    )
    parser.add_argument(
        "--retry-delay",
        type=_non_negative_int,
        help="Base retry delay in ms, doubled per retry (default: 1000)",
    )
    parser.add_argument(
        "--no-follow-redirects",
        action="store_true",
        help="Treat redirect responses as down instead of following them",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Check every endpoint once, print results and exit (exit 1 if any is down)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="JSON output mode (for CI/scripts)",
    )
    parser.add_argument(
        "--export",
        choices=EXPORT_FORMATS,
        help="Export final stats as json or csv",
    )
    parser.add_argument(
        "-o", "--output",
        help="Save output to file",
    )
    parser.add_argument(
        "--summary-every",
        type=_validated(validate_interval),
        default=5,
        help="Print a summary every N check intervals (default: 5)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    args = parser.parse_args(argv)
    _cmd_run(args)

"""Endpoint configuration, validation and config-file loading."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from urllib.parse import urlparse

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


DEFAULT_INTERVAL = 30  # seconds between checks
DEFAULT_TIMEOUT_MS = 10000
DEFAULT_EXPECTED_STATUS = 200
DEFAULT_DEGRADED_THRESHOLD_MS = 2000
DEFAULT_METHOD = "GET"
DEFAULT_CONTENT_TYPE = "application/json"
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_RETRIES = 0
DEFAULT_RETRY_DELAY_MS = 1000

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")

# Config keys accepted in files and raw mappings, camelCase or snake_case.
_FIELD_ALIASES = {
    "url": "url",
    "name": "name",
    "interval": "interval",
    "timeout": "timeout",
    "expectedStatus": "expected_status",
    "expected_status": "expected_status",
    "degradedThreshold": "degraded_threshold",
    "degraded_threshold": "degraded_threshold",
    "method": "method",
    "headers": "headers",
    "body": "body",
    "contentType": "content_type",
    "content_type": "content_type",
    "followRedirects": "follow_redirects",
    "follow_redirects": "follow_redirects",
    "maxRedirects": "max_redirects",
    "max_redirects": "max_redirects",
    "maxRetries": "max_retries",
    "max_retries": "max_retries",
    "retryDelay": "retry_delay",
    "retry_delay": "retry_delay",
}

# File-level defaults and the endpoint field each one feeds.
_FILE_DEFAULT_KEYS = {
    "defaultInterval": "interval",
    "default_interval": "interval",
    "defaultTimeout": "timeout",
    "default_timeout": "timeout",
    "defaultDegradedThreshold": "degraded_threshold",
    "default_degraded_threshold": "degraded_threshold",
    "defaultMaxRetries": "max_retries",
    "default_max_retries": "max_retries",
    "defaultRetryDelay": "retry_delay",
    "default_retry_delay": "retry_delay",
}

_ENV_OVERRIDES = {
    "UPSTATUS_DEFAULT_INTERVAL": "interval",
    "UPSTATUS_DEFAULT_TIMEOUT": "timeout",
    "UPSTATUS_DEFAULT_DEGRADED_THRESHOLD": "degraded_threshold",
    "UPSTATUS_DEFAULT_MAX_RETRIES": "max_retries",
    "UPSTATUS_DEFAULT_RETRY_DELAY": "retry_delay",
}


def _to_int(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid {label}: expected a number (got: {value!r})")
    if isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"Invalid {label}: expected a whole number (got: {value!r})")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {label}: expected a number (got: {value!r})")


def normalize_url(url: str) -> str:
    """Prepend ``https://`` to bare hostnames, leave full URLs untouched."""
    url = url.strip()
    if not url:
        raise ConfigError("Invalid URL: URL cannot be empty")
    if "://" in url:
        return url
    return f"https://{url}"


def validate_url(url: str) -> str:
    """Normalize a URL and ensure it is an http(s) URL with a host.

    Returns:
        The normalized URL.

    Raises:
        ConfigError: If the URL cannot be used for monitoring.
    """
    if not isinstance(url, str):
        raise ConfigError(f"Invalid URL: {url!r}")

    normalized = normalize_url(url)
    if any(ch.isspace() for ch in normalized):
        raise ConfigError(f'Invalid URL "{url}": URL cannot contain whitespace')

    try:
        parsed = urlparse(normalized)
        hostname = parsed.hostname
    except ValueError as e:
        raise ConfigError(f'Invalid URL "{url}": {e}')

    if parsed.scheme not in ("http", "https"):
        raise ConfigError(
            f'Invalid URL "{url}": Unsupported protocol: {parsed.scheme}:. '
            "Only http:// and https:// are supported"
        )
    if not hostname:
        raise ConfigError(f'Invalid URL "{url}": missing hostname')

    return normalized


def validate_interval(interval: int | str) -> int:
    """Validate a positive interval in seconds (strings are parsed)."""
    parsed = _to_int(interval, "interval")
    if parsed < 1:
        raise ConfigError(f"Invalid interval: must be a positive number (got: {interval})")
    return parsed


def validate_timeout(timeout: int | str) -> int:
    """Validate a positive request timeout in milliseconds."""
    parsed = _to_int(timeout, "timeout")
    if parsed < 1:
        raise ConfigError(f"Invalid timeout: must be a positive number (got: {timeout})")
    return parsed


def validate_status(status: int | str | list | tuple) -> int | tuple[int, ...]:
    """Validate one expected status code or a collection of them.

    Returns:
        A single int, or a tuple of ints when several codes are given.

    Raises:
        ConfigError: If a code is outside 100-599 or the collection is empty.
    """
    if isinstance(status, (list, tuple, set, frozenset)):
        codes = tuple(_to_int(code, "status code") for code in status)
        if not codes:
            raise ConfigError("Invalid status code: at least one expected status is required")
        for code in codes:
            if not (100 <= code <= 599):
                raise ConfigError(f"Invalid status code: {code} (must be 100-599)")
        return codes

    code = _to_int(status, "status code")
    if not (100 <= code <= 599):
        raise ConfigError(f"Invalid status code: {code} (must be 100-599)")
    return code


@dataclass(frozen=True)
class EndpointConfig:
    """Configuration for a single monitored endpoint.

    The URL is normalized on construction (bare hostnames become https URLs)
    and every field is validated, so an instance is always usable.

    Timing fields:
    - interval: seconds between scheduled checks.
    - timeout: per-attempt request timeout in milliseconds.
    - degraded_threshold: responses slower than this (ms) are ``degraded``.
    - retry_delay: base backoff in milliseconds, doubled for each retry.
    """

    url: str
    name: str | None = None
    interval: int = DEFAULT_INTERVAL
    timeout: int = DEFAULT_TIMEOUT_MS
    expected_status: int | tuple[int, ...] = DEFAULT_EXPECTED_STATUS
    degraded_threshold: int = DEFAULT_DEGRADED_THRESHOLD_MS
    method: str = DEFAULT_METHOD
    headers: Mapping[str, str] = field(default_factory=dict, hash=False)
    body: str | None = None
    content_type: str = DEFAULT_CONTENT_TYPE
    follow_redirects: bool = True
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: int = DEFAULT_RETRY_DELAY_MS

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", validate_url(self.url))
        object.__setattr__(self, "interval", validate_interval(self.interval))
        object.__setattr__(self, "timeout", validate_timeout(self.timeout))
        object.__setattr__(self, "expected_status", validate_status(self.expected_status))

        if self.name is not None and not str(self.name).strip():
            raise ConfigError(f"Name cannot be empty for '{self.url}'")

        threshold = _to_int(self.degraded_threshold, "degraded threshold")
        if threshold < 1:
            raise ConfigError(f"Invalid degraded threshold: must be at least 1ms (got: {threshold})")
        object.__setattr__(self, "degraded_threshold", threshold)

        method = str(self.method).upper()
        if method not in HTTP_METHODS:
            raise ConfigError(f"Invalid method: {self.method}. Must be one of: {', '.join(HTTP_METHODS)}")
        object.__setattr__(self, "method", method)

        if not isinstance(self.headers, Mapping):
            raise ConfigError(f"Headers must be a mapping for '{self.url}'")
        object.__setattr__(self, "headers", MappingProxyType({str(k): str(v) for k, v in self.headers.items()}))

        for label, value in (
            ("max redirects", self.max_redirects),
            ("max retries", self.max_retries),
            ("retry delay", self.retry_delay),
        ):
            if _to_int(value, label) < 0:
                raise ConfigError(f"Invalid {label}: must be non-negative (got: {value})")
        object.__setattr__(self, "max_redirects", int(self.max_redirects))
        object.__setattr__(self, "max_retries", int(self.max_retries))
        object.__setattr__(self, "retry_delay", int(self.retry_delay))

        if not self.content_type:
            raise ConfigError(f"Content type cannot be empty for '{self.url}'")

    @property
    def display_name(self) -> str:
        """Explicit name, or the URL host when no name was given."""
        return self.name or urlparse(self.url).hostname or self.url

    @property
    def key(self) -> str:
        """Registry key: the explicit name, else the URL."""
        return self.name or self.url

    @property
    def expected_codes(self) -> frozenset[int]:
        if isinstance(self.expected_status, tuple):
            return frozenset(self.expected_status)
        return frozenset((self.expected_status,))


def _normalize_keys(data: Mapping, where: str) -> dict:
    """Map camelCase/snake_case keys onto EndpointConfig field names."""
    normalized: dict = {}
    for key, value in data.items():
        field_name = _FIELD_ALIASES.get(key)
        if field_name is None:
            raise ConfigError(f"Unknown setting '{key}' in {where}")
        normalized[field_name] = value
    return normalized


def resolve_endpoint_config(entry: Mapping, *layers: Mapping | None) -> EndpointConfig:
    """Resolve an endpoint entry over layered defaults.

    Args:
        entry: The endpoint's own settings (highest precedence).
        *layers: Default layers ordered from lowest to highest precedence.
            Built-in defaults sit below all of them. ``None`` values in any
            layer or in the entry are ignored.

    Returns:
        Validated EndpointConfig.

    Raises:
        ConfigError: If the merged configuration is invalid.
    """
    if not isinstance(entry, Mapping):
        raise ConfigError("Monitor entry must be a dictionary")

    merged: dict = {}
    for layer in layers:
        if not layer:
            continue
        merged.update({k: v for k, v in _normalize_keys(layer, "defaults").items() if v is not None})

    where = f"monitor '{entry.get('name') or entry.get('url')}'"
    merged.update({k: v for k, v in _normalize_keys(entry, where).items() if v is not None})

    if "url" not in merged:
        raise ConfigError(f"Monitor entry is missing 'url' field ({where})")

    return EndpointConfig(**merged)


def _parse_file_defaults(data: dict) -> dict:
    """Extract the ``default*`` keys of a config file as field defaults."""
    defaults: dict = {}
    for key, field_name in _FILE_DEFAULT_KEYS.items():
        if data.get(key) is not None:
            defaults[field_name] = data[key]
    return defaults


def _apply_env_overrides(defaults: dict) -> dict:
    """Apply environment variable overrides to file-level defaults.

    Supported overrides:
    - UPSTATUS_DEFAULT_INTERVAL: Override defaultInterval
    - UPSTATUS_DEFAULT_TIMEOUT: Override defaultTimeout
    - UPSTATUS_DEFAULT_DEGRADED_THRESHOLD: Override defaultDegradedThreshold
    - UPSTATUS_DEFAULT_MAX_RETRIES: Override defaultMaxRetries
    - UPSTATUS_DEFAULT_RETRY_DELAY: Override defaultRetryDelay
    """
    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is not None:
            defaults[field_name] = _to_int(value, env_name)
    return defaults


def load_config(config_path: str, overrides: Mapping | None = None) -> list[EndpointConfig]:
    """Load and validate endpoint configurations from a YAML or JSON file.

    Args:
        config_path: Path to the configuration file.
        overrides: Defaults supplied by the caller (e.g. CLI flags). They
            take precedence over file defaults but not over per-monitor
            settings.

    Returns:
        Validated EndpointConfig objects in file order.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a dictionary")

    monitors_data = data.get("monitors")
    if not isinstance(monitors_data, list):
        raise ConfigError('Config file must have a "monitors" array')

    defaults = _apply_env_overrides(_parse_file_defaults(data))

    configs: list[EndpointConfig] = []
    for i, entry in enumerate(monitors_data):
        if not isinstance(entry, dict):
            raise ConfigError(f"Monitor entry {i} must be a dictionary")
        configs.append(resolve_endpoint_config(entry, defaults, overrides))

    return configs

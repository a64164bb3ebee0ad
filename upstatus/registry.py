"""Registry of independently scheduled endpoint monitors."""

import logging
from collections.abc import Callable, Iterator, Mapping
from threading import RLock

from .config import EndpointConfig
from .models import CheckResult, MonitorStats
from .monitor import Monitor

logger = logging.getLogger(__name__)


class MonitorRegistry:
    """Keyed collection of monitors with shared start/stop and snapshots.

    Monitors are keyed by their explicit name, else by their URL. All
    mutations of the mapping, and the lifecycle operations that iterate
    it, are serialized by a single lock; monitors themselves stay fully
    independent.
    """

    def __init__(self) -> None:
        self._monitors: dict[str, Monitor] = {}
        self._lock = RLock()

    def add(
        self,
        config: EndpointConfig | Mapping,
        on_check: Callable[[CheckResult], None] | None = None,
    ) -> Monitor:
        """Create a monitor and register it.

        An existing monitor with the same key loses its registry slot; it is
        not stopped. Use ``remove`` first when that matters.

        Raises:
            ConfigError: If the configuration is invalid. Nothing is registered.
        """
        monitor = Monitor(config, on_check=on_check)
        key = monitor.key

        with self._lock:
            if key in self._monitors:
                logger.warning("Replacing monitor: %s", key)
            self._monitors[key] = monitor

        logger.info("Added monitor: %s", key)
        return monitor

    def remove(self, key: str) -> None:
        """Unregister a monitor, then stop it. Unknown keys are ignored."""
        with self._lock:
            monitor = self._monitors.pop(key, None)
        if monitor is None:
            return

        monitor.close()
        logger.info("Removed monitor: %s", key)

    def start_all(self) -> None:
        """Start every registered monitor."""
        with self._lock:
            logger.info("Starting %d monitors", len(self._monitors))
            for monitor in self._monitors.values():
                monitor.start()

    def stop_all(self) -> None:
        """Stop every registered monitor and wait for their threads."""
        monitors = self.monitors()
        logger.info("Stopping all monitors")
        # Signal everything first so the waits overlap.
        for monitor in monitors:
            monitor.stop(wait=False)
        for monitor in monitors:
            monitor.join()

    def snapshot(self) -> list[MonitorStats]:
        """Return a stats copy for every registered monitor."""
        with self._lock:
            monitors = list(self._monitors.values())
        return [monitor.get_stats() for monitor in monitors]

    def get_monitor(self, key: str) -> Monitor | None:
        with self._lock:
            return self._monitors.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._monitors)

    def monitors(self) -> list[Monitor]:
        with self._lock:
            return list(self._monitors.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._monitors)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._monitors

    def __iter__(self) -> Iterator[Monitor]:
        return iter(self.monitors())

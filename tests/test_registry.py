"""Tests for the monitor registry."""

import time
from collections.abc import Iterator
from threading import Event, Thread
from unittest.mock import MagicMock, patch

import pytest

from upstatus.config import ConfigError, EndpointConfig
from upstatus.models import CheckStatus
from upstatus.monitor import Monitor
from upstatus.registry import MonitorRegistry


def _response(status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = {}
    return response


@pytest.fixture
def mock_session() -> Iterator[MagicMock]:
    """Patch requests.Session so monitors never touch the network."""
    with patch("upstatus.monitor.requests.Session") as session_cls:
        session = session_cls.return_value
        session.request.return_value = _response(200)
        yield session


@pytest.fixture
def registry(mock_session: MagicMock) -> Iterator[MonitorRegistry]:
    reg = MonitorRegistry()
    yield reg
    reg.stop_all()


def _wait_for(condition, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


class TestAdd:
    """Tests for MonitorRegistry.add."""

    def test_keyed_by_url_without_name(self, registry: MonitorRegistry) -> None:
        monitor = registry.add(EndpointConfig(url="example.com"))

        assert isinstance(monitor, Monitor)
        assert registry.keys() == ["https://example.com"]
        assert "https://example.com" in registry
        assert registry.get_monitor("https://example.com") is monitor

    def test_keyed_by_name(self, registry: MonitorRegistry) -> None:
        registry.add({"url": "https://example.com", "name": "Example"})

        assert registry.keys() == ["Example"]

    def test_invalid_config_registers_nothing(self, registry: MonitorRegistry) -> None:
        with pytest.raises(ConfigError):
            registry.add({"url": "https://example.com", "interval": 0})

        assert len(registry) == 0

    def test_duplicate_key_replaces_slot(self, registry: MonitorRegistry) -> None:
        first = registry.add({"url": "https://a.example.com", "name": "Site"})
        second = registry.add({"url": "https://b.example.com", "name": "Site"})

        assert len(registry) == 1
        assert registry.get_monitor("Site") is second
        assert first is not second

    def test_add_does_not_start(self, registry: MonitorRegistry, mock_session: MagicMock) -> None:
        monitor = registry.add(EndpointConfig(url="https://example.com"))

        assert not monitor.is_running()
        mock_session.request.assert_not_called()


class TestRemove:
    """Tests for MonitorRegistry.remove."""

    def test_remove_stops_and_unregisters(self, registry: MonitorRegistry) -> None:
        monitor = registry.add(EndpointConfig(url="https://example.com"))
        monitor.start()

        registry.remove("https://example.com")

        assert not monitor.is_running()
        assert len(registry) == 0
        assert registry.get_monitor("https://example.com") is None

    def test_remove_unknown_key_is_noop(self, registry: MonitorRegistry) -> None:
        registry.add(EndpointConfig(url="https://example.com"))

        registry.remove("missing")  # Should not raise

        assert len(registry) == 1

    def test_remove_leaves_others_running(self, registry: MonitorRegistry) -> None:
        """Removing one monitor leaves the other scheduled and still checking."""
        a = registry.add({"url": "https://a.example.com", "name": "A", "interval": 1})
        b = registry.add({"url": "https://b.example.com", "name": "B", "interval": 1})
        registry.start_all()
        assert _wait_for(lambda: b.get_stats().checks >= 1)

        registry.remove("A")
        checks_after_remove = b.get_stats().checks

        assert not a.is_running()
        assert b.is_running()
        assert registry.keys() == ["B"]
        assert _wait_for(lambda: registry.get_monitor("B").get_stats().checks > checks_after_remove)

    def test_remove_does_not_block_other_callers(self, registry: MonitorRegistry, mock_session: MagicMock) -> None:
        """snapshot() answers promptly while a monitor is being removed."""
        entered = Event()
        release = Event()

        def respond(method: str, url: str, **kwargs) -> MagicMock:
            if "slow" in url:
                entered.set()
                release.wait(5)
            return _response(200)

        mock_session.request.side_effect = respond
        registry.add({"url": "https://slow.example.com", "name": "slow"})
        registry.add({"url": "https://fast.example.com", "name": "fast"})
        registry.start_all()
        assert entered.wait(3)

        remover = Thread(target=registry.remove, args=("slow",))
        remover.start()
        try:
            assert _wait_for(lambda: "slow" not in registry)
            start = time.monotonic()
            stats = registry.snapshot()
            assert time.monotonic() - start < 0.5
            assert [s.name for s in stats] == ["fast"]
            assert remover.is_alive()
        finally:
            release.set()
            remover.join(timeout=5)

        assert not remover.is_alive()

    def test_remove_closes_session(self, registry: MonitorRegistry, mock_session: MagicMock) -> None:
        registry.add(EndpointConfig(url="https://example.com"))

        registry.remove("https://example.com")

        mock_session.close.assert_called_once()


class TestLifecycle:
    """Tests for start_all/stop_all and snapshots."""

    def test_start_all_starts_every_monitor(self, registry: MonitorRegistry, mock_session: MagicMock) -> None:
        registry.add({"url": "https://a.example.com", "name": "A"})
        registry.add({"url": "https://b.example.com", "name": "B"})

        registry.start_all()

        assert all(m.is_running() for m in registry)
        assert _wait_for(lambda: all(s.checks == 1 for s in registry.snapshot()))

    def test_stop_all_stops_every_monitor(self, registry: MonitorRegistry) -> None:
        registry.add({"url": "https://a.example.com", "name": "A"})
        registry.add({"url": "https://b.example.com", "name": "B"})
        registry.start_all()

        registry.stop_all()

        assert not any(m.is_running() for m in registry)

    def test_stop_all_without_start(self, registry: MonitorRegistry) -> None:
        registry.add(EndpointConfig(url="https://example.com"))

        registry.stop_all()  # Should not raise

    def test_snapshot_covers_all_monitors(self, registry: MonitorRegistry, mock_session: MagicMock) -> None:
        mock_session.request.side_effect = [_response(200), _response(500)]
        a = registry.add({"url": "https://a.example.com", "name": "A"})
        b = registry.add({"url": "https://b.example.com", "name": "B"})
        a.check()
        b.check()

        stats = {s.name: s for s in registry.snapshot()}

        assert set(stats) == {"A", "B"}
        assert stats["A"].last_check.status is CheckStatus.UP
        assert stats["B"].last_check.status is CheckStatus.DOWN
        assert stats["B"].uptime == 0.0

    def test_empty_registry(self, registry: MonitorRegistry) -> None:
        assert registry.snapshot() == []
        assert len(registry) == 0
        registry.start_all()
        registry.stop_all()

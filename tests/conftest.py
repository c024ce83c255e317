"""
Pytest configuration and shared fixtures.

Contains fake collaborators and sample events shared by all test modules.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from analytics_dispatch.config import BigQuerySettings, SchedulerSettings, Settings
from analytics_dispatch.core.backends import BackendClients
from analytics_dispatch.core.dispatcher import Dispatcher

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeBackend:
    """Records every batch it is asked to insert."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.inserts: List[List[Dict[str, Any]]] = []
        self.error = error

    async def insert(self, events: Any) -> None:
        self.inserts.append(copy.deepcopy(list(events)))
        if self.error is not None:
            raise self.error


class FakeScheduler:
    """Records scheduled work without running it."""

    def __init__(self) -> None:
        self.immediate: List[Callable[[], Any]] = []
        self.delayed: List[Tuple[float, Callable[[], Any]]] = []
        self.started = False

    def run_now(self, task: Callable[[], Any], events_count: int = 0) -> None:
        self.immediate.append(task)

    def run_after(self, delay_seconds: float, task: Callable[[], Any], events_count: int = 0) -> None:
        self.delayed.append((delay_seconds, task))

    @property
    def calls(self) -> int:
        return len(self.immediate) + len(self.delayed)

    async def run_all(self) -> None:
        for task in self.immediate:
            await task()
        for _, task in self.delayed:
            await task()

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    def is_healthy(self) -> bool:
        return self.started


class FakeInitialiser:
    """Counts initialisation triggers."""

    def __init__(self, sent: bool = False, error: Optional[Exception] = None) -> None:
        self.sent = sent
        self.error = error
        self.triggers = 0

    def has_sent(self) -> bool:
        return self.sent

    async def trigger_once(self) -> None:
        self.triggers += 1
        if self.error is not None:
            raise self.error
        self.sent = True


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Settings factory: enabled, synchronous, legacy auth unless overridden."""
    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "enabled": True,
            "log_only": False,
            "async_enabled": False,
            "event_debug": False,
            "maintenance_window": None,
            "azure_federated_auth": False,
            "environment": "test",
            "bigquery": BigQuerySettings(project_id="analytics-test", dataset="events_ds"),
            "scheduler": SchedulerSettings(max_retries=2, backoff_seconds=[1, 2]),
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def legacy_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def federated_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def initialiser() -> FakeInitialiser:
    return FakeInitialiser(sent=True)


@pytest.fixture
def make_dispatcher(
    scheduler: FakeScheduler,
    legacy_backend: FakeBackend,
    federated_backend: FakeBackend,
    initialiser: FakeInitialiser,
) -> Callable[..., Dispatcher]:
    """Build a dispatcher around fakes for the given settings."""
    def _make(settings: Settings, **overrides: Any) -> Dispatcher:
        kwargs: Dict[str, Any] = {
            "settings_provider": lambda: settings,
            "scheduler": scheduler,
            "backends": BackendClients(legacy=legacy_backend, federated=federated_backend),
            "initialisation": initialiser,
            "clock": lambda: NOW,
        }
        kwargs.update(overrides)
        return Dispatcher(**kwargs)

    return _make


@pytest.fixture
def plain_event() -> Dict[str, Any]:
    """Event without hidden data."""
    return {
        "environment": "test",
        "event_type": "web_request",
        "occurred_at": "2026-03-01T12:00:00+00:00",
        "request_path": "/applications",
        "data": [{"key": "status", "value": ["200"]}],
    }


@pytest.fixture
def sensitive_event() -> Dict[str, Any]:
    """Event carrying hidden data at both nesting levels."""
    return {
        "environment": "test",
        "event_type": "create_entity",
        "entity_table_name": "candidates",
        "data": [{"key": "id", "value": ["42"]}],
        "hidden_data": [
            {"key": "email_address", "value": ["jane.doe@example.com"]},
            {"key": {"value": ["date_of_birth"]}, "value": ["1990-01-01"]},
        ],
    }

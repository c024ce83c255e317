"""
One-off initialisation event.

The first dispatch in a process sends an ``initialise_analytics`` event
describing the deployment before any other events. The sent flag lives in
an ``InitialisationState`` so callers can share or replace it.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from .. import __version__
from ..config import Settings, get_settings
from ..models.event import Event, EventType
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

SendFn = Callable[[List[Dict[str, Any]]], Awaitable[None]]


class InitialisationState:
    """Process-wide "initialisation events sent" flag."""

    def __init__(self) -> None:
        self._sent = False

    def has_sent(self) -> bool:
        return self._sent

    def mark_sent(self) -> None:
        self._sent = True

    def reset(self) -> None:
        self._sent = False


class InitialisationEvents:
    """
    Sends the initialisation event once per process.

    ``send`` must route the batch without re-entering the initialisation
    check. Concurrent first callers may both send; the state is marked only
    after a send succeeds, so a failed send is retried on the next dispatch.
    """

    def __init__(
        self,
        state: InitialisationState,
        send: SendFn,
        settings_provider: Callable[[], Settings] = get_settings,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.state = state
        self.send = send
        self.settings_provider = settings_provider
        self.metrics = metrics

    def has_sent(self) -> bool:
        return self.state.has_sent()

    async def trigger_once(self) -> None:
        if self.state.has_sent():
            return

        event = self.build_event()
        logger.info("Sending analytics initialisation event")

        await self.send([event])

        self.state.mark_sent()
        if self.metrics:
            self.metrics.record_initialisation()

    def build_event(self) -> Dict[str, Any]:
        settings = self.settings_provider()
        event = Event(
            environment=settings.environment,
            event_type=EventType.INITIALISE_ANALYTICS.value,
            occurred_at=datetime.now(timezone.utc),
        ).with_request_uuid().with_data({
            "analytics_version": __version__,
            "config": {
                "log_only": settings.log_only,
                "async": settings.async_enabled,
                "event_debug": settings.event_debug,
                "auth_mode": settings.auth_mode.value,
            },
        })
        return event.as_json()


_initialisation_state = InitialisationState()


def get_initialisation_state() -> InitialisationState:
    """Get the process-wide initialisation state."""
    return _initialisation_state

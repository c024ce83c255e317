"""
Event dispatcher.

Orchestrates delivery of a batch of analytics events:
1. Enabled gate (disabled: warn and drop)
2. One-off initialisation event
3. Normalisation to plain mappings
4. Mode selection (inline, background, after maintenance window)
5. Delivery: redact-and-log in log-only mode, otherwise backend insert

Redaction applies to log output only. The backend always receives the
normalised, unredacted batch.
"""

import copy
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

import structlog

from ..config import Settings, get_settings
from .backends import BackendClients, build_backend_clients
from .event_matcher import EventMatcher
from .exceptions import EventValidationError
from .initialisation import InitialisationEvents, InitialisationState, get_initialisation_state
from .metrics import MetricsCollector
from .mode import DispatchMode, select_mode
from .redaction import redact
from .scheduler import AsyncioScheduler, Scheduler

logger = structlog.get_logger(__name__)


@runtime_checkable
class SerializableEvent(Protocol):
    """A typed event that knows its mapping representation."""

    def as_json(self) -> Dict[str, Any]:
        ...


EventLike = Union[SerializableEvent, Mapping[str, Any]]


class Initialiser(Protocol):
    def has_sent(self) -> bool:
        ...

    async def trigger_once(self) -> None:
        ...


class Matcher(Protocol):
    def matched(self, event: Mapping[str, Any]) -> bool:
        ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_event(item: EventLike) -> Dict[str, Any]:
    """Return a new plain-dict copy of one event."""
    if isinstance(item, Mapping):
        return copy.deepcopy(dict(item))
    if isinstance(item, SerializableEvent):
        return copy.deepcopy(dict(item.as_json()))
    raise EventValidationError(
        "Events must be mappings or expose as_json()",
        details={"type": type(item).__name__},
    )


def normalize_events(events: Iterable[EventLike]) -> List[Dict[str, Any]]:
    """Normalise a batch, preserving order."""
    return [normalize_event(item) for item in events]


class Dispatcher:
    """
    Routes batches of analytics events to the backend or the log.

    Collaborators are injected so each can be replaced independently; any
    left out are built from settings.
    """

    def __init__(
        self,
        settings_provider: Callable[[], Settings] = get_settings,
        scheduler: Optional[Scheduler] = None,
        backends: Optional[BackendClients] = None,
        initialisation: Optional[Initialiser] = None,
        initialisation_state: Optional[InitialisationState] = None,
        matcher: Optional[Matcher] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings_provider = settings_provider
        self.metrics = metrics
        self.clock = clock
        self.matcher = matcher
        self._debug_matcher: Optional[EventMatcher] = None
        self._debug_filters: Optional[Dict[str, Any]] = None

        settings = settings_provider()
        self.scheduler: Scheduler = scheduler or AsyncioScheduler(settings.scheduler, metrics)
        self.backends = backends or build_backend_clients(settings)
        self.initialisation: Initialiser = initialisation or InitialisationEvents(
            state=initialisation_state or get_initialisation_state(),
            send=self.perform_for,
            settings_provider=settings_provider,
            metrics=metrics,
        )

        logger.info("Dispatcher initialized", auth_mode=settings.auth_mode.value)

    async def submit(self, events: Iterable[EventLike]) -> None:
        """
        Dispatch a batch of events.

        Returns once the batch is delivered (inline mode) or handed to the
        scheduler. Backend errors on the inline path propagate.
        """
        settings = self.settings_provider()
        if not settings.enabled:
            logger.warning(
                "Analytics: send_events called but analytics is disabled. "
                "Check settings.enabled before sending events"
            )
            if self.metrics:
                self.metrics.record_dropped(len(list(events)))
            return

        if not self.initialisation.has_sent():
            await self.initialisation.trigger_once()

        normalized = normalize_events(events)
        await self.perform_for(normalized)

    async def perform_for(self, events: List[Dict[str, Any]]) -> None:
        """Deliver a normalised batch according to the current dispatch mode."""
        now = self.clock()
        mode = select_mode(self.settings_provider().snapshot(now), now)

        if self.metrics:
            self.metrics.record_submission(mode.label, len(events))

        if mode.is_deferred:
            delay = self._delay_until(mode, now)
            logger.info(
                "Analytics: maintenance window active, deferring events",
                events_count=len(events),
                run_at=mode.run_at.isoformat() if mode.run_at else None,
            )
            self.scheduler.run_after(delay, lambda: self.deliver_now(events), events_count=len(events))
        elif mode.background:
            self.scheduler.run_now(lambda: self.deliver_now(events), events_count=len(events))
        else:
            await self.deliver_now(events)

    async def deliver_now(self, events: List[Dict[str, Any]]) -> None:
        """
        Deliver a batch immediately.

        Called inline or by the scheduler. Settings are read at delivery
        time, so a batch deferred before log-only was switched on is logged
        rather than sent.
        """
        settings = self.settings_provider()

        if settings.log_only:
            for event in events:
                logger.info("Analytics: log-only event", analytics_event=redact(event))
            if self.metrics:
                self.metrics.record_logged("log_only", len(events))
            return

        if settings.event_debug:
            self._debug_tap(events, settings)

        auth_mode = settings.auth_mode
        client = self.backends.select(auth_mode)
        await client.insert(events)

        if self.metrics:
            self.metrics.record_backend_insert(auth_mode.value)

    def _debug_tap(self, events: List[Dict[str, Any]], settings: Settings) -> None:
        matcher = self._matcher_for(settings)
        for event in events:
            if matcher.matched(event):
                logger.info("Analytics processing: debug event", analytics_event=redact(event))
                if self.metrics:
                    self.metrics.record_logged("debug")

    def _matcher_for(self, settings: Settings) -> Matcher:
        if self.matcher is not None:
            return self.matcher

        # Rebuilt only when the filters change, so compiled patterns are kept
        filters = settings.event_debug_filters
        if self._debug_matcher is None or filters != self._debug_filters:
            self._debug_matcher = EventMatcher(filters)
            self._debug_filters = copy.deepcopy(filters)
        return self._debug_matcher

    @staticmethod
    def _delay_until(mode: DispatchMode, now: datetime) -> float:
        if mode.run_at is None:
            return 0.0
        return max(0.0, (mode.run_at - now).total_seconds())

    async def close(self) -> None:
        await self.backends.close()


_dispatcher: Optional[Dispatcher] = None


def get_dispatcher() -> Dispatcher:
    """Get or create the global dispatcher instance."""
    global _dispatcher

    if _dispatcher is None:
        _dispatcher = Dispatcher()

    return _dispatcher

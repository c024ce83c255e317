"""
Prometheus metrics collection.

In-memory counters scraped from /metrics; Prometheus handles storage.
"""

from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Info

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for analytics dispatch.

    Pass a dedicated ``registry`` to keep instances isolated (tests, multiple
    apps in one process); the default registry is what /metrics exposes.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else REGISTRY

        self.service_info = Info(
            "analytics_dispatch_service",
            "Analytics dispatch service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": __version__,
            "service": "analytics-dispatch",
        })

        self.events_submitted_total = Counter(
            "analytics_events_submitted_total",
            "Total events accepted for dispatch",
            ["mode"],
            registry=self.registry,
        )

        self.events_dropped_total = Counter(
            "analytics_events_dropped_total",
            "Events dropped because analytics is disabled",
            registry=self.registry,
        )

        self.batch_size_events = Histogram(
            "analytics_batch_size_events",
            "Number of events per submitted batch",
            buckets=[1, 5, 10, 25, 50, 100, 250, 500],
            registry=self.registry,
        )

        self.events_logged_total = Counter(
            "analytics_events_logged_total",
            "Redacted events written to the log",
            ["reason"],
            registry=self.registry,
        )

        self.backend_inserts_total = Counter(
            "analytics_backend_inserts_total",
            "Batches handed to a backend client",
            ["auth_mode"],
            registry=self.registry,
        )

        self.delivery_failures_total = Counter(
            "analytics_delivery_failures_total",
            "Failed background delivery attempts",
            ["error_type"],
            registry=self.registry,
        )

        self.initialisation_triggers_total = Counter(
            "analytics_initialisation_triggers_total",
            "Initialisation event sends",
            registry=self.registry,
        )

        logger.info("Metrics collector initialized")

    def record_submission(self, mode: str, events_count: int) -> None:
        self.events_submitted_total.labels(mode=mode).inc(events_count)
        self.batch_size_events.observe(events_count)

    def record_dropped(self, events_count: int) -> None:
        self.events_dropped_total.inc(events_count)

    def record_logged(self, reason: str, events_count: int = 1) -> None:
        self.events_logged_total.labels(reason=reason).inc(events_count)

    def record_backend_insert(self, auth_mode: str) -> None:
        self.backend_inserts_total.labels(auth_mode=auth_mode).inc()

    def record_delivery_failure(self, error_type: str) -> None:
        self.delivery_failures_total.labels(error_type=error_type).inc()

    def record_initialisation(self) -> None:
        self.initialisation_triggers_total.inc()

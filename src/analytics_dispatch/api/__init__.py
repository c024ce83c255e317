"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /v1/events:send - Event dispatch endpoint
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
"""
from .events import router as events_router
from .healthz import router as healthz_router
from .metrics import router as metrics_router

__all__ = ["events_router", "healthz_router", "metrics_router"]

"""
API endpoints package.

Contains FastAPI routers for the read-only governance surfaces:
- /healthz - Liveness probe
- /health-detailed - Health status with counters and system sample
- /metrics - JSON metrics summary
- /metrics/prometheus - Prometheus metrics
"""
from .health import router as health_router
from .metrics import router as metrics_router

__all__ = ["health_router", "metrics_router"]

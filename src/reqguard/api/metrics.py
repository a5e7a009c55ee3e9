"""
Metrics endpoints.

- /metrics: JSON summary of the running health counters
- /metrics/prometheus: Same counters in Prometheus text format for scraping
"""

from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..core.governance import GovernanceCore
from .health import get_governance

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Health metrics summary",
    description="""
    Lightweight metrics payload: uptime, requests, errors, errorRate,
    slowRequests, slowRate, securityFlags, cache counters and system sample.
    """,
)
async def get_metrics(governance: GovernanceCore = Depends(get_governance)) -> Dict[str, Any]:
    return governance.metrics_summary()


@router.get(
    "/metrics/prometheus",
    summary="Prometheus metrics",
    description="""
    Prometheus metrics endpoint in standard text format.

    **Key Metrics:**
    - reqguard_http_requests_total{method,status_code}
    - reqguard_http_request_duration_seconds{method}
    - reqguard_slow_requests_total
    - reqguard_security_flags_total{tag}
    - reqguard_cache_lookups_total{result}
    """,
)
async def get_prometheus_metrics(governance: GovernanceCore = Depends(get_governance)) -> Response:
    try:
        metrics_data = generate_latest(governance.aggregator.registry)
        logger.debug("Metrics scraped successfully", size_bytes=len(metrics_data))

        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST,
        )

    except Exception as e:
        logger.error(
            "Failed to generate metrics",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )

        error_metrics = f"""# HELP reqguard_metrics_error Metrics generation errors
# TYPE reqguard_metrics_error counter
reqguard_metrics_error{{error="{type(e).__name__}"}} 1
"""
        return Response(
            content=error_metrics,
            media_type=CONTENT_TYPE_LATEST,
        )

"""
Health check endpoints.

- /healthz: Liveness probe (always 200 if service alive)
- /health-detailed: Status derived from error/slow rates and memory, plus counters
"""

from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request, Response, status

from ..core.governance import GovernanceCore

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_governance(request: Request) -> GovernanceCore:
    """Governance core installed on the application."""
    return request.app.state.governance


@router.get(
    "/healthz",
    status_code=200,
    summary="Liveness probe",
    description="""
    Liveness probe endpoint.

    Always returns 200 OK if the service is running.
    """,
)
async def liveness_check() -> Dict[str, Any]:
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "reqguard",
        "version": "0.1.0",
    }


@router.get(
    "/health-detailed",
    summary="Detailed health",
    description="""
    Detailed health payload.

    **Status:**
    - CRITICAL: error rate > 10% or memory > 90%
    - WARNING: error rate above threshold, slow rate > 20% or memory > 80%
    - HEALTHY otherwise

    Includes uptime, request/error/slow counts and rates, security flags,
    cache counters and the current system sample.
    """,
)
async def detailed_health(request: Request, response: Response) -> Dict[str, Any]:
    governance = getattr(request.app.state, "governance", None)

    if governance is None:
        logger.warning("Governance core not initialized")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "UNKNOWN",
            "reason": "governance_not_initialized",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return governance.health_check()

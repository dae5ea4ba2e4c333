"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
means the webhook workers are running and the settings needed to enrich
events are present.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.donation_sync.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


def _check_dependencies(request: Request) -> dict:
    """Check worker pool state and configuration. Returns check results dict."""
    settings = get_settings()
    checks: dict = {}

    pool = getattr(request.app.state, "worker_pool", None)
    if pool is None:
        checks["workers"] = "not_initialized"
    elif not pool.running:
        checks["workers"] = "stopped"
    else:
        checks["workers"] = "ok"
        checks["queue_depth"] = pool.depth()

    checks["stripe"] = "ok" if settings.STRIPE_SECRET_KEY else "no_key"
    checks["crm_sink"] = "http" if settings.CRM_SINK_URL else "logging"
    checks["signature_verification"] = "on" if settings.STRIPE_WEBHOOK_SECRET else "off"
    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: workers running and a Stripe key configured.

    Returns 200 if ready, 503 otherwise.
    """
    checks = _check_dependencies(request)
    ready = checks.get("workers") == "ok" and checks.get("stripe") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
        },
    )

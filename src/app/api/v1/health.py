"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. The
readiness check verifies database connectivity and that the ingestion
workers are running.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.app.config import get_settings
from src.app.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and ingestion workers. Returns check results dict."""
    checks: dict = {"database": "ok", "ingestion": "ok"}

    # Check database
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    # Check ingestion workers
    service = getattr(request.app.state, "training_service", None)
    if service is None:
        checks["ingestion"] = "not_initialized"
    elif not service.orchestrator.started:
        checks["ingestion"] = "stopped"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies the database and the ingestion workers.

    Returns 200 if all pass, 503 if any critical dependency fails.
    """
    checks = await _check_dependencies(request)
    all_healthy = checks.get("database") == "ok" and checks.get("ingestion") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )

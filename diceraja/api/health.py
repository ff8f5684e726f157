"""
Health and diagnostics endpoints.

Lightweight probes for operational monitoring; none of them expose secrets.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from diceraja.core.database import get_engine
from diceraja.core.metrics import METRICS

logger = logging.getLogger("diceraja")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "users",
    "gamers",
    "daily_rewards",
    "daily_reward_history",
]


@router.get("/api/health")
def health():
    return {
        "status": "success",
        "message": "Server is up and running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

        inspector = inspect(engine)
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
        if missing:
            detail = f"missing tables: {', '.join(missing)}"
            logger.warning(f"[readyz] {detail}")
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok"}
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})


@router.get("/metrics")
def metrics_endpoint():
    return Response(content=METRICS.export_prometheus(), media_type="text/plain")

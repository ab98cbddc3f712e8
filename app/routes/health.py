"""
Health check endpoints with database pool monitoring.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.db.pool import db_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "automation-engine"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: the database pool must answer a round trip.
    """
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = bool(db_health.get("healthy", False))
        database = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }

        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            database.update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                    "connection_time_ms": db_health.get("connection_time_ms", 0),
                }
            )

        if not is_healthy:
            database["error"] = db_health.get("error", "Database unhealthy")
            if "error_type" in db_health:
                database["error_type"] = db_health["error_type"]

    except Exception as e:
        is_healthy = False
        database = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    body = {"status": "ready" if is_healthy else "degraded", "checks": {"database": database}}
    return JSONResponse(status_code=200 if is_healthy else 503, content=body)

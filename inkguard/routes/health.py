# inkguard/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from inkguard.config import settings
from inkguard.db.pool import db_health_check
from inkguard.jobs.anomaly_detection_job import anomaly_detection_job
from inkguard.services.identity.disposable_domains import disposable_domain_registry
from inkguard.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "inkguard"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check covering Redis, the database pool and configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Redis
    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        checks["redis"] = {
            "ok": bool(redis_ok),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 3) Configuration
    config_issues = []
    if not settings.DATABASE_URL:
        config_issues.append("DATABASE_URL not set")
    if not settings.INTERNAL_WEBHOOK_SECRET:
        config_issues.append("INTERNAL_WEBHOOK_SECRET not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/security")
async def security_health():
    """Detector health as published by the worker, plus the disposable-domain snapshot."""
    return {
        "anomaly_detection": await anomaly_detection_job.health_check(),
        "disposable_domains": disposable_domain_registry.status(),
        "timestamp": time.time(),
    }

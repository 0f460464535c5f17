"""
Monitoring Routes

Liveness and readiness probes plus Prometheus metrics.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geotrack.config import settings
from geotrack.database import get_db
from geotrack.services.audit_service import AuditLogger, get_audit_logger
from geotrack.services.realtime_notifier import RealtimeNotifier, get_realtime_notifier
from geotrack.utils.metrics import set_app_info

router = APIRouter(tags=["Monitoring"])
logger = logging.getLogger(__name__)

APP_START_TIME = time.time()

set_app_info(version=settings.app_version, environment=settings.environment)


class HealthStatus(BaseModel):
    status: str
    timestamp: str
    version: str
    uptime_seconds: float
    pending_audit_entries: int
    dropped_audit_entries: int
    realtime_subscribers: int


@router.get("/health", response_model=HealthStatus)
async def health_check(
    audit: AuditLogger = Depends(get_audit_logger),
    notifier: RealtimeNotifier = Depends(get_realtime_notifier),
) -> HealthStatus:
    """
    Liveness probe.

    Reports "degraded" while audit entries are waiting to be written, since
    a disclosure without its audit record is a compliance gap.
    """
    degraded = audit.pending_count > 0 or audit.dropped > 0
    return HealthStatus(
        status="degraded" if degraded else "healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
        uptime_seconds=round(time.time() - APP_START_TIME, 2),
        pending_audit_entries=audit.pending_count,
        dropped_audit_entries=audit.dropped,
        realtime_subscribers=notifier.subscriber_count(),
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


class ReadinessStatus(BaseModel):
    status: str
    timestamp: str
    checks: dict[str, dict[str, Any]]


@router.get("/ready", response_model=ReadinessStatus)
async def readiness_check(db: AsyncSession = Depends(get_db)) -> ReadinessStatus:
    """Readiness probe; the store must answer before traffic is routed here."""
    checks = {"database": await _check_database(db)}
    all_healthy = all(check.get("status") == "healthy" for check in checks.values())
    return ReadinessStatus(
        status="ready" if all_healthy else "not_ready",
        timestamp=datetime.now(timezone.utc).isoformat(),
        checks=checks,
    )


async def _check_database(db: AsyncSession) -> dict[str, Any]:
    try:
        start = time.perf_counter()
        await db.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000
        return {"status": "healthy", "latency_ms": round(latency_ms, 2)}
    except SQLAlchemyError as e:
        logger.warning(f"Readiness database check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}

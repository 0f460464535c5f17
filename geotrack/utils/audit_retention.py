"""
Audit Log Retention Policy

Prunes location audit entries older than the audit retention period and
retries audit entries whose first write failed. Both run as recurring
APScheduler jobs.

The audit retention period is validated at startup to be longer than the
location retention window, so an audit entry always outlives the samples
it describes.
"""

import logging

from apscheduler.triggers.interval import IntervalTrigger

from geotrack.config import settings
from geotrack.services.audit_service import AuditLogger, get_audit_logger

logger = logging.getLogger(__name__)


async def prune_old_audit_entries(audit: AuditLogger, retention_days: int) -> int:
    """Returns the count of deleted rows, or 0 on failure (graceful degradation)."""
    try:
        return await audit.prune(retention_days)
    except Exception as exc:
        logger.warning("audit_retention: prune failed: %s", exc)
        return 0


async def flush_pending_audit_entries(audit: AuditLogger) -> int:
    flushed = await audit.flush_pending()
    if audit.pending_count:
        logger.warning("audit_retention: %d audit entries still pending", audit.pending_count)
    return flushed


def install_audit_policy(
    scheduler,
    audit: AuditLogger | None = None,
    retention_days: int | None = None,
    interval_hours: int = 24,
    flush_interval_seconds: int | None = None,
) -> None:
    """
    Register the audit prune and pending-flush jobs.

    Args:
        scheduler: The application's AsyncIOScheduler (from geotrack.scheduler).
        retention_days: Audit entries older than this many days are deleted.
        interval_hours: How often to prune (default: once daily).
        flush_interval_seconds: How often to retry failed audit writes.
    """
    audit = audit or get_audit_logger()
    retention_days = retention_days or settings.audit_retention_days
    flush_interval_seconds = flush_interval_seconds or settings.audit_flush_interval_seconds

    scheduler.add_job(
        prune_old_audit_entries,
        trigger=IntervalTrigger(hours=interval_hours),
        args=[audit, retention_days],
        id="audit_retention",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.add_job(
        flush_pending_audit_entries,
        trigger=IntervalTrigger(seconds=flush_interval_seconds),
        args=[audit],
        id="audit_flush",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "audit_retention: installed (retention=%d days, interval=%dh, flush=%ds)",
        retention_days,
        interval_hours,
        flush_interval_seconds,
    )

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from geotrack.services.retention_sweeper import install_retention_sweeper
from geotrack.utils.audit_retention import install_audit_policy

scheduler = AsyncIOScheduler()

logger = logging.getLogger(__name__)


def install_background_jobs(target=None) -> None:
    """Register the retention sweep, audit prune and audit flush jobs."""
    target = target or scheduler
    install_retention_sweeper(target)
    install_audit_policy(target)
    logger.info("[Scheduler] Background jobs installed")

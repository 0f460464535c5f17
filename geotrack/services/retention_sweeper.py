"""
Location Retention Sweeper

Purges location samples older than the retention window. Runs as a
recurring APScheduler job, independent of request handling.

The cutoff is fixed when a sweep starts, so a sample written while the
sweep is running is never a candidate. Rows are deleted in small batches,
each in its own short transaction, so ingestion and queries are never
blocked for long. Audit entries and consent records are never touched.
"""

import logging
from datetime import timedelta

from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import delete, select

from geotrack import database
from geotrack.config import settings
from geotrack.models.location_sample import LocationSample
from geotrack.services.current_location_cache import CurrentLocationCache, get_current_location_cache
from geotrack.utils.metrics import RETENTION_SAMPLES_DELETED_TOTAL
from geotrack.utils.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(
        self,
        retention_days: int | None = None,
        batch_size: int | None = None,
        cache: CurrentLocationCache | None = None,
        session_factory=None,
        clock: Clock = utc_now,
    ) -> None:
        self.retention_days = retention_days or settings.location_retention_days
        self.batch_size = batch_size or settings.retention_batch_size
        self.cache = cache
        self._session_factory = session_factory
        self._clock = clock

    async def sweep(self) -> int:
        """Delete every sample older than now - retention window. Returns the count."""
        cutoff = self._clock() - timedelta(days=self.retention_days)
        sessions = self._session_factory or database.AsyncSessionLocal

        total = 0
        while True:
            async with sessions() as session:
                ids = (
                    (
                        await session.execute(
                            select(LocationSample.id)
                            .where(LocationSample.timestamp < cutoff)
                            .order_by(LocationSample.id)
                            .limit(self.batch_size)
                        )
                    )
                    .scalars()
                    .all()
                )
                if not ids:
                    break
                await session.execute(delete(LocationSample).where(LocationSample.id.in_(ids)))
                await session.commit()
            total += len(ids)
            if len(ids) < self.batch_size:
                break

        if self.cache is not None:
            self.cache.evict_older_than(cutoff)

        RETENTION_SAMPLES_DELETED_TOTAL.inc(total)
        logger.info(
            "location_retention: deleted %d samples older than %s (%d days)",
            total,
            cutoff.isoformat(),
            self.retention_days,
        )
        return total


async def run_retention_sweep(sweeper: RetentionSweeper) -> int:
    """
    Scheduled job entry point.

    Returns the number of deleted rows, or 0 on failure; the next run picks
    up whatever this one left behind.
    """
    try:
        return await sweeper.sweep()
    except Exception as exc:
        logger.warning("location_retention: sweep failed: %s", exc)
        return 0


def install_retention_sweeper(
    scheduler,
    sweeper: RetentionSweeper | None = None,
    interval_hours: int | None = None,
) -> RetentionSweeper:
    """
    Register the location retention job with the shared APScheduler instance.

    Args:
        scheduler: The application's AsyncIOScheduler (from geotrack.scheduler).
        sweeper: Sweeper to run; defaults to one bound to the shared cache.
        interval_hours: How often to run (default from settings).
    """
    sweeper = sweeper or RetentionSweeper(cache=get_current_location_cache())
    interval_hours = interval_hours or settings.retention_sweep_interval_hours
    scheduler.add_job(
        run_retention_sweep,
        trigger=IntervalTrigger(hours=interval_hours),
        args=[sweeper],
        id="location_retention",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "location_retention: installed (retention=%d days, interval=%dh)",
        sweeper.retention_days,
        interval_hours,
    )
    return sweeper

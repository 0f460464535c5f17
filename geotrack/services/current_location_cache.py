"""
Current Location Cache

Keeps the latest accepted sample per subject for O(1) dashboard reads.
Updates are monotonic by sample timestamp: a sample only replaces the
cached one when it is strictly newer, whatever order the writes finish in.
Liveness (online / idle / offline) is computed at read time from the
sample's age.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geotrack.config import settings
from geotrack.exceptions import TransientStorageError
from geotrack.models.location_sample import AccuracyTier, LocationSample, LocationSource
from geotrack.schemas.location import LivenessStatus
from geotrack.utils.time_utils import Clock, as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SampleSnapshot:
    """Detached, immutable copy of a stored LocationSample."""

    subject_id: int
    timestamp: datetime
    latitude: float | None
    longitude: float | None
    accuracy: AccuracyTier
    source: LocationSource
    city: str | None = None
    region: str | None = None
    country: str | None = None
    accuracy_meters: float | None = None

    @classmethod
    def from_model(cls, sample: LocationSample) -> "SampleSnapshot":
        return cls(
            subject_id=sample.subject_id,
            timestamp=as_utc(sample.timestamp),
            latitude=sample.latitude,
            longitude=sample.longitude,
            accuracy=AccuracyTier(sample.accuracy),
            source=LocationSource(sample.source),
            city=sample.city,
            region=sample.region,
            country=sample.country,
            accuracy_meters=sample.accuracy_meters,
        )


@dataclass(frozen=True)
class CurrentLocationView:
    subject_id: int
    sample: SampleSnapshot
    status: LivenessStatus

    def to_event(self) -> dict:
        sample = self.sample
        return {
            "subject_id": self.subject_id,
            "status": self.status.value,
            "timestamp": sample.timestamp.isoformat(),
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "accuracy": sample.accuracy.value,
            "source": sample.source.value,
            "city": sample.city,
            "region": sample.region,
            "country": sample.country,
        }


def liveness_for(
    sample_time: datetime,
    now: datetime,
    online_after: timedelta | None = None,
    idle_after: timedelta | None = None,
) -> LivenessStatus:
    if online_after is None:
        online_after = timedelta(minutes=settings.online_threshold_minutes)
    if idle_after is None:
        idle_after = timedelta(minutes=settings.idle_threshold_minutes)
    age = now - as_utc(sample_time)
    if age <= online_after:
        return LivenessStatus.ONLINE
    if age <= idle_after:
        return LivenessStatus.IDLE
    return LivenessStatus.OFFLINE


class CurrentLocationCache:
    def __init__(self, clock: Clock = utc_now) -> None:
        self._latest: dict[int, SampleSnapshot] = {}
        self._clock = clock

    def offer(self, sample: SampleSnapshot) -> bool:
        """
        Offer a newly stored sample. Returns True if it became current.

        Callers serialize offers per subject; the timestamp comparison makes
        the result independent of the order in which offers arrive.
        """
        current = self._latest.get(sample.subject_id)
        if current is not None and current.timestamp >= sample.timestamp:
            return False
        self._latest[sample.subject_id] = sample
        return True

    def get(self, subject_id: int) -> CurrentLocationView | None:
        sample = self._latest.get(subject_id)
        if sample is None:
            return None
        return self._view(sample)

    def view_of(self, sample: SampleSnapshot) -> CurrentLocationView:
        return self._view(sample)

    async def get_many(self, subject_ids: list[int], db: AsyncSession) -> dict[int, CurrentLocationView]:
        """Return views for the given subjects, loading cache misses from storage."""
        missing = [subject_id for subject_id in subject_ids if subject_id not in self._latest]
        if missing:
            await self._load_latest(missing, db)
        views = {}
        for subject_id in subject_ids:
            view = self.get(subject_id)
            if view is not None:
                views[subject_id] = view
        return views

    def evict_older_than(self, cutoff: datetime) -> int:
        stale = [subject_id for subject_id, sample in self._latest.items() if sample.timestamp < cutoff]
        for subject_id in stale:
            del self._latest[subject_id]
        return len(stale)

    def clear(self) -> None:
        self._latest.clear()

    def __len__(self) -> int:
        return len(self._latest)

    def _view(self, sample: SampleSnapshot) -> CurrentLocationView:
        return CurrentLocationView(
            subject_id=sample.subject_id,
            sample=sample,
            status=liveness_for(sample.timestamp, self._clock()),
        )

    async def _load_latest(self, subject_ids: list[int], db: AsyncSession) -> None:
        latest = (
            select(LocationSample.subject_id, func.max(LocationSample.timestamp).label("latest"))
            .where(LocationSample.subject_id.in_(subject_ids))
            .group_by(LocationSample.subject_id)
            .subquery()
        )
        stmt = select(LocationSample).join(
            latest,
            (LocationSample.subject_id == latest.c.subject_id) & (LocationSample.timestamp == latest.c.latest),
        )
        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as exc:
            raise TransientStorageError(operation="load_current_locations") from exc

        loaded = 0
        for sample in result.scalars().all():
            if self.offer(SampleSnapshot.from_model(sample)):
                loaded += 1
        logger.debug("Loaded %d current locations from storage", loaded)


# ============== Global Instance ==============

current_location_cache = CurrentLocationCache()


def get_current_location_cache() -> CurrentLocationCache:
    """Get the CurrentLocationCache singleton."""
    return current_location_cache

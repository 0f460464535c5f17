"""
Location Ingestion Service

Accepts raw position samples from subjects' devices, gates them on the
subject's current consent, classifies accuracy, attaches a best-effort
address, persists the sample, refreshes the current-location cache and
notifies real-time subscribers.

Writes for the same subject are serialized with the subject's consent
lock, so a sample is never stored after the revocation that should have
blocked it. Subjects never wait on each other.
"""

import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geotrack.config import settings
from geotrack.exceptions import (
    ConsentWithdrawnError,
    DependencyUnavailableError,
    TransientStorageError,
    ValidationError,
)
from geotrack.models.location_sample import AccuracyTier, LocationSample
from geotrack.schemas.location import Address, RawLocationSample
from geotrack.services.consent_service import ConsentStore, get_consent_store
from geotrack.services.current_location_cache import (
    CurrentLocationCache,
    SampleSnapshot,
    get_current_location_cache,
)
from geotrack.services.geocoding import ReverseGeocoder, build_geocoder
from geotrack.services.realtime_notifier import RealtimeNotifier, get_realtime_notifier
from geotrack.utils.metrics import (
    GEOCODER_FAILURES_TOTAL,
    LOCATION_SAMPLES_DUPLICATE_TOTAL,
    LOCATION_SAMPLES_INGESTED_TOTAL,
    LOCATION_SAMPLES_REJECTED_TOTAL,
)
from geotrack.utils.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)


def classify_accuracy(accuracy_meters: float | None) -> AccuracyTier:
    """Map raw horizontal accuracy (meters) to a tier. Unknown accuracy is low."""
    if accuracy_meters is None:
        return AccuracyTier.LOW
    if accuracy_meters < settings.high_accuracy_meters:
        return AccuracyTier.HIGH
    if accuracy_meters < settings.medium_accuracy_meters:
        return AccuracyTier.MEDIUM
    return AccuracyTier.LOW


class LocationIngestor:
    def __init__(
        self,
        consent_store: ConsentStore,
        cache: CurrentLocationCache,
        notifier: RealtimeNotifier,
        geocoder: ReverseGeocoder,
        clock: Clock = utc_now,
    ) -> None:
        self.consent_store = consent_store
        self.cache = cache
        self.notifier = notifier
        self.geocoder = geocoder
        self._clock = clock

    async def record(self, subject_id: int, raw: RawLocationSample, db: AsyncSession) -> SampleSnapshot:
        """
        Store a sample for ``subject_id``.

        Raises:
            ConsentWithdrawnError: the subject does not hold consent; nothing is stored.
            ValidationError: the timestamp lies too far in the future.
            TransientStorageError: storage failed; the call may be retried safely,
                since (subject_id, timestamp) is idempotent.
        """
        consent = await self.consent_store.get_consent(subject_id, db)
        if not consent.has_consent:
            self._reject_without_consent(subject_id)

        now = self._clock()
        timestamp = raw.timestamp or now
        if timestamp > now + timedelta(seconds=settings.max_clock_skew_seconds):
            LOCATION_SAMPLES_REJECTED_TOTAL.labels(reason="validation").inc()
            raise ValidationError("Sample timestamp is in the future", field="timestamp")

        address = await self._resolve_address(raw)

        async with self.consent_store.lock_for(subject_id):
            # Consent may have been revoked while the address was resolving
            consent = await self.consent_store.get_consent_locked(subject_id, db)
            if not consent.has_consent:
                self._reject_without_consent(subject_id)

            existing = await self._find(subject_id, timestamp, db)
            if existing is not None:
                LOCATION_SAMPLES_DUPLICATE_TOTAL.inc()
                logger.debug("Duplicate sample for subject %d at %s", subject_id, timestamp.isoformat())
                return SampleSnapshot.from_model(existing)

            sample = LocationSample(
                subject_id=subject_id,
                timestamp=timestamp,
                latitude=raw.latitude,
                longitude=raw.longitude,
                accuracy_meters=raw.accuracy,
                accuracy=classify_accuracy(raw.accuracy),
                source=raw.source,
                city=address.city if address else None,
                region=address.region if address else None,
                country=address.country if address else None,
                created_at=now,
            )
            snapshot = SampleSnapshot(
                subject_id=subject_id,
                timestamp=timestamp,
                latitude=sample.latitude,
                longitude=sample.longitude,
                accuracy=sample.accuracy,
                source=sample.source,
                city=sample.city,
                region=sample.region,
                country=sample.country,
                accuracy_meters=sample.accuracy_meters,
            )
            db.add(sample)
            try:
                await db.commit()
            except IntegrityError:
                # Another writer stored the same (subject, timestamp) first
                await db.rollback()
                existing = await self._find(subject_id, timestamp, db)
                if existing is None:
                    raise TransientStorageError(operation="record_location") from None
                LOCATION_SAMPLES_DUPLICATE_TOTAL.inc()
                return SampleSnapshot.from_model(existing)
            except SQLAlchemyError as exc:
                await db.rollback()
                LOCATION_SAMPLES_REJECTED_TOTAL.labels(reason="storage").inc()
                logger.error("Failed to store location sample for subject %d: %s", subject_id, exc)
                raise TransientStorageError(operation="record_location") from exc

            if self.cache.offer(snapshot):
                self.notifier.publish(subject_id, self.cache.view_of(snapshot))

        LOCATION_SAMPLES_INGESTED_TOTAL.labels(accuracy=snapshot.accuracy.value).inc()
        logger.debug(
            "Recorded location for subject %d at %s (%s, %s)",
            subject_id,
            snapshot.timestamp.isoformat(),
            snapshot.source.value,
            snapshot.accuracy.value,
        )
        return snapshot

    @staticmethod
    def _reject_without_consent(subject_id: int):
        LOCATION_SAMPLES_REJECTED_TOTAL.labels(reason="consent").inc()
        logger.info("Rejected location sample for subject %d: no consent", subject_id)
        raise ConsentWithdrawnError(subject_id)

    async def _resolve_address(self, raw: RawLocationSample) -> Address | None:
        hint = raw.address if raw.address and not raw.address.is_empty() else None
        if not raw.has_coordinates:
            return hint
        try:
            resolved = await self.geocoder.resolve(raw.latitude, raw.longitude)
        except DependencyUnavailableError as exc:
            GEOCODER_FAILURES_TOTAL.inc()
            logger.warning("Reverse geocoding unavailable, storing sample without address: %s", exc.message)
            return hint
        return resolved or hint

    async def _find(self, subject_id, timestamp, db: AsyncSession) -> LocationSample | None:
        try:
            result = await db.execute(
                select(LocationSample).where(
                    LocationSample.subject_id == subject_id,
                    LocationSample.timestamp == timestamp,
                )
            )
        except SQLAlchemyError as exc:
            raise TransientStorageError(operation="record_location") from exc
        return result.scalars().first()


# ============== Global Instance ==============

location_ingestor = LocationIngestor(
    consent_store=get_consent_store(),
    cache=get_current_location_cache(),
    notifier=get_realtime_notifier(),
    geocoder=build_geocoder(),
)


def get_location_ingestor() -> LocationIngestor:
    """Get the LocationIngestor singleton."""
    return location_ingestor

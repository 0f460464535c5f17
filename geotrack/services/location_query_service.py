"""
Location Query Service

Answers operator reads of subjects' location data: the current-location
overview, per-subject timelines and timeline CSV exports.

Every answer is redacted against the subject's current consent, and every
disclosure of another subject's data produces an audit entry. Reads of
one's own data are redacted the same way but are not audited.
"""

import csv
import io
import logging
from collections.abc import Awaitable, Callable
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geotrack.config import settings
from geotrack.exceptions import QueryAbortedError, SubjectNotFoundError, TransientStorageError, ValidationError
from geotrack.models.audit_entry import AuditAction
from geotrack.models.location_sample import LocationSample
from geotrack.models.user import User
from geotrack.schemas.caller import Caller
from geotrack.schemas.location import (
    ConsentFilter,
    ConsentListResponse,
    CurrentLocationEntry,
    CurrentLocationFilter,
    LocationSampleOut,
    SubjectSummary,
)
from geotrack.services.audit_service import AuditLogger, AuditRecord, get_audit_logger
from geotrack.services.consent_service import ConsentStore, get_consent_store
from geotrack.services.current_location_cache import (
    CurrentLocationCache,
    SampleSnapshot,
    get_current_location_cache,
)
from geotrack.services.realtime_notifier import LocationEvent
from geotrack.services.redaction import redact_sample
from geotrack.utils.security import sanitize_csv_field
from geotrack.utils.time_utils import Clock, day_bounds, utc_now

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = ["timestamp", "latitude", "longitude", "source", "accuracy", "city", "region"]

CancelCheck = Callable[[], Awaitable[bool]]


class LocationQueryService:
    def __init__(
        self,
        consent_store: ConsentStore,
        cache: CurrentLocationCache,
        audit: AuditLogger,
        clock: Clock = utc_now,
    ) -> None:
        self.consent_store = consent_store
        self.cache = cache
        self.audit = audit
        self._clock = clock

    async def current_locations(
        self,
        caller: Caller,
        location_filter: CurrentLocationFilter,
        db: AsyncSession,
    ) -> list[CurrentLocationEntry]:
        """Current location of every matching subject that holds consent."""
        stmt = select(User).where(User.is_active.is_(True)).order_by(User.username, User.id)
        if location_filter.team:
            stmt = stmt.where(User.team == location_filter.team)
        if location_filter.role:
            stmt = stmt.where(User.role == location_filter.role)
        try:
            users = list((await db.execute(stmt)).scalars().all())
        except SQLAlchemyError as exc:
            raise TransientStorageError(operation="current_locations") from exc

        views = await self.cache.get_many([user.id for user in users], db)

        entries = []
        for user in users:
            view = views.get(user.id)
            if view is None:
                continue
            if location_filter.status is not None and view.status != location_filter.status:
                continue
            if location_filter.accuracy is not None and view.sample.accuracy != location_filter.accuracy:
                continue
            consent = await self.consent_store.get_consent(user.id, db)
            location = redact_sample(view.sample, consent.consent_level) if consent.has_consent else None
            if location is None:
                continue
            entries.append(
                CurrentLocationEntry(
                    subject=SubjectSummary.model_validate(user),
                    location=location,
                    status=view.status,
                    consent_level=consent.consent_level,
                )
            )

        await self.audit.record_many(
            [
                self._audit_record(caller, entry.subject.id, AuditAction.VIEW_CURRENT)
                for entry in entries
                if entry.subject.id != caller.user_id
            ]
        )
        return entries

    async def timeline(
        self,
        caller: Caller,
        subject_id: int,
        start_date: date,
        end_date: date,
        db: AsyncSession,
        is_cancelled: CancelCheck | None = None,
    ) -> list[LocationSampleOut]:
        """
        The subject's samples between two calendar dates (inclusive, UTC),
        oldest first. An inverted range yields an empty list.
        """
        return await self._disclose_timeline(
            caller, subject_id, start_date, end_date, db, is_cancelled, AuditAction.VIEW_TIMELINE
        )

    async def export_timeline(
        self,
        caller: Caller,
        subject_id: int,
        start_date: date,
        end_date: date,
        db: AsyncSession,
        is_cancelled: CancelCheck | None = None,
    ) -> str:
        """Timeline rendered as CSV, with the same redaction as ``timeline``."""
        samples = await self._disclose_timeline(
            caller, subject_id, start_date, end_date, db, is_cancelled, AuditAction.EXPORT_TIMELINE
        )
        return render_timeline_csv(samples)

    async def disclose_event(self, caller: Caller, event: LocationEvent, db: AsyncSession) -> dict | None:
        """
        Redact a real-time event for a dashboard subscriber.

        Returns None when the subject no longer holds consent. Forwarded
        events count as disclosures and are audited like ``current_locations``.
        """
        consent = await self.consent_store.get_consent(event.subject_id, db)
        if not consent.has_consent:
            return None
        location = redact_sample(event.view.sample, consent.consent_level)
        if location is None:
            return None
        if event.subject_id != caller.user_id:
            await self.audit.record(self._audit_record(caller, event.subject_id, AuditAction.VIEW_CURRENT))
        return {
            "subject_id": event.subject_id,
            "status": event.view.status.value,
            "consent_level": consent.consent_level.value,
            "location": location.model_dump(mode="json"),
        }

    async def consent_overview(
        self,
        caller: Caller,
        consent_filter: ConsentFilter,
        db: AsyncSession,
    ) -> ConsentListResponse:
        """Consent state of every subject plus per-level counts; audited as one entry."""
        listings = await self.consent_store.list_consents(consent_filter, db)
        await self.audit.record(
            self._audit_record(
                caller,
                None,
                AuditAction.VIEW_CONSENT_LIST,
                details={"subjects": len(listings), **consent_filter.model_dump(mode="json", exclude_none=True)},
            )
        )
        return ConsentListResponse(consents=listings, summary=self.consent_store.summarize(listings))

    # ============== Private Methods ==============

    async def _disclose_timeline(
        self,
        caller: Caller,
        subject_id: int,
        start_date: date,
        end_date: date,
        db: AsyncSession,
        is_cancelled: CancelCheck | None,
        action: AuditAction,
    ) -> list[LocationSampleOut]:
        if start_date > end_date:
            return []
        if (end_date - start_date).days + 1 > settings.timeline_max_days:
            raise ValidationError(
                f"Timeline range may span at most {settings.timeline_max_days} days",
                field="endDate",
            )

        try:
            subject = await db.get(User, subject_id)
        except SQLAlchemyError as exc:
            raise TransientStorageError(operation="timeline") from exc
        if subject is None:
            raise SubjectNotFoundError(subject_id)

        consent = await self.consent_store.get_consent(subject_id, db)
        if not consent.has_consent:
            return []

        samples = await self._scan(subject_id, start_date, end_date, db, is_cancelled)
        disclosed = [redact_sample(sample, consent.consent_level) for sample in samples]

        if disclosed and subject_id != caller.user_id:
            await self.audit.record(
                self._audit_record(
                    caller,
                    subject_id,
                    action,
                    details={
                        "start_date": start_date.isoformat(),
                        "end_date": end_date.isoformat(),
                        "rows": len(disclosed),
                    },
                )
            )
        return disclosed

    async def _scan(
        self,
        subject_id: int,
        start_date: date,
        end_date: date,
        db: AsyncSession,
        is_cancelled: CancelCheck | None,
    ) -> list[SampleSnapshot]:
        start, end = day_bounds(start_date, end_date)
        batch_size = settings.timeline_batch_size
        stmt = (
            select(LocationSample)
            .where(
                LocationSample.subject_id == subject_id,
                LocationSample.timestamp >= start,
                LocationSample.timestamp < end,
            )
            .order_by(LocationSample.timestamp.asc())
            .execution_options(yield_per=batch_size)
        )

        samples: list[SampleSnapshot] = []
        try:
            result = await db.stream_scalars(stmt)
            try:
                async for partition in result.partitions(batch_size):
                    if is_cancelled is not None and await is_cancelled():
                        logger.info("Timeline scan for subject %d aborted after %d rows", subject_id, len(samples))
                        raise QueryAbortedError()
                    samples.extend(SampleSnapshot.from_model(sample) for sample in partition)
            finally:
                await result.close()
        except SQLAlchemyError as exc:
            raise TransientStorageError(operation="timeline") from exc
        return samples

    def _audit_record(
        self,
        caller: Caller,
        subject_id: int | None,
        action: AuditAction,
        details: dict | None = None,
    ) -> AuditRecord:
        return AuditRecord(
            operator_id=caller.user_id,
            subject_id=subject_id,
            action=action,
            ip_address=caller.ip_address,
            details=details,
            timestamp=self._clock(),
        )


def render_timeline_csv(samples: list[LocationSampleOut]) -> str:
    """Render samples with the fixed export column order."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for sample in samples:
        coordinates = sample.coordinates
        address = sample.address
        writer.writerow(
            [
                sample.timestamp.isoformat(),
                coordinates.latitude if coordinates else "",
                coordinates.longitude if coordinates else "",
                sample.source.value,
                sample.accuracy.value,
                sanitize_csv_field(address.city if address else None),
                sanitize_csv_field(address.region if address else None),
            ]
        )
    return output.getvalue()


# ============== Global Instance ==============

location_query_service = LocationQueryService(
    consent_store=get_consent_store(),
    cache=get_current_location_cache(),
    audit=get_audit_logger(),
)


def get_location_query_service() -> LocationQueryService:
    """Get the LocationQueryService singleton."""
    return location_query_service

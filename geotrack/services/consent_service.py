"""
Location Consent Service

Holds each subject's current location-sharing consent. This is the single
mutation path for consent; every other component only reads it.

Consent state is cached as immutable ``ConsentState`` snapshots keyed by
subject. A mutation commits to the database first and then swaps in a new
snapshot under the subject's lock, so readers always observe either the
old or the new state, never a partial one. The same lock orders sample
writes against consent changes (see ``lock_for``).
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geotrack.exceptions import TransientStorageError, ValidationError
from geotrack.models.consent import ConsentLevel, LocationConsent
from geotrack.models.user import User
from geotrack.schemas.location import ConsentFilter, ConsentListing, ConsentOut, SubjectSummary
from geotrack.utils.locks import KeyedLocks
from geotrack.utils.time_utils import Clock, as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsentState:
    subject_id: int
    has_consent: bool = False
    consent_level: ConsentLevel = ConsentLevel.NONE
    consent_date: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, record: LocationConsent) -> "ConsentState":
        has_consent = bool(record.has_consent)
        return cls(
            subject_id=record.subject_id,
            has_consent=has_consent,
            consent_level=ConsentLevel(record.consent_level) if has_consent else ConsentLevel.NONE,
            consent_date=as_utc(record.consent_date) if record.consent_date else None,
            updated_at=as_utc(record.updated_at) if record.updated_at else None,
        )

    def to_schema(self) -> ConsentOut:
        return ConsentOut(
            subject_id=self.subject_id,
            has_consent=self.has_consent,
            consent_level=self.consent_level,
            consent_date=self.consent_date,
            updated_at=self.updated_at,
        )


def coerce_consent_level(value: ConsentLevel | str) -> ConsentLevel:
    try:
        return ConsentLevel(value)
    except ValueError:
        raise ValidationError(
            f"Invalid consent level '{value}'",
            field="consent_level",
            details={"allowed": [level.value for level in ConsentLevel]},
        ) from None


class ConsentStore:
    """Source of truth for whether and how precisely a subject may be tracked."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._states: dict[int, ConsentState] = {}
        self._locks = KeyedLocks()
        self._clock = clock

    async def get_consent(self, subject_id: int, db: AsyncSession) -> ConsentState:
        """Return the subject's consent, or the default (no consent) state."""
        state = self._states.get(subject_id)
        if state is not None:
            return state

        async with self._locks.get(subject_id):
            return await self.get_consent_locked(subject_id, db)

    async def get_consent_locked(self, subject_id: int, db: AsyncSession) -> ConsentState:
        """Read consent while already holding ``lock_for(subject_id)``."""
        state = self._states.get(subject_id)
        if state is None:
            record = await self._load(subject_id, db)
            state = ConsentState.from_model(record) if record else ConsentState(subject_id=subject_id)
            self._states[subject_id] = state
        return state

    def lock_for(self, subject_id: int) -> asyncio.Lock:
        """
        The subject's lock. Consent changes take it, and so must any writer
        whose write has to be ordered against a revocation.
        """
        return self._locks.get(subject_id)

    async def set_consent(
        self,
        subject_id: int,
        has_consent: bool,
        consent_level: ConsentLevel | str,
        db: AsyncSession,
    ) -> ConsentState:
        """
        Apply a subject's consent decision.

        Opting out always forces the level to ``none``. ``consent_date`` is
        stamped only on a false -> true transition; ``updated_at`` on every
        call.
        """
        level = coerce_consent_level(consent_level)
        if not has_consent:
            level = ConsentLevel.NONE
        elif level == ConsentLevel.NONE:
            raise ValidationError(
                "Granting consent requires a consent level of 'basic' or 'detailed'",
                field="consent_level",
            )

        async with self._locks.get(subject_id):
            record = await self._load(subject_id, db)
            now = self._clock()
            previously_granted = bool(record.has_consent) if record else False

            if record is None:
                record = LocationConsent(subject_id=subject_id)
                db.add(record)

            record.has_consent = has_consent
            record.consent_level = level
            if has_consent and not previously_granted:
                record.consent_date = now
            record.updated_at = now

            try:
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error("Failed to store consent for subject %d: %s", subject_id, exc)
                raise TransientStorageError(operation="set_consent") from exc

            state = ConsentState(
                subject_id=subject_id,
                has_consent=has_consent,
                consent_level=level,
                consent_date=as_utc(record.consent_date) if record.consent_date else None,
                updated_at=now,
            )
            self._states[subject_id] = state

        logger.info(
            "Location consent updated: subject=%d has_consent=%s level=%s",
            subject_id,
            has_consent,
            level.value,
        )
        return state

    async def list_consents(self, consent_filter: ConsentFilter, db: AsyncSession) -> list[ConsentListing]:
        """List every active subject with its consent state, for reporting."""
        stmt = (
            select(User, LocationConsent)
            .outerjoin(LocationConsent, LocationConsent.subject_id == User.id)
            .where(User.is_active.is_(True))
            .order_by(User.username, User.id)
        )

        if consent_filter.team:
            stmt = stmt.where(User.team == consent_filter.team)

        no_record = LocationConsent.id.is_(None)
        if consent_filter.has_consent is True:
            stmt = stmt.where(LocationConsent.has_consent.is_(True))
        elif consent_filter.has_consent is False:
            stmt = stmt.where(or_(no_record, LocationConsent.has_consent.is_(False)))

        if consent_filter.consent_level == ConsentLevel.NONE:
            stmt = stmt.where(or_(no_record, LocationConsent.has_consent.is_(False)))
        elif consent_filter.consent_level is not None:
            stmt = stmt.where(
                and_(
                    LocationConsent.has_consent.is_(True),
                    LocationConsent.consent_level == consent_filter.consent_level,
                )
            )

        try:
            rows = (await db.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise TransientStorageError(operation="list_consents") from exc

        listings = []
        for user, record in rows:
            state = ConsentState.from_model(record) if record else ConsentState(subject_id=user.id)
            listings.append(
                ConsentListing(
                    subject=SubjectSummary.model_validate(user),
                    consent=state.to_schema(),
                )
            )
        return listings

    @staticmethod
    def summarize(listings: list[ConsentListing]) -> dict[str, int]:
        """Count subjects per consent level."""
        counts = Counter(listing.consent.consent_level.value for listing in listings)
        return {level.value: counts.get(level.value, 0) for level in ConsentLevel}

    async def _load(self, subject_id: int, db: AsyncSession) -> LocationConsent | None:
        try:
            result = await db.execute(select(LocationConsent).where(LocationConsent.subject_id == subject_id))
        except SQLAlchemyError as exc:
            raise TransientStorageError(operation="get_consent") from exc
        return result.scalars().first()


# ============== Global Instance ==============

consent_store = ConsentStore()


def get_consent_store() -> ConsentStore:
    """Get the ConsentStore singleton."""
    return consent_store

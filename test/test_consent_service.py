"""
Tests for the location consent store.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from geotrack.exceptions import TransientStorageError, ValidationError
from geotrack.models import ConsentLevel, LocationConsent
from geotrack.schemas.location import ConsentFilter
from geotrack.services.consent_service import ConsentState, ConsentStore, coerce_consent_level, get_consent_store
from utils.mock_utils import FROZEN_NOW, create_test_user, grant_consent


class TestCoerceConsentLevel:
    def test_accepts_enum_and_string(self):
        assert coerce_consent_level(ConsentLevel.BASIC) == ConsentLevel.BASIC
        assert coerce_consent_level("detailed") == ConsentLevel.DETAILED

    def test_rejects_unknown_level(self):
        with pytest.raises(ValidationError) as exc_info:
            coerce_consent_level("precise")

        assert exc_info.value.details["field"] == "consent_level"
        assert exc_info.value.details["allowed"] == ["none", "basic", "detailed"]


class TestGetConsent:
    async def test_default_state_for_subject_without_record(self, consent_store, employee, test_db):
        """A subject who never decided has no consent"""
        state = await consent_store.get_consent(employee.id, test_db)

        assert state == ConsentState(subject_id=employee.id)
        assert state.has_consent is False
        assert state.consent_level == ConsentLevel.NONE
        assert state.consent_date is None

    async def test_unknown_subject_never_fails(self, consent_store, test_db):
        state = await consent_store.get_consent(987654, test_db)
        assert state.has_consent is False

    async def test_loads_stored_record(self, clock, employee, test_db):
        test_db.add(
            LocationConsent(
                subject_id=employee.id,
                has_consent=True,
                consent_level=ConsentLevel.BASIC,
                consent_date=FROZEN_NOW,
                updated_at=FROZEN_NOW,
            )
        )
        await test_db.commit()

        state = await ConsentStore(clock=clock).get_consent(employee.id, test_db)

        assert state.has_consent is True
        assert state.consent_level == ConsentLevel.BASIC
        assert state.consent_date == FROZEN_NOW


class TestSetConsent:
    async def test_grant_sets_consent_date(self, consent_store, employee, test_db):
        state = await consent_store.set_consent(employee.id, True, "detailed", test_db)

        assert state.has_consent is True
        assert state.consent_level == ConsentLevel.DETAILED
        assert state.consent_date == FROZEN_NOW
        assert state.updated_at == FROZEN_NOW

        record = (
            await test_db.execute(select(LocationConsent).where(LocationConsent.subject_id == employee.id))
        ).scalar_one()
        assert record.has_consent is True
        assert record.consent_level == ConsentLevel.DETAILED

    async def test_revoke_forces_level_none(self, consent_store, employee, test_db):
        await grant_consent(consent_store, employee, test_db, ConsentLevel.DETAILED)

        state = await consent_store.set_consent(employee.id, False, ConsentLevel.DETAILED, test_db)

        assert state.has_consent is False
        assert state.consent_level == ConsentLevel.NONE

    async def test_grant_with_level_none_is_rejected(self, consent_store, employee, test_db):
        with pytest.raises(ValidationError):
            await consent_store.set_consent(employee.id, True, ConsentLevel.NONE, test_db)

        state = await consent_store.get_consent(employee.id, test_db)
        assert state.has_consent is False

    async def test_invalid_level_is_rejected(self, consent_store, employee, test_db):
        with pytest.raises(ValidationError):
            await consent_store.set_consent(employee.id, True, "everything", test_db)

    async def test_consent_date_only_changes_on_false_to_true(self, clock, consent_store, employee, test_db):
        first = await grant_consent(consent_store, employee, test_db, ConsentLevel.BASIC)

        clock.advance(hours=1)
        upgraded = await grant_consent(consent_store, employee, test_db, ConsentLevel.DETAILED)
        assert upgraded.consent_date == first.consent_date
        assert upgraded.updated_at == FROZEN_NOW + timedelta(hours=1)

        clock.advance(hours=1)
        await consent_store.set_consent(employee.id, False, ConsentLevel.NONE, test_db)

        clock.advance(hours=1)
        regranted = await grant_consent(consent_store, employee, test_db, ConsentLevel.BASIC)
        assert regranted.consent_date == FROZEN_NOW + timedelta(hours=3)

    async def test_revocation_keeps_consent_row(self, consent_store, employee, test_db):
        await grant_consent(consent_store, employee, test_db)
        await consent_store.set_consent(employee.id, False, "none", test_db)

        rows = (
            (await test_db.execute(select(LocationConsent).where(LocationConsent.subject_id == employee.id)))
            .scalars()
            .all()
        )
        assert len(rows) == 1
        assert rows[0].has_consent is False

    async def test_update_is_visible_to_next_read(self, consent_store, employee, test_db):
        await consent_store.get_consent(employee.id, test_db)
        await grant_consent(consent_store, employee, test_db, ConsentLevel.BASIC)

        state = await consent_store.get_consent(employee.id, test_db)
        assert state.consent_level == ConsentLevel.BASIC

    async def test_snapshots_are_immutable(self, consent_store, employee, test_db):
        state = await grant_consent(consent_store, employee, test_db)
        with pytest.raises(AttributeError):
            state.has_consent = False

    async def test_concurrent_updates_leave_one_consistent_state(self, consent_store, employee, session_factory):
        async def apply(has_consent, level):
            async with session_factory() as session:
                return await consent_store.set_consent(employee.id, has_consent, level, session)

        await asyncio.gather(
            apply(True, ConsentLevel.BASIC),
            apply(False, ConsentLevel.NONE),
            apply(True, ConsentLevel.DETAILED),
        )

        async with session_factory() as session:
            cached = await consent_store.get_consent(employee.id, session)
            reloaded = await ConsentStore().get_consent(employee.id, session)

        assert cached.has_consent == reloaded.has_consent
        assert cached.consent_level == reloaded.consent_level
        assert (cached.has_consent, cached.consent_level) in {
            (True, ConsentLevel.BASIC),
            (False, ConsentLevel.NONE),
            (True, ConsentLevel.DETAILED),
        }

    async def test_storage_failure_raises_transient_error(
        self, consent_store, employee, test_db, session_factory, monkeypatch
    ):
        await consent_store.get_consent(employee.id, test_db)

        async def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(test_db, "commit", failing_commit)

        with pytest.raises(TransientStorageError) as exc_info:
            await consent_store.set_consent(employee.id, True, ConsentLevel.BASIC, test_db)

        assert exc_info.value.details["retryable"] is True
        assert exc_info.value.details["operation"] == "set_consent"

        # Neither the cached snapshot nor the database saw the failed write
        cached = await consent_store.get_consent(employee.id, test_db)
        assert cached.has_consent is False
        async with session_factory() as session:
            stored = await ConsentStore().get_consent(employee.id, session)
        assert stored.has_consent is False


class TestListConsents:
    @pytest.fixture
    async def population(self, consent_store, test_db):
        detailed = await create_test_user(test_db, "dora", team="field")
        basic = await create_test_user(test_db, "ben", team="warehouse")
        revoked = await create_test_user(test_db, "rita", team="field")
        undecided = await create_test_user(test_db, "uma", team="field")
        inactive = await create_test_user(test_db, "ivan", team="field", is_active=False)

        await grant_consent(consent_store, detailed, test_db, ConsentLevel.DETAILED)
        await grant_consent(consent_store, basic, test_db, ConsentLevel.BASIC)
        await grant_consent(consent_store, revoked, test_db, ConsentLevel.BASIC)
        await consent_store.set_consent(revoked.id, False, ConsentLevel.NONE, test_db)
        return {"detailed": detailed, "basic": basic, "revoked": revoked, "undecided": undecided, "inactive": inactive}

    async def test_lists_every_active_subject(self, consent_store, population, test_db):
        listings = await consent_store.list_consents(ConsentFilter(), test_db)

        names = [listing.subject.username for listing in listings]
        assert names == ["ben", "dora", "rita", "uma"]

        undecided = next(listing for listing in listings if listing.subject.username == "uma")
        assert undecided.consent.has_consent is False
        assert undecided.consent.consent_level == ConsentLevel.NONE

    async def test_filter_by_has_consent(self, consent_store, population, test_db):
        granted = await consent_store.list_consents(ConsentFilter(has_consent=True), test_db)
        assert {listing.subject.username for listing in granted} == {"ben", "dora"}

        withheld = await consent_store.list_consents(ConsentFilter(has_consent=False), test_db)
        assert {listing.subject.username for listing in withheld} == {"rita", "uma"}

    async def test_filter_by_level_and_team(self, consent_store, population, test_db):
        basic = await consent_store.list_consents(ConsentFilter(consent_level=ConsentLevel.BASIC), test_db)
        assert [listing.subject.username for listing in basic] == ["ben"]

        none_in_field = await consent_store.list_consents(
            ConsentFilter(consent_level=ConsentLevel.NONE, team="field"), test_db
        )
        assert {listing.subject.username for listing in none_in_field} == {"rita", "uma"}

    async def test_summarize_counts_each_level(self, consent_store, population, test_db):
        listings = await consent_store.list_consents(ConsentFilter(), test_db)

        assert ConsentStore.summarize(listings) == {"none": 2, "basic": 1, "detailed": 1}

    def test_summarize_empty(self):
        assert ConsentStore.summarize([]) == {"none": 0, "basic": 0, "detailed": 0}


class TestSubjectLock:
    def test_one_lock_per_subject(self, consent_store):
        assert consent_store.lock_for(1) is consent_store.lock_for(1)
        assert consent_store.lock_for(1) is not consent_store.lock_for(2)

    async def test_consent_change_waits_for_lock_holder(self, consent_store, employee, session_factory, test_db):
        await grant_consent(consent_store, employee, test_db)

        async def revoke():
            async with session_factory() as session:
                return await consent_store.set_consent(employee.id, False, ConsentLevel.NONE, session)

        async with consent_store.lock_for(employee.id):
            pending = asyncio.create_task(revoke())
            await asyncio.sleep(0.05)
            assert not pending.done()
            # Readers already holding the lock still see the decision they started with
            state = await consent_store.get_consent_locked(employee.id, test_db)
            assert state.has_consent is True

        state = await pending
        assert state.has_consent is False

    async def test_locked_read_loads_from_storage(self, clock, employee, test_db):
        store = ConsentStore(clock=clock)
        await grant_consent(store, employee, test_db, ConsentLevel.BASIC)
        fresh = ConsentStore(clock=clock)

        async with fresh.lock_for(employee.id):
            state = await fresh.get_consent_locked(employee.id, test_db)

        assert state.consent_level == ConsentLevel.BASIC


class TestConsentStoreSingleton:
    def test_get_singleton(self):
        assert get_consent_store() is get_consent_store()

"""
Location Tracking Routes

Endpoints:
    GET  /consent                          caller's own consent
    PUT  /consent (POST accepted)          caller's own consent decision
    GET  /consent/all                      operators: every subject's consent + summary
    POST /record                           caller records their own position
    GET  /current                          operators: current locations (redacted, audited)
    GET  /timeline/{subject_id}            operators or self: timeline (redacted, audited)
    GET  /timeline/{subject_id}/export     same as CSV download
    GET  /audit                            administrators: audit log
"""

import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from geotrack.auth import get_caller, require_audit_viewer, require_operator
from geotrack.constants.roles import OPERATOR_ROLE
from geotrack.database import get_db
from geotrack.exceptions import InsufficientPrivilegeError
from geotrack.models.audit_entry import AuditAction
from geotrack.models.consent import ConsentLevel
from geotrack.models.location_sample import AccuracyTier
from geotrack.schemas.caller import Caller
from geotrack.schemas.location import (
    AuditEntryOut,
    AuditFilter,
    ConsentFilter,
    ConsentListResponse,
    ConsentOut,
    ConsentUpdate,
    CurrentLocationEntry,
    CurrentLocationFilter,
    LivenessStatus,
    LocationSampleOut,
    RawLocationSample,
)
from geotrack.services.audit_service import AuditLogger, get_audit_logger
from geotrack.services.consent_service import ConsentStore, get_consent_store
from geotrack.services.location_ingestor import LocationIngestor, get_location_ingestor
from geotrack.services.location_query_service import LocationQueryService, get_location_query_service
from geotrack.services.redaction import redact_sample

router = APIRouter(tags=["Location Tracking"])

logger = logging.getLogger(__name__)


# ============== Consent (self-service) ==============


@router.get("/consent", response_model=ConsentOut)
async def get_my_consent(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    store: ConsentStore = Depends(get_consent_store),
) -> ConsentOut:
    state = await store.get_consent(caller.user_id, db)
    return state.to_schema()


@router.put("/consent")
@router.post("/consent")
async def update_my_consent(
    update: ConsentUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    store: ConsentStore = Depends(get_consent_store),
) -> dict:
    """
    Opt in to or out of location tracking.

    A subject can only change their own consent; operators have no write
    path here. Opting out keeps already-stored samples but stops new
    recordings and hides the subject from every operator view.
    """
    state = await store.set_consent(caller.user_id, update.has_consent, update.consent_level, db)
    return {
        "message": "Location consent updated",
        "consent": state.to_schema().model_dump(mode="json"),
    }


@router.get("/consent/all", response_model=ConsentListResponse)
async def list_all_consents(
    has_consent: bool | None = None,
    consent_level: ConsentLevel | None = None,
    team: str | None = None,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    queries: LocationQueryService = Depends(get_location_query_service),
) -> ConsentListResponse:
    consent_filter = ConsentFilter(has_consent=has_consent, consent_level=consent_level, team=team)
    return await queries.consent_overview(caller, consent_filter, db)


# ============== Ingestion ==============


@router.post("/record", status_code=201)
async def record_location(
    sample: RawLocationSample,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    ingestor: LocationIngestor = Depends(get_location_ingestor),
) -> dict:
    """
    Record the caller's current position.

    Returns 403 with error_code CONSENT_WITHDRAWN when the caller has not
    granted consent (clients should stop their recording loop), and 503
    with STORAGE_UNAVAILABLE when the sample could not be stored (safe to
    retry with the same timestamp).
    """
    stored = await ingestor.record(caller.user_id, sample, db)
    return {
        "message": "Location recorded",
        "location": redact_sample(stored, ConsentLevel.DETAILED).model_dump(mode="json"),
    }


# ============== Operator reads ==============


@router.get("/current", response_model=list[CurrentLocationEntry])
async def get_current_locations(
    team: str | None = None,
    role: str | None = None,
    accuracy: AccuracyTier | None = None,
    status: LivenessStatus | None = None,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    queries: LocationQueryService = Depends(get_location_query_service),
) -> list[CurrentLocationEntry]:
    location_filter = CurrentLocationFilter(team=team or None, role=role or None, accuracy=accuracy, status=status)
    return await queries.current_locations(caller, location_filter, db)


def _check_timeline_access(caller: Caller, subject_id: int) -> None:
    if caller.user_id != subject_id and not caller.is_operator:
        raise InsufficientPrivilegeError(OPERATOR_ROLE.value)


@router.get("/timeline/{subject_id}", response_model=list[LocationSampleOut])
async def get_timeline(
    subject_id: int,
    request: Request,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    queries: LocationQueryService = Depends(get_location_query_service),
) -> list[LocationSampleOut]:
    _check_timeline_access(caller, subject_id)
    return await queries.timeline(
        caller, subject_id, start_date, end_date, db, is_cancelled=request.is_disconnected
    )


@router.get("/timeline/{subject_id}/export")
async def export_timeline(
    subject_id: int,
    request: Request,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    queries: LocationQueryService = Depends(get_location_query_service),
) -> Response:
    _check_timeline_access(caller, subject_id)
    csv_content = await queries.export_timeline(
        caller, subject_id, start_date, end_date, db, is_cancelled=request.is_disconnected
    )
    filename = f"subject_{subject_id}_location_timeline_{start_date.isoformat()}_{end_date.isoformat()}.csv"
    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============== Audit ==============


@router.get("/audit", response_model=list[AuditEntryOut])
async def get_audit_log(
    operator_id: int | None = None,
    subject_id: int | None = None,
    action: AuditAction | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(require_audit_viewer),
    db: AsyncSession = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
) -> list[AuditEntryOut]:
    """Audit entries, newest first. Restricted to the administrator tier."""
    audit_filter = AuditFilter(
        operator_id=operator_id,
        subject_id=subject_id,
        action=action,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    entries = await audit.query(audit_filter, db)
    logger.info("Audit log read by operator %d (%d entries)", caller.user_id, len(entries))
    return [AuditEntryOut.model_validate(entry) for entry in entries]

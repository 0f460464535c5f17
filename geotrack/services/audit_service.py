"""
Location Audit Service

Append-only record of every operator read of another subject's location
data ("who saw whose data when").

Entries are written through their own session so an audit failure can
never roll back or fail the disclosure it describes. Failed writes are
logged, counted in Prometheus and parked in a bounded retry queue that a
scheduled job flushes; entries that overflow the queue are counted as
dropped, so loss is always detectable.
"""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geotrack import database
from geotrack.config import settings
from geotrack.exceptions import AuditWriteFailure, TransientStorageError
from geotrack.models.audit_entry import AuditAction, LocationAuditEntry
from geotrack.schemas.location import AuditFilter
from geotrack.utils.metrics import (
    AUDIT_ENTRIES_DROPPED_TOTAL,
    AUDIT_ENTRIES_WRITTEN_TOTAL,
    AUDIT_PENDING_ENTRIES,
    AUDIT_WRITE_FAILURES_TOTAL,
    RETENTION_AUDIT_DELETED_TOTAL,
)
from geotrack.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    operator_id: int
    subject_id: int | None
    action: AuditAction
    ip_address: str | None = None
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_model(self) -> LocationAuditEntry:
        return LocationAuditEntry(
            operator_id=self.operator_id,
            subject_id=self.subject_id,
            action=self.action,
            timestamp=self.timestamp,
            ip_address=self.ip_address,
            details=json.dumps(self.details, default=str) if self.details else None,
        )


class AuditLogger:
    def __init__(self, session_factory=None, max_pending: int | None = None) -> None:
        self._session_factory = session_factory
        self._pending: deque[AuditRecord] = deque()
        self._max_pending = max_pending or settings.audit_pending_max
        self.dropped = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def record(self, entry: AuditRecord) -> bool:
        """Append one audit entry. Never raises; returns False if it was queued for retry."""
        return await self.record_many([entry])

    async def record_many(self, entries: list[AuditRecord]) -> bool:
        """Append a batch of audit entries in one transaction. Never raises."""
        if not entries:
            return True
        try:
            await self._write(entries)
        except Exception as exc:
            failure = AuditWriteFailure(len(entries), str(exc))
            logger.error(
                "audit: %s; queued for retry",
                failure.message,
                extra={"error_code": failure.error_code.value},
            )
            AUDIT_WRITE_FAILURES_TOTAL.inc(len(entries))
            self._enqueue(entries)
            return False
        return True

    async def flush_pending(self) -> int:
        """Retry queued entries. Returns how many were written."""
        if not self._pending:
            return 0
        batch = list(self._pending)
        self._pending.clear()
        try:
            await self._write(batch)
        except Exception as exc:
            logger.error("audit: retry of %d pending entries failed: %s", len(batch), exc)
            self._enqueue(batch)
            return 0
        finally:
            AUDIT_PENDING_ENTRIES.set(len(self._pending))
        logger.info("audit: flushed %d pending entries", len(batch))
        return len(batch)

    async def query(self, audit_filter: AuditFilter, db: AsyncSession) -> list[LocationAuditEntry]:
        """Audit entries matching the filter, newest first."""
        stmt = select(LocationAuditEntry)
        if audit_filter.operator_id is not None:
            stmt = stmt.where(LocationAuditEntry.operator_id == audit_filter.operator_id)
        if audit_filter.subject_id is not None:
            stmt = stmt.where(LocationAuditEntry.subject_id == audit_filter.subject_id)
        if audit_filter.action is not None:
            stmt = stmt.where(LocationAuditEntry.action == audit_filter.action)
        if audit_filter.since is not None:
            stmt = stmt.where(LocationAuditEntry.timestamp >= audit_filter.since)
        if audit_filter.until is not None:
            stmt = stmt.where(LocationAuditEntry.timestamp <= audit_filter.until)

        stmt = (
            stmt.order_by(LocationAuditEntry.timestamp.desc(), LocationAuditEntry.id.desc())
            .offset(audit_filter.offset)
            .limit(audit_filter.limit)
        )
        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as exc:
            raise TransientStorageError(operation="query_audit") from exc
        return list(result.scalars().all())

    async def prune(self, retention_days: int | None = None) -> int:
        """Delete audit entries older than the audit retention window."""
        retention_days = retention_days or settings.audit_retention_days
        cutoff = utc_now() - timedelta(days=retention_days)
        async with self._sessions()() as session:
            result = await session.execute(delete(LocationAuditEntry).where(LocationAuditEntry.timestamp < cutoff))
            await session.commit()
        deleted = result.rowcount or 0
        RETENTION_AUDIT_DELETED_TOTAL.inc(deleted)
        logger.info(
            "audit_retention: deleted %d audit entries older than %s (%d days)",
            deleted,
            cutoff.isoformat(),
            retention_days,
        )
        return deleted

    # ============== Private Methods ==============

    def _sessions(self):
        # Resolved lazily so a replaced database.AsyncSessionLocal is honoured
        return self._session_factory or database.AsyncSessionLocal

    async def _write(self, entries: list[AuditRecord]) -> None:
        async with self._sessions()() as session:
            session.add_all([entry.to_model() for entry in entries])
            await session.commit()
        for entry in entries:
            AUDIT_ENTRIES_WRITTEN_TOTAL.labels(action=entry.action.value).inc()

    def _enqueue(self, entries: list[AuditRecord]) -> None:
        for entry in entries:
            if len(self._pending) >= self._max_pending:
                lost = self._pending.popleft()
                self.dropped += 1
                AUDIT_ENTRIES_DROPPED_TOTAL.inc()
                logger.critical(
                    "audit: pending queue full, dropped entry operator=%s subject=%s action=%s at %s",
                    lost.operator_id,
                    lost.subject_id,
                    lost.action.value,
                    lost.timestamp.isoformat(),
                )
            self._pending.append(entry)
        AUDIT_PENDING_ENTRIES.set(len(self._pending))


# ============== Global Instance ==============

audit_logger = AuditLogger()


def get_audit_logger() -> AuditLogger:
    """Get the AuditLogger singleton."""
    return audit_logger

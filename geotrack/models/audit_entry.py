import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Index, Integer, String, Text

from geotrack.database import Base


class AuditAction(str, enum.Enum):
    VIEW_CURRENT = "view_current"
    VIEW_TIMELINE = "view_timeline"
    EXPORT_TIMELINE = "export_timeline"
    VIEW_CONSENT_LIST = "view_consent_list"


class LocationAuditEntry(Base):
    """
    Compliance record of an operator reading another subject's location data.

    Operator and subject are referenced by id only (no foreign keys) so the
    entries survive changes to the user directory. subject_id is null only
    for the aggregate view_consent_list action.
    """

    __tablename__ = "location_audit_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    operator_id = Column(Integer, nullable=False)
    subject_id = Column(Integer, nullable=True)
    action = Column(
        Enum(AuditAction, values_callable=lambda e: [m.value for m in e], native_enum=False, length=30),
        nullable=False,
    )
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    # IPv6 addresses can be up to 39 chars; 45 allows for mapped IPv4 addresses
    ip_address = Column(String(45), nullable=True)
    details = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_audit_operator_timestamp", "operator_id", "timestamp"),
        Index("idx_audit_subject_timestamp", "subject_id", "timestamp"),
    )

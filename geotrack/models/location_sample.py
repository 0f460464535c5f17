import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Float, ForeignKey, Index, Integer, String, UniqueConstraint

from geotrack.database import Base


class AccuracyTier(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class LocationSource(str, enum.Enum):
    GPS = "GPS"
    WIFI = "Wi-Fi"
    IP = "IP"
    OTHER = "other"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class LocationSample(Base):
    """
    A single recorded position of a subject.

    Append-only: rows are never updated and are removed only by the
    retention sweeper once older than the retention window.
    """

    __tablename__ = "location_samples"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    subject_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    # Null when the source could not resolve a position
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    accuracy_meters = Column(Float, nullable=True)
    accuracy = Column(
        Enum(AccuracyTier, values_callable=_values, native_enum=False, length=10),
        nullable=False,
        default=AccuracyTier.LOW,
    )
    source = Column(
        Enum(LocationSource, values_callable=_values, native_enum=False, length=10),
        nullable=False,
        default=LocationSource.OTHER,
    )

    # Best-effort reverse-geocoded address
    city = Column(String(120), nullable=True)
    region = Column(String(120), nullable=True)
    country = Column(String(120), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("subject_id", "timestamp", name="uq_location_sample_subject_timestamp"),
        Index("idx_location_sample_timestamp", "timestamp"),
    )

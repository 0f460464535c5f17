"""
Location consent model.

One row per subject holding their current location-sharing decision. Rows
are created on the first decision and never deleted; revocation is a state
transition.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer

from geotrack.database import Base


class ConsentLevel(str, enum.Enum):
    NONE = "none"
    BASIC = "basic"
    DETAILED = "detailed"


class LocationConsent(Base):
    __tablename__ = "location_consents"

    id = Column(Integer, primary_key=True, index=True)
    subject_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    has_consent = Column(Boolean, nullable=False, default=False)
    consent_level = Column(
        Enum(ConsentLevel, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        nullable=False,
        default=ConsentLevel.NONE,
    )
    # Set only when has_consent goes from false to true
    consent_date = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

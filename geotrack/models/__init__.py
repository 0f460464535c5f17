from .audit_entry import AuditAction, LocationAuditEntry
from .consent import ConsentLevel, LocationConsent
from .location_sample import AccuracyTier, LocationSample, LocationSource
from .user import User

__all__ = [
    "AccuracyTier",
    "AuditAction",
    "ConsentLevel",
    "LocationAuditEntry",
    "LocationConsent",
    "LocationSample",
    "LocationSource",
    "User",
]

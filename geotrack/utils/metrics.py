"""
Prometheus Metrics Module

Location-tracking metrics exposed at /metrics for Prometheus scraping.
"""

from prometheus_client import Counter, Gauge, Info

APP_INFO = Info("geotrack_app", "GeoTrack application information")


def set_app_info(version: str, environment: str) -> None:
    """Set application info labels."""
    APP_INFO.info({"version": version, "environment": environment})


# =============================================================================
# Ingestion
# =============================================================================

LOCATION_SAMPLES_INGESTED_TOTAL = Counter(
    "geotrack_location_samples_ingested_total",
    "Location samples accepted and stored",
    ["accuracy"],
)

LOCATION_SAMPLES_REJECTED_TOTAL = Counter(
    "geotrack_location_samples_rejected_total",
    "Location samples rejected before storage",
    ["reason"],  # consent, validation, storage
)

LOCATION_SAMPLES_DUPLICATE_TOTAL = Counter(
    "geotrack_location_samples_duplicate_total",
    "Replayed samples answered from storage (same subject and timestamp)",
)

GEOCODER_FAILURES_TOTAL = Counter(
    "geotrack_geocoder_failures_total",
    "Reverse-geocoding lookups that failed and degraded to a null address",
)

# =============================================================================
# Audit
# =============================================================================

AUDIT_ENTRIES_WRITTEN_TOTAL = Counter(
    "geotrack_audit_entries_written_total",
    "Audit entries persisted",
    ["action"],
)

AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "geotrack_audit_write_failures_total",
    "Audit entries that failed to persist on first attempt",
)

AUDIT_PENDING_ENTRIES = Gauge(
    "geotrack_audit_pending_entries",
    "Audit entries waiting in the retry queue",
)

AUDIT_ENTRIES_DROPPED_TOTAL = Counter(
    "geotrack_audit_entries_dropped_total",
    "Audit entries lost because the retry queue overflowed",
)

# =============================================================================
# Retention
# =============================================================================

RETENTION_SAMPLES_DELETED_TOTAL = Counter(
    "geotrack_retention_samples_deleted_total",
    "Location samples purged by the retention sweeper",
)

RETENTION_AUDIT_DELETED_TOTAL = Counter(
    "geotrack_retention_audit_entries_deleted_total",
    "Audit entries purged by the audit retention policy",
)

# =============================================================================
# Real-time
# =============================================================================

NOTIFIER_SUBSCRIBERS = Gauge(
    "geotrack_notifier_subscribers",
    "Active real-time location subscribers",
)

NOTIFIER_EVENTS_DROPPED_TOTAL = Counter(
    "geotrack_notifier_events_dropped_total",
    "Location events dropped for slow subscribers",
)

from dotenv import load_dotenv
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    app_name: str = "GeoTrack"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    log_json: bool = False

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./geotrack.db"

    # Security settings
    secret_key: str = "change-this-secret-key-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Retention
    location_retention_days: int = 90
    retention_sweep_interval_hours: int = 24
    retention_batch_size: int = 500
    audit_retention_days: int = 730
    audit_flush_interval_seconds: int = 60
    audit_pending_max: int = 10000

    # Liveness thresholds for the current-location view
    online_threshold_minutes: int = 10
    idle_threshold_minutes: int = 60

    # Accuracy tiers (raw horizontal accuracy in meters)
    high_accuracy_meters: float = 100.0
    medium_accuracy_meters: float = 500.0

    # Ingestion and queries
    max_clock_skew_seconds: int = 300
    timeline_max_days: int = 366
    timeline_batch_size: int = 500

    # Reverse geocoding (disabled when no URL is configured)
    geocoder_url: str | None = None
    geocoder_timeout_seconds: float = 3.0

    # Real-time
    notifier_queue_size: int = 100
    sse_keepalive_interval: int = 15

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def check_thresholds(self) -> "Settings":
        # Audit entries must outlive the location data they describe
        if self.audit_retention_days <= self.location_retention_days:
            raise ValueError("audit_retention_days must be greater than location_retention_days")
        if self.idle_threshold_minutes < self.online_threshold_minutes:
            raise ValueError("idle_threshold_minutes must not be lower than online_threshold_minutes")
        if self.medium_accuracy_meters < self.high_accuracy_meters:
            raise ValueError("medium_accuracy_meters must not be lower than high_accuracy_meters")
        return self


settings = Settings()

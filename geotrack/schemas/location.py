from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from geotrack.models.audit_entry import AuditAction
from geotrack.models.consent import ConsentLevel
from geotrack.models.location_sample import AccuracyTier, LocationSource
from geotrack.utils.time_utils import as_utc


class LivenessStatus(str, Enum):
    ONLINE = "online"
    IDLE = "idle"
    OFFLINE = "offline"


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class Address(BaseModel):
    city: str | None = Field(None, max_length=120)
    region: str | None = Field(None, max_length=120)
    country: str | None = Field(None, max_length=120)

    def is_empty(self) -> bool:
        return not (self.city or self.region or self.country)


class RawLocationSample(BaseModel):
    """A position reported by a subject's device.

    ``accuracy`` is the raw horizontal accuracy in meters as reported by the
    device; the accuracy tier is always derived server-side. Any other
    client-side fields (such as a precomputed tier or status) are ignored.
    """

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "latitude": 19.07,
                "longitude": 72.87,
                "accuracy": 35.0,
                "source": "GPS",
            }
        },
    )

    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    accuracy: float | None = Field(None, ge=0, description="Horizontal accuracy in meters")
    source: LocationSource = LocationSource.OTHER
    timestamp: datetime | None = None
    address: Address | None = Field(None, description="Address hint used when reverse geocoding yields nothing")

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def check_coordinates_pair(self) -> "RawLocationSample":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class LocationSampleOut(BaseModel):
    subject_id: int
    timestamp: datetime
    coordinates: Coordinates | None = None
    accuracy: AccuracyTier
    source: LocationSource
    address: Address | None = None


class SubjectSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    team: str | None = None
    role: str


class CurrentLocationEntry(BaseModel):
    subject: SubjectSummary
    location: LocationSampleOut
    status: LivenessStatus
    consent_level: ConsentLevel


class CurrentLocationFilter(BaseModel):
    team: str | None = None
    role: str | None = None
    accuracy: AccuracyTier | None = None
    status: LivenessStatus | None = None


# ============== Consent ==============


class ConsentUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_consent: bool = Field(..., validation_alias=AliasChoices("has_consent", "hasConsent"))
    consent_level: ConsentLevel = Field(
        ConsentLevel.NONE,
        validation_alias=AliasChoices("consent_level", "consentLevel"),
    )


class ConsentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject_id: int
    has_consent: bool
    consent_level: ConsentLevel
    consent_date: datetime | None = None
    updated_at: datetime | None = None


class ConsentFilter(BaseModel):
    has_consent: bool | None = None
    consent_level: ConsentLevel | None = None
    team: str | None = None


class ConsentListing(BaseModel):
    subject: SubjectSummary
    consent: ConsentOut


class ConsentListResponse(BaseModel):
    consents: list[ConsentListing]
    summary: dict[str, int]


# ============== Audit ==============


class AuditFilter(BaseModel):
    operator_id: int | None = None
    subject_id: int | None = None
    action: AuditAction | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    operator_id: int
    subject_id: int | None = None
    action: AuditAction
    timestamp: datetime
    ip_address: str | None = None
    details: str | None = None

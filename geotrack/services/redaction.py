"""
Precision redaction of location data, applied at read time only.

The subject's *current* consent decides what is disclosed, regardless of
the consent held when the sample was written:

- detailed: coordinates and full address
- basic:    no coordinates, city and region only
- none:     nothing (the record is omitted)
"""

from geotrack.models.consent import ConsentLevel
from geotrack.schemas.location import Address, Coordinates, LocationSampleOut
from geotrack.services.current_location_cache import SampleSnapshot


def redact_sample(sample: SampleSnapshot, level: ConsentLevel) -> LocationSampleOut | None:
    if level == ConsentLevel.DETAILED:
        coordinates = None
        if sample.latitude is not None and sample.longitude is not None:
            coordinates = Coordinates(latitude=sample.latitude, longitude=sample.longitude)
        address = Address(city=sample.city, region=sample.region, country=sample.country)
    elif level == ConsentLevel.BASIC:
        coordinates = None
        address = Address(city=sample.city, region=sample.region)
    else:
        return None

    return LocationSampleOut(
        subject_id=sample.subject_id,
        timestamp=sample.timestamp,
        coordinates=coordinates,
        accuracy=sample.accuracy,
        source=sample.source,
        address=None if address.is_empty() else address,
    )

"""
Tests for read-time redaction, CSV sanitizing and timestamp helpers.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from geotrack.models import AccuracyTier, ConsentLevel, LocationSource
from geotrack.schemas.location import LivenessStatus
from geotrack.services.current_location_cache import SampleSnapshot, liveness_for
from geotrack.services.redaction import redact_sample
from geotrack.utils.security import sanitize_csv_field
from geotrack.utils.time_utils import as_utc, day_bounds
from utils.mock_utils import FROZEN_NOW


@pytest.fixture
def sample() -> SampleSnapshot:
    return SampleSnapshot(
        subject_id=3,
        timestamp=FROZEN_NOW,
        latitude=-33.8688,
        longitude=151.2093,
        accuracy=AccuracyTier.HIGH,
        source=LocationSource.GPS,
        city="Sydney",
        region="New South Wales",
        country="Australia",
        accuracy_meters=12.0,
    )


class TestRedactSample:
    def test_detailed_discloses_everything(self, sample):
        out = redact_sample(sample, ConsentLevel.DETAILED)

        assert out.coordinates.latitude == -33.8688
        assert out.coordinates.longitude == 151.2093
        assert out.address.country == "Australia"
        assert out.accuracy == AccuracyTier.HIGH

    def test_basic_hides_coordinates_and_country(self, sample):
        out = redact_sample(sample, ConsentLevel.BASIC)

        assert out.coordinates is None
        assert out.address.city == "Sydney"
        assert out.address.region == "New South Wales"
        assert out.address.country is None
        assert out.timestamp == FROZEN_NOW

    def test_none_discloses_nothing(self, sample):
        assert redact_sample(sample, ConsentLevel.NONE) is None

    def test_basic_without_address_has_no_address(self, sample):
        bare = SampleSnapshot(
            subject_id=3,
            timestamp=FROZEN_NOW,
            latitude=1.0,
            longitude=2.0,
            accuracy=AccuracyTier.LOW,
            source=LocationSource.IP,
            country="Australia",
        )

        assert redact_sample(bare, ConsentLevel.BASIC).address is None

    def test_raw_accuracy_is_never_disclosed(self, sample):
        out = redact_sample(sample, ConsentLevel.DETAILED)
        assert "accuracy_meters" not in out.model_dump()


class TestSanitizeCsvField:
    @pytest.mark.parametrize("value", ["=SUM(A1)", "+1", "-cmd", "@import"])
    def test_formula_prefixes_are_neutralised(self, value):
        assert sanitize_csv_field(value) == "'" + value

    def test_plain_values_untouched(self):
        assert sanitize_csv_field("Pune") == "Pune"
        assert sanitize_csv_field(None) == ""


class TestTimeUtils:
    def test_as_utc_naive(self):
        assert as_utc(datetime(2026, 3, 2, 12, 0)) == FROZEN_NOW

    def test_as_utc_converts_offsets(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        assert as_utc(datetime(2026, 3, 2, 17, 30, tzinfo=ist)) == FROZEN_NOW

    def test_day_bounds_is_half_open(self):
        start, end = day_bounds(date(2026, 3, 1), date(2026, 3, 2))

        assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 3, tzinfo=timezone.utc)


class TestLiveness:
    @pytest.mark.parametrize(
        "age,expected",
        [
            (timedelta(minutes=0), LivenessStatus.ONLINE),
            (timedelta(minutes=10), LivenessStatus.ONLINE),
            (timedelta(minutes=11), LivenessStatus.IDLE),
            (timedelta(minutes=60), LivenessStatus.IDLE),
            (timedelta(minutes=61), LivenessStatus.OFFLINE),
        ],
    )
    def test_thresholds(self, age, expected):
        assert liveness_for(FROZEN_NOW - age, FROZEN_NOW) == expected

    def test_zero_thresholds_are_honoured(self):
        one_minute_ago = FROZEN_NOW - timedelta(minutes=1)
        assert liveness_for(one_minute_ago, FROZEN_NOW, online_after=timedelta(0)) == LivenessStatus.IDLE
        assert (
            liveness_for(one_minute_ago, FROZEN_NOW, online_after=timedelta(0), idle_after=timedelta(0))
            == LivenessStatus.OFFLINE
        )
        assert liveness_for(FROZEN_NOW, FROZEN_NOW, online_after=timedelta(0)) == LivenessStatus.ONLINE

"""
Reverse Geocoding

Pluggable capability that turns coordinates into a city/region/country.
Lookups are best-effort: implementations raise DependencyUnavailableError
when the provider cannot be reached and return None when it has no answer.
"""

import logging

import httpx

from geotrack.config import settings
from geotrack.exceptions import DependencyUnavailableError
from geotrack.schemas.location import Address

logger = logging.getLogger(__name__)


class ReverseGeocoder:
    name = "reverse-geocoder"

    async def resolve(self, latitude: float, longitude: float) -> Address | None:
        raise NotImplementedError


class NullReverseGeocoder(ReverseGeocoder):
    """Used when no provider is configured; never resolves anything."""

    name = "null-geocoder"

    async def resolve(self, latitude: float, longitude: float) -> Address | None:
        return None


class HttpReverseGeocoder(ReverseGeocoder):
    """
    Client for a Nominatim-compatible ``/reverse`` endpoint.

    Expects a JSON body with an ``address`` object holding ``city`` (or
    ``town`` / ``village``), ``state`` and ``country``.
    """

    name = "http-geocoder"

    def __init__(self, base_url: str, timeout: float = 3.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    async def resolve(self, latitude: float, longitude: float) -> Address | None:
        params = {"lat": latitude, "lon": longitude, "format": "jsonv2"}
        try:
            if self._client is not None:
                response = await self._client.get(self.base_url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise DependencyUnavailableError(self.name, "Reverse geocoding timed out") from exc
        except httpx.HTTPError as exc:
            raise DependencyUnavailableError(self.name, f"Reverse geocoding failed: {exc}") from exc
        except ValueError as exc:
            raise DependencyUnavailableError(self.name, "Reverse geocoder returned invalid JSON") from exc

        address = payload.get("address") if isinstance(payload, dict) else None
        if not address:
            return None

        resolved = Address(
            city=_clip(address.get("city") or address.get("town") or address.get("village")),
            region=_clip(address.get("state") or address.get("region")),
            country=_clip(address.get("country")),
        )
        return None if resolved.is_empty() else resolved


def _clip(value, limit: int = 120):
    return str(value)[:limit] if value else None


def build_geocoder() -> ReverseGeocoder:
    if settings.geocoder_url:
        logger.info("Reverse geocoding enabled: %s", settings.geocoder_url)
        return HttpReverseGeocoder(settings.geocoder_url, timeout=settings.geocoder_timeout_seconds)
    return NullReverseGeocoder()

"""Reverse geocoding collaborators for the location categorizer.

``ReverseGeocoder`` is the seam; ``NominatimGeocoder`` implements it against
an OpenStreetMap Nominatim ``/reverse`` endpoint.  Callers treat any
``GeocodingError`` as "no placemark" and fall back to behavioural inference.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.location.base import Placemark

logger = logging.getLogger("qolmonitor.location.geocoder")

NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"

# Nominatim address keys, most specific first.
_LOCALITY_KEYS = ("city", "town", "village", "hamlet", "municipality")
_SUB_LOCALITY_KEYS = ("suburb", "neighbourhood", "quarter", "city_district")
# Address keys whose values name the feature itself (e.g. "amenity": "St Mary's").
_FEATURE_KEYS = ("amenity", "shop", "leisure", "tourism", "building", "office", "healthcare")


class GeocodingError(Exception):
    """Reverse geocoding failed or returned nothing usable."""


class ReverseGeocoder(ABC):
    @abstractmethod
    async def reverse(self, latitude: float, longitude: float) -> Placemark:
        """Return the placemark at the coordinate.

        Raises:
            GeocodingError: On any failure.
        """

    async def aclose(self) -> None:
        return None


class NominatimGeocoder(ReverseGeocoder):
    """Reverse geocoder backed by Nominatim's JSON API."""

    def __init__(
        self,
        url: str = NOMINATIM_REVERSE_URL,
        user_agent: str = "qolmonitor-sync",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the geocoder.

        Args:
            url:         Reverse endpoint URL.
            user_agent:  Identifying User-Agent (required by Nominatim's usage policy).
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Request timeout for the internally created client.
        """
        self._url = url
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def reverse(self, latitude: float, longitude: float) -> Placemark:
        params = {
            "format": "jsonv2",
            "lat": f"{latitude:.6f}",
            "lon": f"{longitude:.6f}",
            "addressdetails": "1",
        }
        try:
            response = await self._http_client.get(self._url, params=params, headers=self._headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise GeocodingError(f"Reverse geocoding failed: {exc}") from exc

        if not isinstance(data, dict) or "error" in data:
            detail = data.get("error") if isinstance(data, dict) else data
            raise GeocodingError(f"Reverse geocoding returned no result: {detail}")
        return parse_nominatim(data)


def _first(mapping: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        if mapping.get(key):
            return str(mapping[key])
    return None


def parse_nominatim(data: dict[str, Any]) -> Placemark:
    """Map a Nominatim ``jsonv2`` reverse result onto a Placemark."""
    address = data.get("address") or {}
    areas = [str(address[k]) for k in _FEATURE_KEYS if address.get(k)]
    # "type" carries the feature class, e.g. "hospital", "supermarket", "park".
    for key in ("type", "category"):
        value = data.get(key)
        if value and value not in ("yes", "house", "building", "place"):
            areas.append(str(value).replace("_", " "))

    return Placemark(
        name=data.get("name") or None,
        thoroughfare=address.get("road"),
        sub_thoroughfare=address.get("house_number"),
        sub_locality=_first(address, _SUB_LOCALITY_KEYS),
        locality=_first(address, _LOCALITY_KEYS),
        administrative_area=address.get("state"),
        postal_code=address.get("postcode"),
        areas_of_interest=areas,
    )

"""Reverse geocoding against the Google Geocoding API."""

from __future__ import annotations

import logging
import os

import httpx

from fleetsync.core.config import GeocodingModel
from fleetsync.core.exceptions import GeocodingError

logger = logging.getLogger("fleetsync.geocoding")

_STATUS_MESSAGES = {
    "ZERO_RESULTS": "No results found for these coordinates",
    "REQUEST_DENIED": "Google Maps API request denied. Please check your API key.",
    "OVER_QUERY_LIMIT": "Google Maps API quota exceeded. Please try again later.",
}


class GoogleGeocoder:
    """``AddressLookup`` implementation.

    Without an API key no request is made and a coordinate label is returned
    instead of an address.
    """

    def __init__(self, config: GeocodingModel | None = None, api_key: str | None = None) -> None:
        self._config = config or GeocodingModel()
        self._api_key = api_key if api_key is not None else os.getenv("GOOGLE_MAPS_API_KEY", "")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        if not self.enabled:
            return f"Location at {latitude:.6f}, {longitude:.6f}"

        params = {"latlng": f"{latitude},{longitude}", "key": self._api_key}
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout) as client:
                response = await client.get(self._config.base_url, params=params)
        except httpx.HTTPError as exc:
            raise GeocodingError(f"Failed to reverse geocode coordinates: {exc}") from exc

        if response.is_error:
            raise GeocodingError(f"Google Maps API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise GeocodingError("Google Maps API returned a non-JSON body") from exc

        status = data.get("status")
        results = data.get("results") or []
        if status == "OK" and results:
            return results[0].get("formatted_address") or ""
        raise GeocodingError(_STATUS_MESSAGES.get(status, f"Reverse geocoding failed: {status}"))


__all__ = ["GoogleGeocoder"]

import logging
from typing import Dict, Any, List, Optional

import requests

from .base import GeocodingProvider, empty_result

logger = logging.getLogger(__name__)


def _component(components: List[Dict[str, Any]], types: List[str]) -> Optional[str]:
    for component in components:
        if any(t in component.get("types", []) for t in types):
            return component.get("long_name")
    return None


class GoogleMapsProvider(GeocodingProvider):
    """
    Google Maps reverse-geocoding provider.

    Used only when GEOCODING_PROVIDER=google and GOOGLE_MAPS_API_KEY is set.
    Same output schema as the other providers, never raises upstream.
    """

    BASE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
    name = "google"

    def __init__(self, api_key: Optional[str], timeout: float = 3.0):
        self.api_key = api_key
        self.timeout = timeout

    def reverse_geocode(self, longitude: float, latitude: float) -> Dict[str, Optional[str]]:
        if not self.api_key:
            logger.info("GoogleMapsProvider called without API key; returning empty result.")
            return empty_result(self.name)

        try:
            resp = requests.get(
                self.BASE_URL,
                params={"latlng": f"{latitude},{longitude}", "key": self.api_key},
                timeout=self.timeout,
            )
            if resp.status_code != 200:
                logger.warning(f"Google Maps reverse-geocode failed with status {resp.status_code}")
                return empty_result(self.name)

            results = (resp.json() or {}).get("results") or []
            if not results:
                return empty_result(self.name)

            first = results[0]
            components = first.get("address_components") or []
            number = _component(components, ["street_number"])
            route = _component(components, ["route"])

            return {
                "formatted": first.get("formatted_address"),
                "street": " ".join(part for part in (number, route) if part) or None,
                "city": _component(components, ["locality", "postal_town"]),
                "state": _component(components, ["administrative_area_level_1"]),
                "zip_code": _component(components, ["postal_code"]),
                "country": _component(components, ["country"]),
                "provider": self.name,
            }
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Google Maps reverse-geocode error: {e}")
            return empty_result(self.name)

import logging
from typing import Dict, Any, Optional

import requests

from .base import GeocodingProvider, empty_result

logger = logging.getLogger(__name__)


class NominatimProvider(GeocodingProvider):
    """
    OpenStreetMap Nominatim reverse-geocoding provider.

    - No API key required; sends the User-Agent Nominatim's usage policy asks for.
    - Timeout <= 3 seconds, never raises upstream.
    """

    BASE_URL = "https://nominatim.openstreetmap.org/reverse"
    name = "nominatim"

    def __init__(self, user_agent: str = "civic-pulse/1.0", timeout: float = 3.0):
        self.user_agent = user_agent
        self.timeout = timeout

    def reverse_geocode(self, longitude: float, latitude: float) -> Dict[str, Optional[str]]:
        try:
            resp = requests.get(
                self.BASE_URL,
                params={"lat": latitude, "lon": longitude, "format": "json", "addressdetails": 1},
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            if resp.status_code != 200:
                logger.warning(f"Nominatim reverse-geocode failed with status {resp.status_code}")
                return empty_result(self.name)

            data: Dict[str, Any] = resp.json()
            address = data.get("address") or {}

            street = address.get("road") or address.get("pedestrian") or address.get("footway")
            if street and address.get("house_number"):
                street = f"{address['house_number']} {street}"

            return {
                "formatted": data.get("display_name"),
                "street": street,
                "city": address.get("city") or address.get("town") or address.get("village"),
                "state": address.get("state"),
                "zip_code": address.get("postcode"),
                "country": address.get("country"),
                "provider": self.name,
            }
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Nominatim reverse-geocode error: {e}")
            return empty_result(self.name)

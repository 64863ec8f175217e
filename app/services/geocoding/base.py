from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


class GeocodingProvider(ABC):
    """
    Abstract reverse-geocoding provider.

    Contract:
    - Input: longitude, latitude (floats, same order as GeoJSON coordinates)
    - Output: dict with well-known keys:
      {
        "formatted": str | None,
        "street": str | None,
        "city": str | None,
        "state": str | None,
        "zip_code": str | None,
        "country": str | None,
        "provider": str
      }
    - MUST NEVER raise upstream exceptions.
    - MUST return empty fields on failure.
    - Implementations should enforce a network timeout <= 3 seconds.
    """

    name: str = "abstract"

    @abstractmethod
    def reverse_geocode(self, longitude: float, latitude: float) -> Dict[str, Optional[str]]:
        raise NotImplementedError


class NoOpProvider(GeocodingProvider):
    """Used when GEOCODING_PROVIDER=none; never calls out."""

    name = "none"

    def reverse_geocode(self, longitude: float, latitude: float) -> Dict[str, Optional[str]]:
        return empty_result(self.name)


def empty_result(provider: str) -> Dict[str, Optional[str]]:
    return {
        "formatted": None,
        "street": None,
        "city": None,
        "state": None,
        "zip_code": None,
        "country": None,
        "provider": provider,
    }

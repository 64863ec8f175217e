import logging
from typing import Optional

from app.core.settings import settings
from .base import GeocodingProvider, NoOpProvider
from .nominatim_provider import NominatimProvider
from .google_provider import GoogleMapsProvider

logger = logging.getLogger(__name__)

_provider_instance: Optional[GeocodingProvider] = None


def get_geocoding_provider() -> GeocodingProvider:
    """
    Resolve the active geocoding provider from settings.

    Rules:
    - "none" disables geocoding.
    - "google" with GOOGLE_MAPS_API_KEY set uses Google.
    - Anything else (or google without a key) uses Nominatim.
    """
    global _provider_instance
    if _provider_instance is not None:
        return _provider_instance

    provider_name = (settings.GEOCODING_PROVIDER or "nominatim").strip().lower()

    if provider_name == "none":
        _provider_instance = NoOpProvider()
    elif provider_name == "google" and settings.GOOGLE_MAPS_API_KEY:
        _provider_instance = GoogleMapsProvider(api_key=settings.GOOGLE_MAPS_API_KEY)
    else:
        if provider_name == "google":
            logger.warning("GEOCODING_PROVIDER=google but GOOGLE_MAPS_API_KEY is not set; using Nominatim")
        _provider_instance = NominatimProvider()

    logger.info(f"Geocoding provider initialized: {_provider_instance.name}")
    return _provider_instance


def set_geocoding_provider(provider: Optional[GeocodingProvider]) -> None:
    """Replace the active provider (tests)."""
    global _provider_instance
    _provider_instance = provider

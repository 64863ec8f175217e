"""
Geospatial utilities: great-circle distance and coordinate sanity checks.

Coordinates are always handled as (longitude, latitude) pairs, the GeoJSON
order the reports are stored in.
"""

import math
import logging
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000


def haversine_meters(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Calculate distance between two points using Haversine formula."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def latitude_band(latitude: float, radius_meters: float) -> Tuple[float, float]:
    """
    Latitude range that contains every point within radius_meters.

    Used as a cheap pre-filter before the exact haversine check; it is a
    single-field range so Firestore can serve it from one index.
    """
    delta = math.degrees(radius_meters / EARTH_RADIUS_METERS)
    return max(-90.0, latitude - delta), min(90.0, latitude + delta)


def parse_coordinates(value: Any) -> Optional[Tuple[float, float]]:
    """
    Parse a [longitude, latitude] pair.

    Returns None when the value is not a two-element numeric sequence inside
    the valid ranges.
    """
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    try:
        longitude, latitude = float(value[0]), float(value[1])
    except (TypeError, ValueError):
        return None
    if math.isnan(longitude) or math.isnan(latitude):
        return None
    if not -180 <= longitude <= 180 or not -90 <= latitude <= 90:
        return None
    return longitude, latitude

"""GPS distance and polling station location verification."""

import math
from typing import Any

from app.core.config import TallyConfig

EARTH_RADIUS_M = 6_371_000


def validate_coordinates(lat: float, lng: float) -> None:
    """Raise ValueError for coordinates outside the valid ranges."""
    if not -90 <= lat <= 90:
        raise ValueError(f"Latitude {lat} out of range [-90, 90]")
    if not -180 <= lng <= 180:
        raise ValueError(f"Longitude {lng} out of range [-180, 180]")


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points using the haversine formula."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def verify_location(
    submitted_lat: float | None,
    submitted_lng: float | None,
    station_lat: float | None,
    station_lng: float | None,
    max_radius: float | None = None,
    *,
    config: TallyConfig,
) -> dict[str, Any]:
    """
    Check a submitted GPS fix against the station's registered location.

    Missing coordinates on either side skip the check and the submission
    goes through unverified.

    Returns:
        {"verified": bool, "distance": int | None, "skipped": bool}
    """
    if None in (submitted_lat, submitted_lng, station_lat, station_lng):
        return {"verified": False, "distance": None, "skipped": True}

    radius = max_radius if max_radius else config.default_location_radius
    distance = distance_meters(submitted_lat, submitted_lng, station_lat, station_lng)

    return {
        "verified": distance <= radius,
        "distance": round(distance),
        "skipped": False,
    }

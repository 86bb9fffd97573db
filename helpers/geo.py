"""
Geolocation helpers: great-circle distance and stored geopoints.

Geopoints are stored as GeoJSON points, ``{"type": "Point",
"coordinates": [longitude, latitude]}``, under ``location.geopoint``.
"""

import math
from typing import Any, Dict, Optional, Tuple

EARTH_RADIUS_KM = 6371


def deg2rad(deg: float) -> float:
    return deg * (math.pi / 180)


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two lat/lng pairs, in kilometres."""
    d_lat = deg2rad(lat2 - lat1)
    d_lon = deg2rad(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) * math.sin(d_lat / 2)
        + math.cos(deg2rad(lat1)) * math.cos(deg2rad(lat2))
        * math.sin(d_lon / 2) * math.sin(d_lon / 2)
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def _coerce_coordinate(value: Any, name: str, bound: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}")
    if not -bound <= number <= bound:
        raise ValueError(f"{name.capitalize()} must be between -{bound:g} and {bound:g}")
    return number


def to_geopoint(latitude: Any, longitude: Any) -> Dict[str, Any]:
    """Build a GeoJSON point. Numeric strings are accepted (form input)."""
    lat = _coerce_coordinate(latitude, "latitude", 90)
    lng = _coerce_coordinate(longitude, "longitude", 180)
    return {"type": "Point", "coordinates": [lng, lat]}


def from_geopoint(geopoint: Optional[Dict[str, Any]]) -> Optional[Tuple[float, float]]:
    """Return (latitude, longitude) for a stored geopoint, or None when unusable."""
    if not geopoint or geopoint.get("type") != "Point":
        return None
    coords = geopoint.get("coordinates") or []
    if len(coords) != 2 or any(c is None for c in coords):
        return None
    lng, lat = coords
    return float(lat), float(lng)


def document_coordinates(doc: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """Coordinates of an event/venue document, or None when it has no geopoint."""
    location = doc.get("location") or {}
    return from_geopoint(location.get("geopoint"))


def with_geopoint(location: Optional[Dict[str, Any]],
                  previous: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Attach a geopoint to a location payload carrying latitude/longitude.

    When the payload has no coordinates, the geopoint of ``previous`` (the
    stored location) is preserved.
    """
    location = dict(location or {})
    if location.get("latitude") is not None and location.get("longitude") is not None:
        location["geopoint"] = to_geopoint(location["latitude"], location["longitude"])
    elif previous and previous.get("geopoint"):
        location["geopoint"] = previous["geopoint"]
    return location

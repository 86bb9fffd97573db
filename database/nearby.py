"""
Client-side "nearby" filtering.

Callers fetch a bounded batch of candidates (no geospatial index is used),
then this module annotates each with its distance from the centre, keeps
those within the radius and returns the nearest first. Qualifying entities
outside the fetched batch are never seen.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from helpers.geo import calculate_distance, document_coordinates

from .errors import ValidationError


def parse_center(location: Optional[Dict[str, Any]]) -> Tuple[float, float]:
    """Validate a ``{"latitude": .., "longitude": ..}`` centre."""
    if not location or location.get("latitude") is None or location.get("longitude") is None:
        raise ValidationError("Invalid location")
    try:
        lat, lng = float(location["latitude"]), float(location["longitude"])
    except (TypeError, ValueError):
        raise ValidationError("Invalid location")
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ValidationError("Invalid location")
    return lat, lng


def filter_nearby(candidates: Iterable[Dict[str, Any]], center: Tuple[float, float],
                  radius_km: float, limit: int,
                  categories: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
    """
    Entities within ``radius_km`` of ``center``, nearest first, at most ``limit``.

    Each returned document gets a ``distance`` key (km). Candidates without a
    geopoint are skipped. When ``categories`` is given, an entity must carry
    at least one of them.
    """
    lat, lng = center
    within = []
    for doc in candidates:
        coords = document_coordinates(doc)
        if coords is None:
            continue
        distance = calculate_distance(lat, lng, coords[0], coords[1])
        if distance > radius_km:
            continue
        if categories and not set(categories) & set(doc.get("categories") or []):
            continue
        within.append({**doc, "distance": distance})
    within.sort(key=lambda d: d["distance"])
    return within[:limit]

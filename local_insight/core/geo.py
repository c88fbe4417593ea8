import math
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from local_insight.core.schemas import Coordinates

T = TypeVar("T")

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km between two WGS84 points."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlng / 2) ** 2
    )
    # Float rounding can push a just outside [0, 1]
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def sort_by_distance(
    items: Iterable[T],
    origin: Coordinates,
    coordinates_of: Callable[[T], Optional[Coordinates]],
) -> List[Tuple[Optional[float], T]]:
    """
    Pair each item with its distance from ``origin`` and order nearest first.

    Items without coordinates get None and go to the end, keeping their
    original order.
    """
    annotated = []
    for item in items:
        point = coordinates_of(item)
        km = haversine_km(origin.lat, origin.lng, point.lat, point.lng) if point else None
        annotated.append((km, item))

    return sorted(annotated, key=lambda pair: (pair[0] is None, pair[0] or 0.0))

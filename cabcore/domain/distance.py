"""
Geometric distance estimate using the Haversine formula.

Assumption
----------
Great-circle distance underestimates real road distance, so the estimate is
scaled by a fixed road-circuity multiplier.  This is only the last resort of
the distance pipeline, used when the routing provider cannot answer.

Complexity: O(1) per call.
"""

import math

from .entities import Coordinates

EARTH_RADIUS_KM = 6_371.0
DEFAULT_CIRCUITY_MULTIPLIER = 1.4


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def estimate_road_km(
    origin: Coordinates,
    destination: Coordinates,
    circuity_multiplier: float = DEFAULT_CIRCUITY_MULTIPLIER,
) -> float:
    """Great-circle distance scaled to approximate driving distance, 1 decimal."""
    straight = haversine_km(
        origin.latitude, origin.longitude,
        destination.latitude, destination.longitude,
    )
    return round(straight * circuity_multiplier, 1)

from __future__ import annotations

import math

from geo.coords import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """
    Great-circle distance between two coordinates in kilometers (haversine).

    Inputs are not validated. The haversine term is clamped to [0, 1] so rounding
    noise near antipodal points cannot push `sqrt(1 - h)` into a domain error.
    """
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2.0) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2.0) ** 2
    h = min(1.0, max(0.0, h))
    c = 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))
    return EARTH_RADIUS_KM * c

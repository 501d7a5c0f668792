from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Coordinate:
    """
    WGS84 point in degrees.

    Values are not validated on construction; callers that accept external input
    check `is_valid()` first.
    """

    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        lat = self.latitude
        lon = self.longitude
        if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
            return False
        if isinstance(lat, bool) or isinstance(lon, bool):
            return False
        if not (math.isfinite(lat) and math.isfinite(lon)):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0

    def as_dict(self) -> dict[str, float]:
        return {"lat": float(self.latitude), "lon": float(self.longitude)}

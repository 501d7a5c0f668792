from __future__ import annotations

from dataclasses import dataclass

from shapely.geometry import Point
from shapely.geometry import box as shapely_box

from geo.coords import Coordinate

KM_PER_DEGREE = 111.0


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - minLon, minLat, maxLon, maxLat
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def from_corners(cls, south_west: Coordinate, north_east: Coordinate) -> "BBox":
        return cls(
            min_lon=south_west.longitude,
            min_lat=south_west.latitude,
            max_lon=north_east.longitude,
            max_lat=north_east.latitude,
        ).normalized()

    def normalized(self) -> "BBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    @property
    def south_west(self) -> Coordinate:
        return Coordinate(latitude=self.min_lat, longitude=self.min_lon)

    @property
    def north_east(self) -> Coordinate:
        return Coordinate(latitude=self.max_lat, longitude=self.max_lon)

    @property
    def center(self) -> Coordinate:
        return Coordinate(
            latitude=(self.min_lat + self.max_lat) / 2.0,
            longitude=(self.min_lon + self.max_lon) / 2.0,
        )

    def span_degrees(self) -> tuple[float, float]:
        """(lat span, lon span), both non-negative."""
        return abs(self.max_lat - self.min_lat), abs(self.max_lon - self.min_lon)

    def approx_radius_km(self) -> float:
        # Rough flat-earth conversion; only used to pick a key precision.
        lat_span, lon_span = self.span_degrees()
        return max(lat_span, lon_span) * KM_PER_DEGREE

    def contains(self, coord: Coordinate) -> bool:
        """
        Strict-interior test: points on the edge are outside.
        """
        b = self.normalized()
        rect = shapely_box(b.min_lon, b.min_lat, b.max_lon, b.max_lat)
        return bool(rect.contains(Point(coord.longitude, coord.latitude)))

    def as_dict(self) -> dict[str, float]:
        b = self.normalized()
        return {
            "minLon": b.min_lon,
            "minLat": b.min_lat,
            "maxLon": b.max_lon,
            "maxLat": b.max_lat,
        }

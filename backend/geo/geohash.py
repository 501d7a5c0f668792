from __future__ import annotations

import math
from dataclasses import dataclass

from geo.aoi import BBox
from geo.coords import Coordinate

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
_BASE32_INDEX = {ch: i for i, ch in enumerate(BASE32)}

MAX_PRECISION = 12
# Precision used for the key persisted with every submission; must be at least
# the finest precision any range lookup asks for.
STORED_PRECISION = 9

# Private-use code point: sorts after every base32 character, so
# [prefix, prefix + sentinel] covers exactly the keys starting with `prefix`.
RANGE_SENTINEL = "\uf8ff"

# (max radius km, precision); first row that fits wins.
_RADIUS_PRECISION: tuple[tuple[float, int], ...] = (
    (0.02, 8),  # ~19m cells
    (0.15, 7),  # ~153m
    (1.2, 6),  # ~1.2km
    (5.0, 5),  # ~4.9km
)
_RADIUS_FALLBACK_PRECISION = 4  # ~39km

# Viewports are much larger than lookup radii, hence the coarser table.
_VIEWPORT_PRECISION: tuple[tuple[float, int], ...] = (
    (1.0, 6),
    (10.0, 5),
    (50.0, 4),
    (100.0, 3),
)
_VIEWPORT_FALLBACK_PRECISION = 2


@dataclass(frozen=True)
class SpatialKeyRange:
    """
    Inclusive `[min, max]` key range for an ordered range scan.
    """

    min: str
    max: str

    @classmethod
    def for_prefix(cls, prefix: str) -> "SpatialKeyRange":
        return cls(min=prefix, max=prefix + RANGE_SENTINEL)

    @property
    def prefix(self) -> str:
        return self.min

    def contains(self, key: str) -> bool:
        return self.min <= key <= self.max


def _check_precision(precision: int) -> int:
    p = int(precision)
    if p < 1 or p > MAX_PRECISION:
        raise ValueError(f"geohash precision must be between 1 and {MAX_PRECISION}, got {precision}")
    return p


def encode(coord: Coordinate, precision: int = STORED_PRECISION) -> str:
    """
    Interleaved-bit base32 geohash of `coord`, `precision` characters long.

    Bits alternate longitude/latitude starting with longitude; nearby points share
    long prefixes.
    """
    p = _check_precision(precision)
    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0

    out: list[str] = []
    even = True
    bit = 0
    ch = 0
    while len(out) < p:
        if even:
            mid = (lon_lo + lon_hi) / 2.0
            if coord.longitude > mid:
                ch |= 1 << (4 - bit)
                lon_lo = mid
            else:
                lon_hi = mid
        else:
            mid = (lat_lo + lat_hi) / 2.0
            if coord.latitude > mid:
                ch |= 1 << (4 - bit)
                lat_lo = mid
            else:
                lat_hi = mid
        even = not even
        if bit < 4:
            bit += 1
        else:
            out.append(BASE32[ch])
            bit = 0
            ch = 0
    return "".join(out)


def cell_bbox(key: str) -> BBox:
    """
    Bounds of the geohash cell named by `key`.
    """
    if not key:
        raise ValueError("geohash key must not be empty")
    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0
    even = True
    for ch in key.lower():
        value = _BASE32_INDEX.get(ch)
        if value is None:
            raise ValueError(f"invalid geohash character {ch!r} in {key!r}")
        for shift in range(4, -1, -1):
            on = (value >> shift) & 1
            if even:
                mid = (lon_lo + lon_hi) / 2.0
                if on:
                    lon_lo = mid
                else:
                    lon_hi = mid
            else:
                mid = (lat_lo + lat_hi) / 2.0
                if on:
                    lat_lo = mid
                else:
                    lat_hi = mid
            even = not even
    return BBox(min_lon=lon_lo, min_lat=lat_lo, max_lon=lon_hi, max_lat=lat_hi)


def decode(key: str) -> Coordinate:
    """
    Approximate inverse of `encode`: the centre of the key's cell.
    """
    return cell_bbox(key).center


def precision_for_radius(radius_km: float) -> int:
    r = float(radius_km)
    for max_km, precision in _RADIUS_PRECISION:
        if r <= max_km:
            return precision
    return _RADIUS_FALLBACK_PRECISION


def precision_for_viewport_radius(radius_km: float) -> int:
    r = float(radius_km)
    for max_km, precision in _VIEWPORT_PRECISION:
        if r <= max_km:
            return precision
    return _VIEWPORT_FALLBACK_PRECISION


def range_for_radius(center: Coordinate, radius_km: float) -> SpatialKeyRange:
    """
    Key range for "everything around `center`", coarser for larger radii.
    """
    return SpatialKeyRange.for_prefix(encode(center, precision_for_radius(radius_km)))


def ranges_for_viewport(south_west: Coordinate, north_east: Coordinate) -> list[SpatialKeyRange]:
    """
    Single key range covering the cell under the viewport centre.

    The cell may be smaller or larger than the viewport; callers re-filter the
    rows with the exact viewport rectangle.
    """
    viewport = BBox.from_corners(south_west, north_east)
    precision = precision_for_viewport_radius(viewport.approx_radius_km())
    return [SpatialKeyRange.for_prefix(encode(viewport.center, precision))]


def _cell_steps(precision: int) -> tuple[float, float]:
    bits = 5 * precision
    lat_bits = bits // 2
    lon_bits = bits - lat_bits
    return 180.0 / (2**lat_bits), 360.0 / (2**lon_bits)


def covering_ranges(bbox: BBox, precision: int, *, max_cells: int) -> list[SpatialKeyRange] | None:
    """
    All cells of `precision` intersecting `bbox`, as sorted prefix ranges.

    Returns None when more than `max_cells` cells would be needed.
    """
    p = _check_precision(precision)
    b = bbox.normalized()
    lat_step, lon_step = _cell_steps(p)
    n_rows = int(round(180.0 / lat_step))
    n_cols = int(round(360.0 / lon_step))

    def _index(value: float, origin: float, step: float, n: int) -> int:
        return max(0, min(n - 1, int(math.floor((value - origin) / step))))

    r0 = _index(b.min_lat, -90.0, lat_step, n_rows)
    r1 = _index(b.max_lat, -90.0, lat_step, n_rows)
    c0 = _index(b.min_lon, -180.0, lon_step, n_cols)
    c1 = _index(b.max_lon, -180.0, lon_step, n_cols)

    if (r1 - r0 + 1) * (c1 - c0 + 1) > max_cells:
        return None

    keys: set[str] = set()
    for r in range(r0, r1 + 1):
        lat = -90.0 + (r + 0.5) * lat_step
        for c in range(c0, c1 + 1):
            lon = -180.0 + (c + 0.5) * lon_step
            keys.add(encode(Coordinate(latitude=lat, longitude=lon), p))
    return [SpatialKeyRange.for_prefix(k) for k in sorted(keys)]

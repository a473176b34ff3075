from __future__ import annotations

from typing import Tuple
import math

from common.errors import InvalidCoordinate
from common.types import TileCoordinate, validate_point


# --- Web Mercator constants ---
TILE_SIZE = 256
MAX_MERCATOR_LAT = 85.05112877980659  # atan(sinh(pi)); square-world limit of EPSG:3857

BBox = Tuple[float, float, float, float]  # lon_min, lat_min, lon_max, lat_max


# -------------------------
# Point -> tile
# -------------------------
def point_to_tile(lat: float, lon: float, zoom: int) -> TileCoordinate:
    """
    Standard slippy-map tile index containing (lat, lon) at `zoom`:

        n = 2^zoom
        x = floor((lon + 180) / 360 * n)
        y = floor((1 - ln(tan(φ) + 1/cos(φ)) / π) / 2 * n)

    Raises InvalidCoordinate outside ±90/±180 or where cos(φ) vanishes (poles).
    Latitudes beyond ±MAX_MERCATOR_LAT give rows off the grid; clamp first
    with clamp_mercator_lat() when that matters.
    """
    validate_point(lat, lon)
    if int(zoom) < 0:
        raise InvalidCoordinate(f"zoom must be >= 0, got {zoom}")
    phi = lat * math.pi / 180.0
    cos_phi = math.cos(phi)
    if abs(cos_phi) < 1e-12:
        raise InvalidCoordinate(f"latitude {lat} is a pole; clamp before tiling")
    n = 2 ** int(zoom)
    x = math.floor((lon + 180.0) / 360.0 * n)
    y = math.floor((1.0 - math.log(math.tan(phi) + 1.0 / cos_phi) / math.pi) / 2.0 * n)
    return TileCoordinate(zoom=int(zoom), x=int(x), y=int(y))


def clamp_mercator_lat(lat: float) -> float:
    return max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, float(lat)))


# -------------------------
# Tile -> lon/lat (inverse)
# -------------------------
def tile_x_to_lon(x: float, zoom: int) -> float:
    return x / float(2 ** zoom) * 360.0 - 180.0


def tile_y_to_lat(y: float, zoom: int) -> float:
    n = math.pi - 2.0 * math.pi * y / float(2 ** zoom)
    return math.degrees(math.atan(math.sinh(n)))


def tile_bounds(tile: TileCoordinate) -> BBox:
    """[lon_min, lat_min, lon_max, lat_max] covered by `tile` (north edge is row y)."""
    lon_min = tile_x_to_lon(tile.x, tile.zoom)
    lon_max = tile_x_to_lon(tile.x + 1, tile.zoom)
    lat_max = tile_y_to_lat(tile.y, tile.zoom)
    lat_min = tile_y_to_lat(tile.y + 1, tile.zoom)
    return (lon_min, lat_min, lon_max, lat_max)


def tile_contains(tile: TileCoordinate, lat: float, lon: float) -> bool:
    lon_min, lat_min, lon_max, lat_max = tile_bounds(tile)
    return (lon_min <= lon <= lon_max) and (lat_min <= lat <= lat_max)


# -------------------------
# Grids & boxes
# -------------------------
def tiles_per_side(resolution_px: int, tile_size: int = TILE_SIZE) -> int:
    """Tiles needed along one side to cover `resolution_px` (ceil division)."""
    if resolution_px <= 0:
        raise ValueError("resolution must be > 0")
    return -(-int(resolution_px) // int(tile_size))


def point_bbox(lat: float, lon: float, dim_deg: float) -> BBox:
    """Square box `dim_deg` wide centred on the point (degrees, not metres)."""
    half = dim_deg / 2.0
    return (lon - half, lat - half, lon + half, lat + half)

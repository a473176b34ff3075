"""
Unit tests for Web-Mercator tile geometry
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import InvalidCoordinate
from common.geo import (
    MAX_MERCATOR_LAT,
    clamp_mercator_lat,
    point_bbox,
    point_to_tile,
    tile_bounds,
    tile_contains,
    tiles_per_side,
)
from common.types import TileCoordinate, TileGrid


POINTS = [
    (40.7128, -74.0060),
    (38.8895, -77.0352),
    (-33.8688, 151.2093),
    (0.0, 0.0),
    (64.1466, -21.9426),
    (-54.8019, -68.3030),
]


class TestPointToTile:
    """Test cases for point_to_tile"""

    def test_known_tile(self):
        """New York at zoom 8 is tile (75, 96)"""
        assert point_to_tile(40.7128, -74.0060, 8) == TileCoordinate(zoom=8, x=75, y=96)

    def test_zoom_zero_is_single_tile(self):
        """Every point maps to (0, 0) at zoom 0"""
        for lat, lon in POINTS:
            assert point_to_tile(lat, lon, 0) == TileCoordinate(0, 0, 0)

    def test_deterministic(self):
        """Same input gives the same tile on every call"""
        for lat, lon in POINTS:
            for zoom in (3, 8, 9, 15):
                first = point_to_tile(lat, lon, zoom)
                assert all(point_to_tile(lat, lon, zoom) == first for _ in range(5))

    @pytest.mark.parametrize("zoom", [1, 5, 8, 9, 12, 18])
    def test_bounds_contain_point(self, zoom):
        """The tile's bounding box contains the original point"""
        for lat, lon in POINTS:
            tile = point_to_tile(lat, lon, zoom)
            lon_min, lat_min, lon_max, lat_max = tile_bounds(tile)
            assert lon_min <= lon <= lon_max
            assert lat_min <= lat <= lat_max
            assert tile_contains(tile, lat, lon)

    def test_neighbouring_tile_does_not_contain_point(self):
        """The tile to the right does not contain the point"""
        tile = point_to_tile(40.7128, -74.0060, 8)
        assert not tile_contains(tile.offset(1, 0), 40.7128, -74.0060)

    @pytest.mark.parametrize("lat,lon", [(90.5, 0.0), (-91.0, 0.0), (0.0, 180.5), (0.0, -181.0)])
    def test_out_of_range(self, lat, lon):
        """Coordinates outside ±90/±180 raise InvalidCoordinate"""
        with pytest.raises(InvalidCoordinate):
            point_to_tile(lat, lon, 8)

    @pytest.mark.parametrize("lat", [90.0, -90.0])
    def test_poles_rejected(self, lat):
        """cos(lat) vanishes at the poles"""
        with pytest.raises(InvalidCoordinate, match="pole"):
            point_to_tile(lat, 0.0, 8)

    def test_nan_rejected(self):
        """NaN is not a coordinate"""
        with pytest.raises(InvalidCoordinate):
            point_to_tile(float("nan"), 0.0, 8)

    def test_negative_zoom(self):
        """Zoom must be non-negative"""
        with pytest.raises(InvalidCoordinate, match="zoom"):
            point_to_tile(10.0, 10.0, -1)

    def test_invalid_coordinate_is_value_error(self):
        """Callers catching ValueError also catch InvalidCoordinate"""
        with pytest.raises(ValueError):
            point_to_tile(100.0, 0.0, 8)


class TestMercatorHelpers:
    """Test cases for clamping, boxes and grid sizing"""

    def test_clamp(self):
        """Latitudes beyond the square-world limit are clamped"""
        assert clamp_mercator_lat(89.9) == MAX_MERCATOR_LAT
        assert clamp_mercator_lat(-89.9) == -MAX_MERCATOR_LAT
        assert clamp_mercator_lat(45.0) == 45.0

    def test_clamped_pole_is_tileable(self):
        """A clamped pole maps to the top row"""
        tile = point_to_tile(clamp_mercator_lat(90.0), 0.0, 8)
        assert tile.y in (0, -1)

    def test_point_bbox(self):
        """Box is dim wide, centered on the point, lon first"""
        assert point_bbox(10.0, 20.0, 0.2) == pytest.approx((19.9, 9.9, 20.1, 10.1))

    @pytest.mark.parametrize(
        "resolution,expected", [(1, 1), (256, 1), (257, 2), (512, 2), (1000, 4), (1024, 4), (2048, 8)]
    )
    def test_tiles_per_side(self, resolution, expected):
        """ceil(resolution / 256)"""
        assert tiles_per_side(resolution) == expected

    def test_tiles_per_side_rejects_zero(self):
        """Resolution must be positive"""
        with pytest.raises(ValueError):
            tiles_per_side(0)


class TestTileGrid:
    """Test cases for TileGrid"""

    def test_odd_grid_is_symmetric(self):
        """3x3 grid spans one tile either side of the center"""
        grid = TileGrid.centered_on(TileCoordinate(8, 75, 96), 3)
        assert [t.x for t in grid.rows[0]] == [74, 75, 76]
        assert [row[0].y for row in grid.rows] == [95, 96, 97]

    def test_even_grid_extra_tile_on_positive_side(self):
        """4x4 grid starts two tiles up/left and ends one down/right"""
        center = TileCoordinate(8, 75, 96)
        grid = TileGrid.centered_on(center, 4)
        assert grid.rows[0][0] == TileCoordinate(8, 73, 94)
        assert grid.rows[-1][-1] == TileCoordinate(8, 76, 97)
        assert center in list(grid.cells())

    def test_row_major_order(self):
        """cells() walks each row left-to-right, rows top-to-bottom"""
        grid = TileGrid.centered_on(TileCoordinate(4, 5, 5), 2)
        assert [(t.x, t.y) for t in grid.cells()] == [(4, 4), (5, 4), (4, 5), (5, 5)]
        assert len(grid) == 4
        assert grid.tiles_per_side == 2

    def test_rejects_empty_grid(self):
        """tiles_per_side must be positive"""
        with pytest.raises(ValueError):
            TileGrid.centered_on(TileCoordinate(1, 0, 0), 0)

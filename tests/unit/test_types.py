"""
Unit tests for the request/result data model
"""

import os
import sys
from datetime import date, datetime, time, timezone

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import InvalidCoordinate
from common.types import (
    AvailabilityResult,
    CompositeImage,
    ImageRequest,
    ImageryResponse,
    Provider,
    ResponseStatus,
    Scene,
)


def _request(**kw):
    base = dict(latitude=40.7128, longitude=-74.0060, requested_date=date(2023, 1, 1), provider=Provider.GIBS)
    base.update(kw)
    return ImageRequest(**base)


class TestImageRequest:
    """Test cases for ImageRequest validation"""

    def test_defaults(self):
        """Defaults: 0.2° field of view, 1024 px"""
        req = _request()
        assert req.field_of_view_degrees == 0.2
        assert req.output_resolution_pixels == 1024
        assert req.requested_datetime == datetime(2023, 1, 1, tzinfo=timezone.utc)

    def test_provider_from_string(self):
        """Provider names are coerced to the enum"""
        assert _request(provider="copernicus").provider is Provider.COPERNICUS

    def test_unknown_provider(self):
        """Unknown provider names raise ValueError"""
        with pytest.raises(ValueError):
            _request(provider="landsat")

    @pytest.mark.parametrize("lat,lon", [(91.0, 0.0), (-90.1, 0.0), (0.0, 181.0), (0.0, -180.5)])
    def test_coordinates_validated(self, lat, lon):
        """Out-of-range coordinates raise InvalidCoordinate"""
        with pytest.raises(InvalidCoordinate):
            _request(latitude=lat, longitude=lon)

    def test_boundary_coordinates_allowed(self):
        """±90/±180 are inside the domain"""
        _request(latitude=90.0, longitude=-180.0)

    @pytest.mark.parametrize("resolution", [0, -256])
    def test_resolution_positive(self, resolution):
        """Resolution must be > 0"""
        with pytest.raises(ValueError, match="output_resolution_pixels"):
            _request(output_resolution_pixels=resolution)

    def test_cloud_cover_range(self):
        """Cloud cover threshold is a percentage"""
        with pytest.raises(ValueError, match="max_cloud_cover"):
            _request(max_cloud_cover=120.0)

    @pytest.mark.parametrize("field", ["field_of_view_degrees", "max_cloud_cover"])
    def test_nan_rejected(self, field):
        """NaN never reaches an upstream bbox or filter"""
        with pytest.raises(ValueError, match=field):
            _request(**{field: float("nan")})

    def test_requested_time(self):
        """requested_datetime combines date and time in UTC"""
        req = _request(requested_time=time(10, 15))
        assert req.requested_datetime == datetime(2023, 1, 1, 10, 15, tzinfo=timezone.utc)
        assert req.to_dict()["time"] == "10:15:00"


class TestAvailabilityResult:
    """Test cases for AvailabilityResult invariants"""

    def test_available_resolves_to_requested(self):
        """available=True fills resolved_date with the requested date"""
        res = AvailabilityResult(available=True, requested_date=date(2024, 1, 8))
        assert res.resolved_date == date(2024, 1, 8)

    def test_available_with_other_date_rejected(self):
        """available=True with a different resolved date is invalid"""
        with pytest.raises(ValueError):
            AvailabilityResult(available=True, requested_date=date(2024, 1, 8), resolved_date=date(2024, 1, 9))

    def test_candidates_sorted_unique_and_closest(self):
        """Candidates are chronological and unique; closest is derived"""
        res = AvailabilityResult(
            available=False,
            requested_date=date(2024, 1, 8),
            candidate_dates=[date(2024, 1, 20), date(2024, 1, 1), date(2024, 1, 10), date(2024, 1, 1)],
        )
        assert res.candidate_dates == [date(2024, 1, 1), date(2024, 1, 10), date(2024, 1, 20)]
        assert res.closest_date == date(2024, 1, 10)

    def test_neighbors(self):
        """Previous/next around the closest candidate"""
        res = AvailabilityResult(
            available=False,
            requested_date=date(2024, 1, 8),
            candidate_dates=[date(2024, 1, 1), date(2024, 1, 10), date(2024, 1, 20)],
        )
        assert res.neighbors() == (date(2024, 1, 1), date(2024, 1, 20))
        d = res.to_dict()
        assert d["previous_date"] == "2024-01-01"
        assert d["next_date"] == "2024-01-20"
        assert "scenes" not in d

    def test_neighbors_at_edges(self):
        """No previous for the first candidate, nothing at all when empty"""
        res = AvailabilityResult(
            available=False, requested_date=date(2024, 1, 1), candidate_dates=[date(2024, 1, 1), date(2024, 1, 3)]
        )
        assert res.neighbors() == (None, date(2024, 1, 3))
        assert AvailabilityResult(available=False, requested_date=date(2024, 1, 1)).neighbors() == (None, None)


class TestScene:
    """Test cases for Scene"""

    def test_identity_by_id(self):
        """Scenes with the same id are equal regardless of metadata"""
        t = datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc)
        a = Scene(id="S2A_1", acquired_at=t, cloud_cover=10.0)
        b = Scene(id="S2A_1", acquired_at=t, cloud_cover=55.0)
        assert a == b
        assert len({a, b}) == 1

    def test_unknown_cloud_cover_counts_as_full(self):
        """Missing cloud cover is treated as 100%"""
        scene = Scene(id="x", acquired_at=datetime(2024, 1, 8, tzinfo=timezone.utc))
        assert scene.effective_cloud_cover == 100.0
        assert scene.acquisition_date == date(2024, 1, 8)

    def test_to_dict(self):
        """Serialised with an ISO 'Z' timestamp"""
        scene = Scene(id="x", acquired_at=datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc), cloud_cover=3.5)
        assert scene.to_dict()["datetime"] == "2024-01-08T10:00:00.000Z"


class TestImageryResponse:
    """Test cases for ImageryResponse"""

    def test_meta_omits_bytes(self):
        """to_meta() describes the image without carrying it"""
        img = CompositeImage(data=b"\xff" * 10, width=256, height=256)
        resp = ImageryResponse(
            status=ResponseStatus.SUCCESS, request=_request(), image=img, resolved_date=date(2022, 12, 30)
        )
        meta = resp.to_meta()
        assert resp.ok
        assert meta["image"]["bytes"] == 10
        assert meta["resolved_date"] == "2022-12-30"
        assert meta["provider"] == "gibs"

    def test_unavailable_is_not_ok(self):
        """Only success states are ok"""
        resp = ImageryResponse(status=ResponseStatus.UNAVAILABLE, request=_request())
        assert not resp.ok

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from common.errors import InvalidCoordinate
from common.utils import at_time, select_closest, to_iso_z


# Reasons reported on an AvailabilityResult that is not `available`
REASON_DATE_UNAVAILABLE = "requested_date_unavailable"
REASON_NO_IMAGERY = "no_imagery_in_window"
REASON_NO_SCENES = "no_scenes_found"
REASON_CLOUD_FILTERED = "cloud_filter_excluded_all"
REASON_NO_DATES_PUBLISHED = "no_dates_published"


class Provider(str, Enum):
    """
    Imagery providers.

      NASA_EARTH  (A): per-day point assets, direct image fetch
      COPERNICUS  (B): Sentinel-2 scene catalog + process API
      GIBS        (C): WMTS tiles, capabilities Time dimension
    """
    NASA_EARTH = "nasa"
    COPERNICUS = "copernicus"
    GIBS = "gibs"


class ResponseStatus(str, Enum):
    SUCCESS = "success"
    SUCCESS_FALLBACK = "success_fallback"
    UNAVAILABLE = "unavailable"
    FAILURE = "failure"


def validate_point(lat: float, lon: float) -> None:
    if lat != lat or lon != lon:  # NaN
        raise InvalidCoordinate("lat/lon must be numbers")
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise InvalidCoordinate(f"lat/lon out of range: ({lat}, {lon})")


@dataclass(slots=True)
class ImageRequest:
    """
    One caller request for an image of a point on a date.

    Attributes:
        latitude, longitude: WGS84 degrees.
        requested_date: acquisition date asked for.
        provider: which provider answers.
        requested_time: optional time of day (UTC if naive); used by scene selection.
        field_of_view_degrees: side of the square bbox around the point (providers A/B).
        output_resolution_pixels: side of the square output image.
        max_cloud_cover: scene filter threshold in percent (provider B); None uses config.
        layer: GIBS layer identifier (provider C); None uses config.
    """
    latitude: float
    longitude: float
    requested_date: date
    provider: Provider
    requested_time: Optional[time] = None
    field_of_view_degrees: float = 0.2
    output_resolution_pixels: int = 1024
    max_cloud_cover: Optional[float] = None
    layer: Optional[str] = None

    def __post_init__(self) -> None:
        self.latitude = float(self.latitude)
        self.longitude = float(self.longitude)
        validate_point(self.latitude, self.longitude)
        self.provider = Provider(self.provider)
        if int(self.output_resolution_pixels) <= 0:
            raise ValueError("output_resolution_pixels must be > 0")
        self.output_resolution_pixels = int(self.output_resolution_pixels)
        self.field_of_view_degrees = float(self.field_of_view_degrees)
        fov = self.field_of_view_degrees
        if fov != fov or fov <= 0:  # NaN
            raise ValueError("field_of_view_degrees must be > 0")
        if self.max_cloud_cover is not None:
            self.max_cloud_cover = float(self.max_cloud_cover)
            cc = self.max_cloud_cover
            if cc != cc or not (0.0 <= cc <= 100.0):  # NaN
                raise ValueError("max_cloud_cover must be within [0, 100]")

    @property
    def requested_datetime(self) -> datetime:
        return at_time(self.requested_date, self.requested_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.latitude,
            "lon": self.longitude,
            "date": self.requested_date.isoformat(),
            "time": self.requested_time.isoformat() if self.requested_time else None,
            "provider": self.provider.value,
            "dim": self.field_of_view_degrees,
            "resolution": self.output_resolution_pixels,
            "max_cloud_cover": self.max_cloud_cover,
            "layer": self.layer,
        }


@dataclass(frozen=True)
class Scene:
    """One catalog acquisition (provider B). Identity is `id`."""
    id: str
    acquired_at: datetime = field(compare=False)
    cloud_cover: Optional[float] = field(default=None, compare=False)
    platform: str = field(default="", compare=False)
    instruments: Tuple[str, ...] = field(default=(), compare=False)
    bbox: Optional[Tuple[float, ...]] = field(default=None, compare=False)

    @property
    def acquisition_date(self) -> date:
        return self.acquired_at.date()

    @property
    def effective_cloud_cover(self) -> float:
        # unknown cloud cover counts as fully cloudy
        return 100.0 if self.cloud_cover is None else float(self.cloud_cover)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "datetime": to_iso_z(self.acquired_at),
            "cloud_cover": self.cloud_cover,
            "platform": self.platform,
            "instruments": list(self.instruments),
            "bbox": list(self.bbox) if self.bbox else None,
        }


@dataclass(slots=True)
class AvailabilityResult:
    """
    Answer to "does imagery exist near this request?".

    Invariants:
      - available ⇒ resolved_date == requested_date
      - candidate_dates is sorted and unique
      - closest_date is filled from candidate_dates when the resolver did not set it
    """
    available: bool
    requested_date: date
    resolved_date: Optional[date] = None
    candidate_dates: List[date] = field(default_factory=list)
    closest_date: Optional[date] = None
    error_reason: Optional[str] = None
    scenes: List[Scene] = field(default_factory=list)
    filtered_scenes: List[Scene] = field(default_factory=list)
    selected_scene: Optional[Scene] = None

    def __post_init__(self) -> None:
        if self.available:
            if self.resolved_date is None:
                self.resolved_date = self.requested_date
            if self.resolved_date != self.requested_date:
                raise ValueError("an available result must resolve to the requested date")
        self.candidate_dates = sorted(set(self.candidate_dates))
        if self.closest_date is None and self.candidate_dates:
            self.closest_date = select_closest(self.candidate_dates, self.requested_date)

    def neighbors(self) -> Tuple[Optional[date], Optional[date]]:
        """(previous, next) candidate around closest_date, for date navigation."""
        if self.closest_date is None or self.closest_date not in self.candidate_dates:
            return None, None
        idx = self.candidate_dates.index(self.closest_date)
        prev_d = self.candidate_dates[idx - 1] if idx > 0 else None
        next_d = self.candidate_dates[idx + 1] if idx < len(self.candidate_dates) - 1 else None
        return prev_d, next_d

    def to_dict(self) -> Dict[str, Any]:
        prev_d, next_d = self.neighbors()
        out: Dict[str, Any] = {
            "available": self.available,
            "requested_date": self.requested_date.isoformat(),
            "resolved_date": self.resolved_date.isoformat() if self.resolved_date else None,
            "candidate_dates": [d.isoformat() for d in self.candidate_dates],
            "closest_date": self.closest_date.isoformat() if self.closest_date else None,
            "previous_date": prev_d.isoformat() if prev_d else None,
            "next_date": next_d.isoformat() if next_d else None,
            "error_reason": self.error_reason,
        }
        if self.scenes:
            out["scenes"] = [s.to_dict() for s in self.scenes]
            out["filtered_scenes"] = [s.to_dict() for s in self.filtered_scenes]
            out["selected_scene"] = self.selected_scene.to_dict() if self.selected_scene else None
        return out


@dataclass(frozen=True)
class TileCoordinate:
    """Web-Mercator tile address."""
    zoom: int
    x: int
    y: int

    def offset(self, dx: int, dy: int) -> "TileCoordinate":
        return TileCoordinate(self.zoom, self.x + dx, self.y + dy)


@dataclass(frozen=True)
class TileGrid:
    """
    Row-major square block of tiles around a center tile.

    The block starts `tiles_per_side // 2` tiles up/left of the center, so an
    even-sized grid has its extra row/column on the positive (right/bottom) side.
    """
    center: TileCoordinate
    rows: Tuple[Tuple[TileCoordinate, ...], ...]

    @classmethod
    def centered_on(cls, center: TileCoordinate, tiles_per_side: int) -> "TileGrid":
        if tiles_per_side <= 0:
            raise ValueError("tiles_per_side must be > 0")
        half = tiles_per_side // 2
        rows = tuple(
            tuple(center.offset(dx - half, dy - half) for dx in range(tiles_per_side))
            for dy in range(tiles_per_side)
        )
        return cls(center=center, rows=rows)

    @property
    def tiles_per_side(self) -> int:
        return len(self.rows)

    def cells(self) -> Iterator[TileCoordinate]:
        for row in self.rows:
            yield from row

    def __len__(self) -> int:
        return self.tiles_per_side ** 2


@dataclass(frozen=True)
class CompositeImage:
    """Encoded image bytes produced for one request."""
    data: bytes = field(repr=False)
    width: int
    height: int
    media_type: str = "image/jpeg"
    tiles_total: int = 1
    tiles_failed: int = 0

    def to_meta(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "media_type": self.media_type,
            "bytes": len(self.data),
            "tiles_total": self.tiles_total,
            "tiles_failed": self.tiles_failed,
        }


@dataclass(slots=True)
class ImageryResponse:
    """
    Terminal outcome of one request.

    `image` is set for SUCCESS / SUCCESS_FALLBACK; `availability` carries the
    candidate dates for UNAVAILABLE; `retryable` tells a FAILURE caller whether
    trying again can help.
    """
    status: ResponseStatus
    request: ImageRequest
    image: Optional[CompositeImage] = None
    resolved_date: Optional[date] = None
    availability: Optional[AvailabilityResult] = None
    reason: Optional[str] = None
    retryable: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (ResponseStatus.SUCCESS, ResponseStatus.SUCCESS_FALLBACK)

    def to_meta(self) -> Dict[str, Any]:
        """Everything but the image bytes (safe to log / put in a header)."""
        return {
            "status": self.status.value,
            "provider": self.request.provider.value,
            "requested_date": self.request.requested_date.isoformat(),
            "resolved_date": self.resolved_date.isoformat() if self.resolved_date else None,
            "reason": self.reason,
            "retryable": self.retryable,
            "image": self.image.to_meta() if self.image else None,
            "availability": self.availability.to_dict() if self.availability else None,
            **self.metadata,
        }

from __future__ import annotations

"""
NASA GIBS WMTS adapter (provider C).

Endpoints (EPSG:3857 "best" imagery, GoogleMapsCompatible_Level9 matrix set):
    {base}/{layer}/default/GoogleMapsCompatible_Level9/1.0.0/WMTSCapabilities.xml
    {base}/{layer}/default/{YYYY-MM-DD}/GoogleMapsCompatible_Level9/{z}/{y}/{x}.jpg

Availability here is advisory. The capabilities Time dimension is searched for
the entry nearest the requested date and reported back, but tiles are always
addressed by the requested date: GIBS mosaics recent passes server-side, so a
tile exists for every date inside a layer's range.

Time dimension entries are either single dates or intervals
"start/end[/PnD]"; both WMTS encodings are read:
    <Dimension><ows:Identifier>Time</ows:Identifier><Value>...</Value>...</Dimension>
    <Dimension name="Time">2023-01-01,2023-01-02</Dimension>
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from common.config import GibsConfig
from common.errors import ParseError
from common.geo import clamp_mercator_lat, point_to_tile
from common.hooks import RequestHooks
from common.types import (
    REASON_DATE_UNAVAILABLE,
    REASON_NO_DATES_PUBLISHED,
    AvailabilityResult,
    CompositeImage,
    ImageRequest,
    Provider,
    TileCoordinate,
)
from common.utils import AVAILABILITY_WINDOW_DAYS, date_window, parse_date, select_closest
from imagery.base import ImageryProvider
from imagery.compositor import TileCompositor


log = logging.getLogger(__name__)

TILE_MATRIX_SET = "GoogleMapsCompatible_Level9"

_PERIOD_DAYS = re.compile(r"^P(\d+)D$", re.IGNORECASE)


# ----------------------------
# Layer catalog
# ----------------------------
@dataclass(frozen=True)
class GibsLayer:
    value: str
    label: str
    description: str
    start: date
    end: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "label": self.label,
            "description": self.description,
            "time_range": {"start": self.start.isoformat(), "end": self.end.isoformat() if self.end else None},
        }


GIBS_LAYERS: Tuple[GibsLayer, ...] = (
    GibsLayer(
        value="MODIS_Terra_CorrectedReflectance_TrueColor",
        label="MODIS Terra True Color",
        description="Daily true color imagery from MODIS Terra (250m, 2000-present)",
        start=date(2000, 2, 24),
    ),
    GibsLayer(
        value="MODIS_Aqua_CorrectedReflectance_TrueColor",
        label="MODIS Aqua True Color",
        description="Daily true color imagery from MODIS Aqua (250m, 2002-present)",
        start=date(2002, 7, 4),
    ),
    GibsLayer(
        value="VIIRS_SNPP_CorrectedReflectance_TrueColor",
        label="VIIRS SNPP True Color",
        description="Daily true color imagery from VIIRS Suomi NPP (375m, 2012-present)",
        start=date(2012, 1, 20),
    ),
)


def list_layers() -> List[GibsLayer]:
    return list(GIBS_LAYERS)


def layer_metadata(layer: str) -> GibsLayer:
    """Catalog entry for `layer`; KeyError when it is not listed."""
    for entry in GIBS_LAYERS:
        if entry.value == layer:
            return entry
    raise KeyError(layer)


# ----------------------------
# Capabilities parsing
# ----------------------------
def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(elem: ET.Element, name: str) -> Optional[str]:
    for child in elem:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return None


def parse_time_dimension(xml: Union[str, bytes], layer: str) -> List[str]:
    """
    Raw Time-dimension entries published for `layer`, in document order.
    Returns [] when the layer or its Time dimension is absent.
    """
    if isinstance(xml, str):
        # fromstring() refuses str input carrying an encoding declaration
        xml = xml.encode("utf-8")
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise ParseError(f"capabilities XML is malformed: {e}", provider=Provider.GIBS.value) from e

    for lyr in root.iter():
        if _local(lyr.tag) != "Layer" or _child_text(lyr, "Identifier") != layer:
            continue
        for dim in lyr:
            if _local(dim.tag) != "Dimension":
                continue
            ident = dim.attrib.get("name") or _child_text(dim, "Identifier") or ""
            if ident.lower() != "time":
                continue
            values = [(v.text or "").strip() for v in dim if _local(v.tag) == "Value"]
            raw = ",".join(values) if values else (dim.text or "")
            return [tok.strip() for tok in raw.split(",") if tok.strip()]
    return []


# (start, end, step_days); step_days is None for intervals without a day period
TimeEntry = Tuple[date, date, Optional[int]]


def parse_time_entry(entry: str) -> TimeEntry:
    parts = entry.split("/")
    if len(parts) == 1:
        d = parse_date(parts[0][:10])
        return d, d, None
    if len(parts) not in (2, 3):
        raise ValueError(f"bad time entry {entry!r}")
    start, end = parse_date(parts[0][:10]), parse_date(parts[1][:10])
    if end < start:
        raise ValueError(f"interval ends before it starts: {entry!r}")
    step = None
    if len(parts) == 3:
        m = _PERIOD_DAYS.match(parts[2].strip())
        step = int(m.group(1)) if m and int(m.group(1)) > 0 else None
    return start, end, step


def nearest_in_entry(entry: TimeEntry, target: date) -> date:
    """The request clamped into the entry's range, snapped back onto its day period."""
    start, end, step = entry
    if target <= start:
        return start
    if target >= end:
        return end
    if not step:
        return target
    offset = (target - start).days
    lower = start + timedelta(days=offset - offset % step)
    upper = lower + timedelta(days=step)
    if upper > end or (target - lower) <= (upper - target):
        return lower
    return upper


def dates_in_window(entry: TimeEntry, begin: date, end: date) -> List[date]:
    """Dates of `entry` inside [begin, end]; period-less intervals contribute their endpoints."""
    start, stop, step = entry
    if step is None:
        return [d for d in sorted({start, stop}) if begin <= d <= end]
    first = start
    if begin > start:
        k = -(-(begin - start).days // step)
        first = start + timedelta(days=k * step)
    out = []
    d = first
    while d <= min(stop, end):
        out.append(d)
        d += timedelta(days=step)
    return out


# ----------------------------
# Provider
# ----------------------------
class GibsProvider(ImageryProvider):
    provider = Provider.GIBS
    advisory_availability = True

    def __init__(
        self,
        config: Optional[GibsConfig] = None,
        *,
        window_days: int = AVAILABILITY_WINDOW_DAYS,
        session: Optional[requests.Session] = None,
        hooks: Optional[RequestHooks] = None,
        compositor: Optional[TileCompositor] = None,
    ):
        super().__init__(session=session, hooks=hooks)
        self.config = config or GibsConfig()
        self.window_days = int(window_days)
        self.compositor = compositor or TileCompositor(
            self.session,
            tile_size=self.config.tile_size,
            max_workers=self.config.max_workers,
            jpeg_quality=self.config.jpeg_quality,
            timeout_s=self.config.timeout_s,
            hooks=self.hooks,
            provider_name=self.name,
        )

    def layer_for(self, request: ImageRequest) -> str:
        return request.layer or self.config.default_layer

    def capabilities_url(self, layer: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{layer}/default/{TILE_MATRIX_SET}/1.0.0/WMTSCapabilities.xml"

    def tile_url(self, layer: str, day: date, tile: TileCoordinate) -> str:
        return (
            f"{self.config.base_url.rstrip('/')}/{layer}/default/{day.isoformat()}/"
            f"{TILE_MATRIX_SET}/{tile.zoom}/{tile.y}/{tile.x}.jpg"
        )

    def tile_for(self, request: ImageRequest) -> TileCoordinate:
        """Tile containing the request point, kept on the grid at the Mercator and antimeridian edges."""
        tile = point_to_tile(clamp_mercator_lat(request.latitude), request.longitude, self.config.zoom)
        last = 2 ** tile.zoom - 1
        return TileCoordinate(tile.zoom, min(max(tile.x, 0), last), min(max(tile.y, 0), last))

    # ----------------------------
    # Availability
    # ----------------------------
    def available_dates(self, layer: str) -> List[str]:
        url = self.capabilities_url(layer)
        r = self._request("GET", "capabilities", url, timeout=self.config.timeout_s)
        entries = parse_time_dimension(r.content, layer)
        log.info("gibs capabilities: layer=%s entries=%d", layer, len(entries))
        return entries

    def resolve_availability(self, request: ImageRequest) -> AvailabilityResult:
        day = request.requested_date
        raw = self.available_dates(self.layer_for(request))

        entries: List[TimeEntry] = []
        for token in raw:
            try:
                entries.append(parse_time_entry(token))
            except ValueError:
                log.debug("skipping unparsable time entry %r", token)
        if raw and not entries:
            raise ParseError("no parsable entries in the Time dimension", provider=self.name)
        if not entries:
            return AvailabilityResult(available=False, requested_date=day, error_reason=REASON_NO_DATES_PUBLISHED)

        closest = select_closest([nearest_in_entry(e, day) for e in entries], day)
        begin, end = date_window(day, self.window_days)
        candidates = {d for e in entries for d in dates_in_window(e, begin, end)}
        candidates.add(closest)
        available = closest == day
        return AvailabilityResult(
            available=available,
            requested_date=day,
            candidate_dates=sorted(candidates),
            closest_date=closest,
            error_reason=None if available else REASON_DATE_UNAVAILABLE,
        )

    # ----------------------------
    # Tiles
    # ----------------------------
    def fetch_tile_image(self, layer: str, day: date, tile: TileCoordinate, resolution: Optional[int] = None) -> CompositeImage:
        """Composite around an explicit tile address (map overlay route)."""
        return self.compositor.compose(
            tile, resolution or self.config.tile_size, lambda t: self.tile_url(layer, day, t)
        )

    def fetch_image(self, request: ImageRequest, availability: Optional[AvailabilityResult] = None) -> CompositeImage:
        # always the requested date; `availability` is informational only
        return self.fetch_tile_image(
            self.layer_for(request), request.requested_date, self.tile_for(request), request.output_resolution_pixels
        )

from __future__ import annotations

"""
Tile Fetch & Compositor.

Builds one square image of an exact pixel size from a provider that only
serves fixed-size tiles:

    resolution <= tile_size : the center tile, returned as served
    resolution  > tile_size : ceil(resolution / tile_size)^2 tiles fetched in
                              parallel, failed tiles replaced by white, rows
                              stitched left-to-right then stacked, resized
                              (bicubic) to resolution x resolution, JPEG.

The same tile bytes always give byte-identical output. A composite survives
individual tile failures; only a grid where every tile failed raises.
"""

import io
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

import requests
from PIL import Image, UnidentifiedImageError

from common.errors import AvailabilityError, ParseError, UpstreamUnavailable
from common.geo import TILE_SIZE, tiles_per_side
from common.hooks import NOOP_HOOKS, RequestHooks
from common.types import CompositeImage, TileCoordinate, TileGrid
from imagery.base import image_size, transport_reason


log = logging.getLogger(__name__)

PLACEHOLDER_COLOR = (255, 255, 255)

TileUrl = Callable[[TileCoordinate], str]


class TileCompositor:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        tile_size: int = TILE_SIZE,
        max_workers: int = 16,
        jpeg_quality: int = 85,
        timeout_s: float = 30.0,
        hooks: Optional[RequestHooks] = None,
        provider_name: str = "gibs",
    ):
        if tile_size <= 0:
            raise ValueError("tile_size must be > 0")
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        self.session = session or requests.Session()
        self.tile_size = int(tile_size)
        self.max_workers = int(max_workers)
        self.jpeg_quality = int(jpeg_quality)
        self.timeout_s = float(timeout_s)
        self.hooks = hooks or NOOP_HOOKS
        self.provider_name = provider_name

    # ----------------------------
    # Fetch
    # ----------------------------
    def fetch_tile(self, url: str) -> bytes:
        """GET one tile; transport errors and non-2xx raise UpstreamUnavailable."""
        with self.hooks.call(self.provider_name, "tile", url=url) as outcome:
            try:
                r = self.session.request("GET", url, timeout=self.timeout_s)
            except requests.RequestException as e:
                reason = transport_reason(url, e)
                outcome["error"] = reason
                raise UpstreamUnavailable(f"tile request failed: {reason}", provider=self.provider_name) from e
            outcome["status"] = r.status_code
        if not (200 <= r.status_code < 300):
            raise UpstreamUnavailable(
                f"tile returned HTTP {r.status_code}", status=r.status_code, provider=self.provider_name
            )
        return r.content

    def placeholder(self) -> Image.Image:
        return Image.new("RGB", (self.tile_size, self.tile_size), PLACEHOLDER_COLOR)

    def _decode(self, data: bytes) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ParseError(f"tile is not a decodable image: {e}", provider=self.provider_name) from e
        img = img.convert("RGB")
        if img.size != (self.tile_size, self.tile_size):
            img = img.resize((self.tile_size, self.tile_size), resample=Image.Resampling.BICUBIC)
        return img

    def _load_tile(self, url: str) -> Tuple[Optional[Image.Image], Optional[AvailabilityError]]:
        """(decoded tile, None), or (None, error) when it could not be fetched or decoded."""
        try:
            return self._decode(self.fetch_tile(url)), None
        except (UpstreamUnavailable, ParseError) as e:
            log.warning("tile unavailable, using placeholder: %s (%s)", url, e.reason)
            return None, e

    def _grid_failure(self, center: TileCoordinate, errors: List[AvailabilityError]) -> AvailabilityError:
        """
        One error for a grid where every tile failed.

        Retryable when any tile failed transiently; otherwise it carries the
        first permanent status (e.g. 404 for a date the layer does not cover).
        """
        reason = f"all {len(errors)} tiles failed around z{center.zoom}/{center.y}/{center.x}"
        transient = [e for e in errors if e.retryable]
        if transient:
            return UpstreamUnavailable(reason, status=getattr(transient[0], "status", None), provider=self.provider_name)
        statuses = [e.status for e in errors if isinstance(e, UpstreamUnavailable) and e.status is not None]
        if statuses:
            return UpstreamUnavailable(f"{reason} (HTTP {statuses[0]})", status=statuses[0], provider=self.provider_name)
        return ParseError(f"{reason} (undecodable tiles)", provider=self.provider_name)

    # ----------------------------
    # Stitch & encode
    # ----------------------------
    def stitch(self, rows: List[List[Image.Image]]) -> Image.Image:
        """Assemble each row left-to-right, then stack rows top-to-bottom."""
        ts = self.tile_size
        strips = []
        for row in rows:
            strip = Image.new("RGB", (ts * len(row), ts), PLACEHOLDER_COLOR)
            for i, tile in enumerate(row):
                strip.paste(tile, (i * ts, 0))
            strips.append(strip)
        width = max(s.width for s in strips)
        canvas = Image.new("RGB", (width, ts * len(strips)), PLACEHOLDER_COLOR)
        for j, strip in enumerate(strips):
            canvas.paste(strip, (0, j * ts))
        return canvas

    def encode(self, img: Image.Image) -> bytes:
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=self.jpeg_quality)
        return buf.getvalue()

    # ----------------------------
    # Public
    # ----------------------------
    def compose(self, center: TileCoordinate, resolution: int, tile_url: TileUrl) -> CompositeImage:
        """
        Image of `resolution` x `resolution` pixels around `center`.

        Params:
            center: tile containing the requested point
            resolution: output side in pixels (> 0)
            tile_url: maps a TileCoordinate to its upstream URL
        """
        if resolution <= 0:
            raise ValueError("resolution must be > 0")

        if resolution <= self.tile_size:
            data = self.fetch_tile(tile_url(center))
            width, height = image_size(data, provider=self.provider_name)
            return CompositeImage(data=data, width=width, height=height, media_type="image/jpeg")

        grid = TileGrid.centered_on(center, tiles_per_side(resolution, self.tile_size))
        urls = [tile_url(t) for t in grid.cells()]
        workers = min(self.max_workers, len(urls))
        # map() preserves grid order and returns only once every tile is done
        with ThreadPoolExecutor(max_workers=workers) as ex:
            results = list(ex.map(self._load_tile, urls))

        loaded = [img for img, _ in results]
        errors = [err for _, err in results if err is not None]
        failed = len(errors)
        if failed == len(loaded):
            raise self._grid_failure(center, errors)
        if failed:
            log.info("composite z%d/%d/%d: %d of %d tiles replaced", center.zoom, center.y, center.x, failed, len(loaded))

        tiles = [img if img is not None else self.placeholder() for img in loaded]
        n = grid.tiles_per_side
        canvas = self.stitch([tiles[r * n:(r + 1) * n] for r in range(n)])
        if canvas.size != (resolution, resolution):
            canvas = canvas.resize((resolution, resolution), resample=Image.Resampling.BICUBIC)

        return CompositeImage(
            data=self.encode(canvas),
            width=resolution,
            height=resolution,
            media_type="image/jpeg",
            tiles_total=len(loaded),
            tiles_failed=failed,
        )

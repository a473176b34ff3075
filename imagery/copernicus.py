from __future__ import annotations

"""
Copernicus Data Space / Sentinel Hub adapter (provider B).

Flow per call (the token is fetched fresh every time, never cached):
    1) POST token_url  grant_type=client_credentials        -> {"access_token"}
    2) GET  catalog_url bbox, datetime=<from>/<to>, limit    -> {"features": [...]}
    3) POST process_url (Bearer, JSON body)                  -> PNG bytes

Scene selection happens after the catalog query: scenes above the cloud-cover
threshold are dropped, then the scene whose acquisition time is nearest the
requested moment is picked by a linear scan (ties keep catalog order).
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import requests

from common.config import CopernicusConfig
from common.errors import AuthenticationError, ConfigurationError, NoImageryFound, ParseError, UpstreamUnavailable
from common.geo import point_bbox
from common.hooks import RequestHooks
from common.types import (
    REASON_CLOUD_FILTERED,
    REASON_DATE_UNAVAILABLE,
    REASON_NO_SCENES,
    AvailabilityResult,
    CompositeImage,
    ImageRequest,
    Provider,
    Scene,
)
from common.utils import AVAILABILITY_WINDOW_DAYS, date_window, parse_iso8601, select_closest, to_iso_z
from imagery.base import ImageryProvider


log = logging.getLogger(__name__)

TRUE_COLOR_EVALSCRIPT = """//VERSION=3
function setup() {
  return {
    input: ["B02", "B03", "B04"],
    output: { bands: 3 }
  };
}
function evaluatePixel(sample) {
  return [2.5 * sample.B04, 2.5 * sample.B03, 2.5 * sample.B02];
}
"""

CRS84 = "http://www.opengis.net/def/crs/OGC/1.3/CRS84"


# ----------------------------
# Scene helpers
# ----------------------------
def scene_from_feature(feature: Mapping[str, Any]) -> Scene:
    """Build a Scene from one STAC feature; raises ParseError on malformed input."""
    try:
        props = feature["properties"]
        cloud = props.get("eo:cloud_cover")
        bbox = feature.get("bbox")
        return Scene(
            id=str(feature["id"]),
            acquired_at=parse_iso8601(props["datetime"]),
            cloud_cover=None if cloud is None else float(cloud),
            platform=str(props.get("platform") or ""),
            instruments=tuple(props.get("instruments") or ()),
            bbox=tuple(float(v) for v in bbox) if bbox else None,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ParseError(f"malformed catalog feature: {e}", provider=Provider.COPERNICUS.value) from e


def filter_by_cloud_cover(scenes: List[Scene], max_cloud_cover: float) -> List[Scene]:
    """Keep scenes at or under the threshold, in catalog order; unknown cover counts as 100%."""
    return [s for s in scenes if s.effective_cloud_cover <= max_cloud_cover]


def select_closest_scene(scenes: List[Scene], target: datetime) -> Optional[Scene]:
    return select_closest(scenes, target, key=lambda s: s.acquired_at)


class CopernicusProvider(ImageryProvider):
    provider = Provider.COPERNICUS

    def __init__(
        self,
        config: CopernicusConfig,
        *,
        window_days: int = AVAILABILITY_WINDOW_DAYS,
        session: Optional[requests.Session] = None,
        hooks: Optional[RequestHooks] = None,
    ):
        if not config.client_id or not config.client_secret:
            raise ConfigurationError(
                "Copernicus client credentials are required. Set providers.copernicus.client_id/"
                "client_secret in config/params.yaml or COPERNICUS_CLIENT_ID/COPERNICUS_CLIENT_SECRET."
            )
        super().__init__(session=session, hooks=hooks)
        self.config = config
        self.window_days = int(window_days)

    # ----------------------------
    # Auth
    # ----------------------------
    def get_access_token(self) -> str:
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        try:
            r = self._request(
                "POST",
                "token",
                self.config.token_url,
                timeout=self.config.timeout_s,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except UpstreamUnavailable as e:
            raise AuthenticationError(
                f"Failed to authenticate with Copernicus: {e.reason}", status=e.status, provider=self.name
            ) from e
        token = (self._json(r, "token") or {}).get("access_token")
        if not token:
            raise AuthenticationError("token response has no access_token", provider=self.name)
        return str(token)

    def _bearer(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.get_access_token()}"}

    # ----------------------------
    # Catalog
    # ----------------------------
    def search_scenes(self, request: ImageRequest) -> List[Scene]:
        """Scenes intersecting the request bbox within ±window_days, unique by id, catalog order."""
        headers = self._bearer()
        bbox = point_bbox(request.latitude, request.longitude, request.field_of_view_degrees)
        start, end = date_window(request.requested_datetime, self.window_days)
        params = {
            "bbox": ",".join(repr(float(v)) for v in bbox),
            "datetime": f"{to_iso_z(start)}/{to_iso_z(end)}",
            "limit": str(self.config.scene_limit),
        }
        r = self._request(
            "GET", "catalog", self.config.catalog_url, params=params, headers=headers, timeout=self.config.timeout_s
        )
        payload = self._json(r, "catalog")
        features = payload.get("features", []) if isinstance(payload, dict) else None
        if not isinstance(features, list):
            raise ParseError("catalog response has no 'features' list", provider=self.name)

        scenes: List[Scene] = []
        seen = set()
        for feature in features:
            scene = scene_from_feature(feature)
            if scene.id not in seen:
                seen.add(scene.id)
                scenes.append(scene)
        log.info("copernicus catalog: %d scenes around (%.4f, %.4f)", len(scenes), request.latitude, request.longitude)
        return scenes

    def resolve_availability(self, request: ImageRequest) -> AvailabilityResult:
        day = request.requested_date
        scenes = self.search_scenes(request)
        if not scenes:
            return AvailabilityResult(available=False, requested_date=day, error_reason=REASON_NO_SCENES)

        threshold = self.config.max_cloud_cover if request.max_cloud_cover is None else request.max_cloud_cover
        filtered = filter_by_cloud_cover(scenes, threshold)
        if not filtered:
            return AvailabilityResult(
                available=False, requested_date=day, scenes=scenes, error_reason=REASON_CLOUD_FILTERED
            )

        target = request.requested_datetime
        selected = select_closest_scene(filtered, target)
        same_day = [s for s in filtered if s.acquisition_date == day]
        if same_day:
            selected = select_closest_scene(same_day, target)
        return AvailabilityResult(
            available=bool(same_day),
            requested_date=day,
            resolved_date=day if same_day else None,
            candidate_dates=[s.acquisition_date for s in filtered],
            closest_date=selected.acquisition_date if selected else None,
            error_reason=None if same_day else REASON_DATE_UNAVAILABLE,
            scenes=scenes,
            filtered_scenes=filtered,
            selected_scene=selected,
        )

    # ----------------------------
    # Process API
    # ----------------------------
    def build_process_request(self, request: ImageRequest, scene: Scene) -> Dict[str, Any]:
        """Process API body for one scene: its exact timestamp is both ends of the time range."""
        acquired = to_iso_z(scene.acquired_at)
        threshold = self.config.max_cloud_cover if request.max_cloud_cover is None else request.max_cloud_cover
        size = request.output_resolution_pixels
        return {
            "input": {
                "bounds": {
                    "bbox": list(point_bbox(request.latitude, request.longitude, request.field_of_view_degrees)),
                    "properties": {"crs": CRS84},
                },
                "data": [
                    {
                        "type": self.config.collection,
                        "timeRange": {"from": acquired, "to": acquired},
                        "dataFilter": {"maxCloudCoverage": threshold},
                    }
                ],
            },
            "output": {
                "width": size,
                "height": size,
                "responses": [{"identifier": "default", "format": {"type": "image/png"}}],
            },
            "evalscript": TRUE_COLOR_EVALSCRIPT,
        }

    def fetch_image(self, request: ImageRequest, availability: Optional[AvailabilityResult] = None) -> CompositeImage:
        scene = availability.selected_scene if availability else None
        if scene is None:
            raise NoImageryFound("no scene selected for this request", provider=self.name)
        headers = self._bearer()
        headers["Content-Type"] = "application/json"
        r = self._request(
            "POST",
            "process",
            self.config.process_url,
            json=self.build_process_request(request, scene),
            headers=headers,
            timeout=self.config.timeout_s,
        )
        return self._image(r, default_type="image/png")

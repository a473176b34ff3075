from __future__ import annotations

"""
NASA Earth imagery adapter (provider A).

Two upstream endpoints:
    {base}/assets?lon&lat&begin&end&dim&api_key   -> {"results": [{"date": ...}, ...]}
    {base}/imagery?lon&lat&date&dim&api_key       -> PNG bytes

Availability is a per-day asset lookup: the exact date first, then a ±window
query whose dates feed the caller's date navigation. When the exact-date query
itself fails, the orchestrator may still try fetch_image_fallback() for the
same date.

Usage:
    svc = NasaEarthProvider(NasaEarthConfig(api_key="..."))
    result = svc.resolve_availability(request)
    if result.available:
        image = svc.fetch_image(request, result)
"""

import logging
from datetime import date
from typing import List, Optional

import requests

from common.config import NasaEarthConfig
from common.errors import AvailabilityError, ConfigurationError, ParseError, UpstreamUnavailable
from common.hooks import RequestHooks
from common.types import (
    REASON_DATE_UNAVAILABLE,
    REASON_NO_IMAGERY,
    AvailabilityResult,
    CompositeImage,
    ImageRequest,
    Provider,
)
from common.utils import AVAILABILITY_WINDOW_DAYS, date_window, parse_date
from imagery.base import ImageryProvider


log = logging.getLogger(__name__)


class NasaEarthProvider(ImageryProvider):
    provider = Provider.NASA_EARTH
    supports_fallback = True

    def __init__(
        self,
        config: NasaEarthConfig,
        *,
        window_days: int = AVAILABILITY_WINDOW_DAYS,
        session: Optional[requests.Session] = None,
        hooks: Optional[RequestHooks] = None,
    ):
        if not config.api_key:
            raise ConfigurationError(
                "NASA API key is required. "
                "Set providers.nasa.api_key in config/params.yaml or NASA_API_KEY."
            )
        super().__init__(session=session, hooks=hooks)
        self.config = config
        self.window_days = int(window_days)

    def _params(self, request: ImageRequest, **extra) -> dict:
        params = {"lon": request.longitude, "lat": request.latitude}
        params.update(extra)
        params["dim"] = request.field_of_view_degrees
        params["api_key"] = self.config.api_key
        return params

    # ----------------------------
    # Availability
    # ----------------------------
    def query_assets(self, request: ImageRequest, begin: date, end: date) -> List[date]:
        """
        Sorted, de-duplicated asset dates in [begin, end].
        A 404 from the index means "no assets" and yields [].
        """
        params = self._params(request, begin=begin.isoformat(), end=end.isoformat())
        url = f"{self.config.base_url.rstrip('/')}/assets"
        try:
            r = self._request("GET", "assets", url, params=params, timeout=self.config.timeout_s)
        except UpstreamUnavailable as e:
            if e.status == 404:
                return []
            raise
        payload = self._json(r, "assets")
        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise ParseError("assets response has no 'results' list", provider=self.name)
        dates = set()
        for item in results:
            try:
                dates.add(parse_date(item["date"]))
            except (KeyError, TypeError, ValueError) as e:
                raise ParseError(f"bad asset entry {item!r}: {e}", provider=self.name) from e
        return sorted(dates)

    def resolve_availability(self, request: ImageRequest) -> AvailabilityResult:
        day = request.requested_date
        exact = self.query_assets(request, day, day)
        begin, end = date_window(day, self.window_days)

        if day in exact:
            # Image exists; the window is still reported for date navigation.
            try:
                window = self.query_assets(request, begin, end)
            except AvailabilityError as e:
                log.warning("nasa window query failed after exact hit: %s", e.reason)
                window = []
            return AvailabilityResult(
                available=True,
                requested_date=day,
                resolved_date=day,
                candidate_dates=sorted(set(window) | {day}),
            )

        window = self.query_assets(request, begin, end)
        return AvailabilityResult(
            available=False,
            requested_date=day,
            candidate_dates=window,
            error_reason=REASON_DATE_UNAVAILABLE if window else REASON_NO_IMAGERY,
        )

    # ----------------------------
    # Image
    # ----------------------------
    def _fetch(self, request: ImageRequest, day: date, call: str) -> CompositeImage:
        url = f"{self.config.base_url.rstrip('/')}/imagery"
        params = self._params(request, date=day.isoformat())
        r = self._request(
            "GET", call, url, params=params, timeout=self.config.timeout_s, headers={"Accept": "image/png"}
        )
        return self._image(r, default_type="image/png")

    def fetch_image(self, request: ImageRequest, availability: Optional[AvailabilityResult] = None) -> CompositeImage:
        day = availability.resolved_date if availability and availability.resolved_date else request.requested_date
        return self._fetch(request, day, "imagery")

    def fetch_image_fallback(self, request: ImageRequest) -> CompositeImage:
        """Direct fetch for the requested date without an asset lookup."""
        return self._fetch(request, request.requested_date, "imagery_fallback")

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import requests
from PIL import Image, UnidentifiedImageError

from common.errors import ParseError, UpstreamUnavailable
from common.hooks import NOOP_HOOKS, RequestHooks
from common.types import AvailabilityResult, CompositeImage, ImageRequest, Provider


log = logging.getLogger(__name__)

# query parameters never written to logs
_SECRET_PARAMS = ("api_key", "client_secret", "access_token")


class ImageryProvider(ABC):
    """
    Capability interface shared by the three providers.

    Subclasses own their upstream contract and answer two questions:
      - resolve_availability(): is there imagery near this request?
      - fetch_image(): produce the image bytes for it.

    Class flags steer the orchestrator:
      supports_fallback      : fetch_image_fallback() may be tried when resolution errors
      advisory_availability  : the fetch never depends on the resolution result
    """

    provider: Provider
    supports_fallback: bool = False
    advisory_availability: bool = False

    def __init__(self, *, session: Optional[requests.Session] = None, hooks: Optional[RequestHooks] = None):
        self.session = session or requests.Session()
        self.hooks = hooks or NOOP_HOOKS

    @property
    def name(self) -> str:
        return self.provider.value

    # ----------------------------
    # Capability
    # ----------------------------
    @abstractmethod
    def resolve_availability(self, request: ImageRequest) -> AvailabilityResult:
        """Raises AvailabilityError (or a subclass) when the upstream call fails."""

    @abstractmethod
    def fetch_image(self, request: ImageRequest, availability: Optional[AvailabilityResult] = None) -> CompositeImage:
        """Raises ImageryError when no image can be produced."""

    def fetch_image_fallback(self, request: ImageRequest) -> CompositeImage:
        raise NotImplementedError(f"{self.name} has no fallback fetch")

    # ----------------------------
    # HTTP helpers
    # ----------------------------
    def _request(
        self,
        method: str,
        call: str,
        url: str,
        *,
        timeout: float,
        params: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> requests.Response:
        """
        Perform one upstream call through the hooks and return a 2xx response.
        Transport errors and non-2xx statuses become UpstreamUnavailable.
        """
        with self.hooks.call(self.name, call, url=url, params=_redact(params)) as outcome:
            try:
                r = self.session.request(method, url, params=params, timeout=timeout, **kwargs)
            except requests.RequestException as e:
                reason = transport_reason(url, e)
                outcome["error"] = reason
                raise UpstreamUnavailable(f"{self.name} {call} request failed: {reason}", provider=self.name) from e
            outcome["status"] = r.status_code
        if not (200 <= r.status_code < 300):
            log.warning("%s %s returned %s: %s", self.name, call, r.status_code, (r.text or "")[:200])
            raise UpstreamUnavailable(
                f"{self.name} {call} returned HTTP {r.status_code}",
                status=r.status_code,
                provider=self.name,
            )
        return r

    def _json(self, response: requests.Response, call: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"{self.name} {call} returned malformed JSON: {e}", provider=self.name) from e

    def _image(self, response: requests.Response, default_type: str) -> CompositeImage:
        data = response.content
        width, height = image_size(data, provider=self.name)
        media_type = (response.headers or {}).get("Content-Type") or default_type
        return CompositeImage(data=data, width=width, height=height, media_type=media_type.split(";")[0])


def image_size(data: bytes, *, provider: Optional[str] = None) -> Tuple[int, int]:
    """Pixel size of encoded image bytes (header only)."""
    if not data:
        raise ParseError("empty image payload", provider=provider)
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ParseError(f"payload is not a decodable image: {e}", provider=provider) from e


def transport_reason(url: str, err: requests.RequestException) -> str:
    """
    Loggable description of a transport failure.

    The exception text from requests/urllib3 embeds the full request URL,
    query string (and so any api_key) included; only the type and host are kept.
    """
    host = urlsplit(url).netloc or "upstream"
    return f"{type(err).__name__} contacting {host}"


def _redact(params: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if params is None:
        return None
    return {k: ("***" if k in _SECRET_PARAMS else v) for k, v in params.items()}

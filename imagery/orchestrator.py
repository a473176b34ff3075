from __future__ import annotations

"""
Request Orchestrator.

One request, one pass through:

    START -> resolve availability
        AVAILABLE       -> fetch image              -> SUCCESS | FAILURE
        UNAVAILABLE     -> REPORT_CANDIDATES
        RESOLVER_ERROR  -> fallback fetch           -> SUCCESS_FALLBACK | FAILURE

Provider flags (see imagery.base.ImageryProvider) pick the branch taken:
an advisory provider (GIBS) always fetches for the requested date and only
reports what the resolver found; a provider with a fallback (NASA Earth)
retries a direct fetch when its resolver errors.

Every terminal state is an ImageryResponse; no ImageryError escapes.
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

import requests

from common.config import ImageryConfig
from common.errors import ImageryError
from common.hooks import NOOP_HOOKS, RequestHooks
from common.types import AvailabilityResult, ImageRequest, ImageryResponse, Provider, ResponseStatus
from imagery.base import ImageryProvider
from imagery.copernicus import CopernicusProvider
from imagery.gibs import GibsProvider
from imagery.nasa_earth import NasaEarthProvider


log = logging.getLogger(__name__)

# States
START = "START"
AVAILABLE = "AVAILABLE"
UNAVAILABLE = "UNAVAILABLE"
RESOLVER_ERROR = "RESOLVER_ERROR"
SUCCESS = "SUCCESS"
SUCCESS_FALLBACK = "SUCCESS_FALLBACK"
REPORT_CANDIDATES = "REPORT_CANDIDATES"
FAILURE = "FAILURE"


class ImageryOrchestrator:
    def __init__(self, providers: Dict[Provider, ImageryProvider], hooks: Optional[RequestHooks] = None):
        self.providers = dict(providers)
        self.hooks = hooks or NOOP_HOOKS

    def _provider(self, request: ImageRequest) -> Optional[ImageryProvider]:
        return self.providers.get(request.provider)

    def _transition(self, request: ImageRequest, state: str, t0: float, **info) -> None:
        self.hooks.on_transition(request, state, elapsed_ms=round((time.perf_counter() - t0) * 1e3, 1), **info)

    def _failure(self, request: ImageRequest, t0: float, err: ImageryError, **kw) -> ImageryResponse:
        reason = getattr(err, "reason", None) or str(err)
        self._transition(request, FAILURE, t0, reason=reason)
        return ImageryResponse(
            status=ResponseStatus.FAILURE, request=request, reason=reason, retryable=bool(err.retryable), **kw
        )

    def check_availability(self, request: ImageRequest) -> AvailabilityResult:
        """Resolver only; errors propagate as ImageryError."""
        svc = self._provider(request)
        if svc is None:
            raise ImageryError(f"provider '{request.provider.value}' is not configured")
        return svc.resolve_availability(request)

    def handle(self, request: ImageRequest) -> ImageryResponse:
        t0 = time.perf_counter()
        self._transition(request, START, t0)

        svc = self._provider(request)
        if svc is None:
            return self._failure(request, t0, ImageryError(f"provider '{request.provider.value}' is not configured"))

        try:
            availability = svc.resolve_availability(request)
        except ImageryError as e:
            self._transition(request, RESOLVER_ERROR, t0, reason=str(e))
            return self._after_resolver_error(svc, request, t0, e)

        if availability.available or svc.advisory_availability:
            self._transition(request, AVAILABLE, t0, advisory=svc.advisory_availability)
            try:
                image = svc.fetch_image(request, availability)
            except ImageryError as e:
                return self._failure(request, t0, e, availability=availability)
            resolved = availability.resolved_date or availability.closest_date
            self._transition(request, SUCCESS, t0, resolved_date=resolved)
            return ImageryResponse(
                status=ResponseStatus.SUCCESS,
                request=request,
                image=image,
                resolved_date=resolved,
                availability=availability,
            )

        self._transition(request, UNAVAILABLE, t0, reason=availability.error_reason)
        self._transition(
            request, REPORT_CANDIDATES, t0, candidates=len(availability.candidate_dates), closest=availability.closest_date
        )
        return ImageryResponse(
            status=ResponseStatus.UNAVAILABLE,
            request=request,
            availability=availability,
            reason=availability.error_reason,
        )

    def _after_resolver_error(
        self, svc: ImageryProvider, request: ImageRequest, t0: float, err: ImageryError
    ) -> ImageryResponse:
        if svc.supports_fallback:
            try:
                image = svc.fetch_image_fallback(request)
            except ImageryError as e:
                log.warning("%s fallback fetch failed after resolver error: %s", svc.name, e)
                return self._failure(request, t0, e, metadata={"resolver_error": str(err)})
            self._transition(request, SUCCESS_FALLBACK, t0)
            return ImageryResponse(
                status=ResponseStatus.SUCCESS_FALLBACK,
                request=request,
                image=image,
                resolved_date=request.requested_date,
                reason=str(err),
                metadata={"resolver_error": str(err)},
            )

        if svc.advisory_availability:
            # the fetch never depended on the resolver
            try:
                image = svc.fetch_image(request, None)
            except ImageryError as e:
                return self._failure(request, t0, e, metadata={"resolver_error": str(err)})
            self._transition(request, SUCCESS, t0, resolved_date=None)
            return ImageryResponse(
                status=ResponseStatus.SUCCESS,
                request=request,
                image=image,
                reason=str(err),
                metadata={"resolver_error": str(err)},
            )

        return self._failure(request, t0, err)


def build_orchestrator(
    config: ImageryConfig,
    *,
    hooks: Optional[RequestHooks] = None,
    session: Optional[requests.Session] = None,
) -> Tuple[ImageryOrchestrator, Dict[str, str]]:
    """
    Construct every enabled provider from `config`.

    Returns:
        (orchestrator, init_errors) where init_errors maps provider name to the
        reason it could not be constructed (e.g. missing credentials).
    """
    session = session or requests.Session()
    providers: Dict[Provider, ImageryProvider] = {}
    init_errors: Dict[str, str] = {}
    factories = [
        (Provider.NASA_EARTH, config.nasa.enabled, lambda: NasaEarthProvider(
            config.nasa, window_days=config.window_days, session=session, hooks=hooks)),
        (Provider.COPERNICUS, config.copernicus.enabled, lambda: CopernicusProvider(
            config.copernicus, window_days=config.window_days, session=session, hooks=hooks)),
        (Provider.GIBS, config.gibs.enabled, lambda: GibsProvider(
            config.gibs, window_days=config.window_days, session=session, hooks=hooks)),
    ]
    for provider, enabled, factory in factories:
        if not enabled:
            init_errors[provider.value] = "disabled in config"
            continue
        try:
            providers[provider] = factory()
        except ValueError as e:
            log.warning("provider %s not initialised: %s", provider.value, e)
            init_errors[provider.value] = str(e)
    return ImageryOrchestrator(providers, hooks=hooks), init_errors


def enabled_providers(orchestrator: ImageryOrchestrator) -> List[str]:
    return sorted(p.value for p in orchestrator.providers)

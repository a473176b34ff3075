from __future__ import annotations

import json
from datetime import date, time
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from common.config import ImageryConfig, load_config
from common.errors import ImageryError
from common.hooks import LoggingHooks
from common.logging_setup import get_logger, setup_logging
from common.types import ImageRequest, ImageryResponse, Provider, ResponseStatus, TileCoordinate
from common.utils import parse_date
from imagery.gibs import GibsProvider, layer_metadata, list_layers
from imagery.orchestrator import ImageryOrchestrator, build_orchestrator, enabled_providers


log = get_logger(__name__)


def _imagery_response(resp: ImageryResponse) -> Response:
    """Map an orchestrator outcome onto HTTP."""
    if resp.ok and resp.image is not None:
        headers = {
            "X-Imagery-Metadata": json.dumps(resp.to_meta(), default=str),
            "X-Resolved-Date": resp.resolved_date.isoformat() if resp.resolved_date else "",
            "Cache-Control": "no-store",
        }
        if resp.request.provider is Provider.GIBS:
            headers["X-Gibs-Layer"] = resp.metadata.get("layer") or ""
            headers["X-Gibs-Date"] = resp.request.requested_date.isoformat()
        return Response(content=resp.image.data, media_type=resp.image.media_type, headers=headers)

    if resp.status is ResponseStatus.UNAVAILABLE and resp.availability is not None:
        a = resp.availability.to_dict()
        body = {
            "error": resp.reason or "imagery_unavailable",
            "requested_date": a["requested_date"],
            "candidate_dates": a["candidate_dates"],
            "closest_date": a["closest_date"],
            "previous_date": a["previous_date"],
            "next_date": a["next_date"],
        }
        if "scenes" in a:
            body["scenes"] = a["scenes"]
            body["filtered_scenes"] = a["filtered_scenes"]
        return JSONResponse(body, status_code=404)

    body = {"error": "imagery_fetch_failed", "detail": resp.reason, "retryable": resp.retryable}
    if resp.availability is not None:
        # dates the resolver found before the fetch failed
        a = resp.availability.to_dict()
        body["closest_date"] = a["closest_date"]
        body["candidate_dates"] = a["candidate_dates"]
    return JSONResponse(body, status_code=502)


def _bad_request(e: Exception) -> JSONResponse:
    return JSONResponse({"error": "invalid_request", "detail": str(e)}, status_code=400)


def _upstream_error(e: ImageryError) -> JSONResponse:
    return JSONResponse(
        {"error": "upstream_error", "detail": getattr(e, "reason", str(e)), "retryable": bool(e.retryable)},
        status_code=502,
    )


def create_app(
    config: Optional[ImageryConfig] = None,
    orchestrator: Optional[ImageryOrchestrator] = None,
    init_errors: Optional[Dict[str, str]] = None,
) -> FastAPI:
    """
    Build the HTTP surface.

    Params:
        config: loaded from config/params.yaml when omitted
        orchestrator: injected in tests; otherwise built from `config`
        init_errors: provider -> reason it is missing (reported by /health)
    """
    cfg = config or load_config()
    if orchestrator is None:
        orchestrator, init_errors = build_orchestrator(cfg, hooks=LoggingHooks())
    errors = dict(init_errors or {})

    app = FastAPI(title="Satellite Imagery API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.server.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _gibs() -> Optional[GibsProvider]:
        svc = orchestrator.providers.get(Provider.GIBS)
        return svc if isinstance(svc, GibsProvider) else None

    def _not_configured(provider: str) -> JSONResponse:
        return JSONResponse(
            {"error": "provider_unavailable", "provider": provider, "detail": errors.get(provider)},
            status_code=503,
        )

    def _check_resolution(provider: str, resolution: int) -> None:
        # GIBS fans out ceil(resolution / tile_size)^2 tile fetches
        if provider == Provider.GIBS.value and resolution > cfg.gibs.max_resolution:
            raise ValueError(f"resolution must be <= {cfg.gibs.max_resolution} for gibs")

    def _request(
        provider: str,
        lat: float,
        lon: float,
        date_: str,
        time_: Optional[str],
        dim: float,
        resolution: int,
        max_cloud_cover: Optional[float],
        layer: Optional[str],
    ) -> ImageRequest:
        _check_resolution(provider, resolution)
        return ImageRequest(
            latitude=lat,
            longitude=lon,
            requested_date=parse_date(date_),
            provider=Provider(provider),
            requested_time=time.fromisoformat(time_) if time_ else None,
            field_of_view_degrees=dim,
            output_resolution_pixels=resolution,
            max_cloud_cover=max_cloud_cover,
            layer=layer,
        )

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "providers": enabled_providers(orchestrator),
            "init_errors": errors,
        }

    @app.get("/imagery")
    def imagery(
        provider: str = Query(...),
        lat: float = Query(...),
        lon: float = Query(...),
        date: str = Query(...),
        time: Optional[str] = Query(None),
        dim: float = Query(0.2),
        resolution: int = Query(1024),
        max_cloud_cover: Optional[float] = Query(None),
        layer: Optional[str] = Query(None),
    ):
        """
        Image bytes with `X-Imagery-Metadata` (JSON) on success.

        404 carries the candidate dates for date navigation; 502 an upstream
        failure with `retryable`.
        """
        try:
            req = _request(provider, lat, lon, date, time, dim, resolution, max_cloud_cover, layer)
        except ValueError as e:
            return _bad_request(e)
        if req.provider not in orchestrator.providers:
            return _not_configured(req.provider.value)

        resp = orchestrator.handle(req)
        if req.provider is Provider.GIBS:
            resp.metadata.setdefault("layer", req.layer or cfg.gibs.default_layer)
        log.info("imagery %s %s -> %s", req.provider.value, req.requested_date, resp.status.value)
        return _imagery_response(resp)

    @app.get("/availability")
    def availability(
        provider: str = Query(...),
        lat: float = Query(...),
        lon: float = Query(...),
        date: str = Query(...),
        time: Optional[str] = Query(None),
        dim: float = Query(0.2),
        max_cloud_cover: Optional[float] = Query(None),
        layer: Optional[str] = Query(None),
    ):
        try:
            req = _request(provider, lat, lon, date, time, dim, 1024, max_cloud_cover, layer)
        except ValueError as e:
            return _bad_request(e)
        if req.provider not in orchestrator.providers:
            return _not_configured(req.provider.value)
        try:
            result = orchestrator.check_availability(req)
        except ImageryError as e:
            return _upstream_error(e)
        return result.to_dict()

    # -------- GIBS layer catalog & tiles --------
    @app.get("/gibs/layers")
    def gibs_layers():
        return {"layers": [entry.to_dict() for entry in list_layers()]}

    @app.get("/gibs/layers/{layer}")
    def gibs_layer(layer: str):
        try:
            meta = layer_metadata(layer)
        except KeyError:
            return JSONResponse({"error": "layer_not_found", "layer": layer}, status_code=404)
        return {"metadata": meta.to_dict()}

    @app.get("/gibs/layers/{layer}/dates")
    def gibs_layer_dates(layer: str):
        svc = _gibs()
        if svc is None:
            return _not_configured(Provider.GIBS.value)
        try:
            dates = svc.available_dates(layer)
        except ImageryError as e:
            return _upstream_error(e)
        return {"layer": layer, "available_dates": dates}

    @app.get("/gibs/tile")
    def gibs_tile(
        z: int = Query(...),
        x: int = Query(...),
        y: int = Query(...),
        date: Optional[str] = Query(None),
        layer: Optional[str] = Query(None),
        resolution: int = Query(256),
    ):
        svc = _gibs()
        if svc is None:
            return _not_configured(Provider.GIBS.value)
        try:
            day = parse_date(date) if date else _today()
            if z < 0 or resolution <= 0:
                raise ValueError("z must be >= 0 and resolution > 0")
            _check_resolution(Provider.GIBS.value, resolution)
        except ValueError as e:
            return _bad_request(e)
        lyr = layer or cfg.gibs.default_layer
        try:
            image = svc.fetch_tile_image(lyr, day, TileCoordinate(z, x, y), resolution)
        except ImageryError as e:
            return _upstream_error(e)
        headers = {"X-Gibs-Layer": lyr, "X-Gibs-Date": day.isoformat(), "Cache-Control": "no-store"}
        return Response(content=image.data, media_type=image.media_type, headers=headers)

    return app


def _today() -> date:
    return date.today()


def main() -> None:
    cfg = load_config()
    setup_logging(cfg.logging.level, force=True)
    uvicorn.run(create_app(cfg), host=cfg.server.host, port=cfg.server.port)


# -------- local dev entrypoint (or: uvicorn imagery.server:create_app --factory) --------
if __name__ == "__main__":
    main()

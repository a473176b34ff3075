"""
Imagery Engine - multi-provider resolution & tile compositing

Providers (all implement imagery.base.ImageryProvider):
- NasaEarthProvider (nasa): per-day point assets, direct PNG fetch, fallback fetch
- CopernicusProvider (copernicus): Sentinel-2 L2A scene catalog, cloud filter, process API
- GibsProvider (gibs): WMTS Time dimension (advisory), tiles composited by TileCompositor

ImageryOrchestrator runs one ImageRequest to an ImageryResponse; imagery.server
exposes it over HTTP (/imagery, /availability, /gibs/*, /health).

Usage examples:
    from common.config import load_config
    from imagery.orchestrator import build_orchestrator
    orchestrator, init_errors = build_orchestrator(load_config())
"""

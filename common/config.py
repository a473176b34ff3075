from __future__ import annotations

"""
Process-wide configuration, read once at startup.

Layout of config/params.yaml (every key optional):

    logging:  {level: INFO}
    server:   {host: 0.0.0.0, port: 8000, cors_origins: ["*"]}
    availability: {window_days: 7}
    providers:
      nasa:       {enabled: true, api_key: ..., base_url: ..., timeout_s: 30}
      copernicus: {enabled: true, client_id: ..., client_secret: ..., max_cloud_cover: 100}
      gibs:       {enabled: true, default_layer: ..., zoom: 8, max_workers: 16}

Credentials missing from the file are taken from NASA_API_KEY,
COPERNICUS_CLIENT_ID and COPERNICUS_CLIENT_SECRET. Nothing else reads the
environment; providers receive these structs explicitly.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

import yaml

from common.utils import AVAILABILITY_WINDOW_DAYS


DEFAULT_CONFIG_PATH = "config/params.yaml"

C = TypeVar("C")


@dataclass(frozen=True)
class NasaEarthConfig:
    enabled: bool = True
    api_key: Optional[str] = None
    base_url: str = "https://api.nasa.gov/planetary/earth"
    timeout_s: float = 30.0


@dataclass(frozen=True)
class CopernicusConfig:
    enabled: bool = True
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    token_url: str = "https://identity.dataspace.copernicus.eu/auth/realms/CDSE/protocol/openid-connect/token"
    catalog_url: str = "https://sh.dataspace.copernicus.eu/api/v1/catalog/1.0.0/collections/sentinel-2-l2a/items"
    process_url: str = "https://sh.dataspace.copernicus.eu/api/v1/process"
    collection: str = "sentinel-2-l2a"
    scene_limit: int = 20
    max_cloud_cover: float = 100.0
    timeout_s: float = 30.0


@dataclass(frozen=True)
class GibsConfig:
    enabled: bool = True
    base_url: str = "https://gibs.earthdata.nasa.gov/wmts/epsg3857/best"
    default_layer: str = "MODIS_Terra_CorrectedReflectance_TrueColor"
    zoom: int = 8
    tile_size: int = 256
    max_workers: int = 16
    jpeg_quality: int = 85
    max_resolution: int = 4096
    timeout_s: float = 30.0


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class ImageryConfig:
    nasa: NasaEarthConfig = field(default_factory=NasaEarthConfig)
    copernicus: CopernicusConfig = field(default_factory=CopernicusConfig)
    gibs: GibsConfig = field(default_factory=GibsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    window_days: int = AVAILABILITY_WINDOW_DAYS


def _section(cls: Type[C], raw: Optional[Mapping[str, Any]]) -> C:
    """Build `cls` from a mapping, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return cls(**{k: v for k, v in (raw or {}).items() if k in known})


def _with_env(raw: Optional[Mapping[str, Any]], env: Mapping[str, str], keys: Dict[str, str]) -> Dict[str, Any]:
    out = dict(raw or {})
    for key, var in keys.items():
        if not out.get(key) and env.get(var):
            out[key] = env[var]
    return out


def load_config(path: str = DEFAULT_CONFIG_PATH, env: Optional[Mapping[str, str]] = None) -> ImageryConfig:
    """
    Load config from YAML; a missing file yields defaults (credentials from env only).
    """
    raw: Dict[str, Any] = {}
    if Path(path).exists():
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    env = os.environ if env is None else env
    providers = raw.get("providers", {}) or {}

    nasa = _with_env(providers.get("nasa"), env, {"api_key": "NASA_API_KEY"})
    copernicus = _with_env(
        providers.get("copernicus"),
        env,
        {"client_id": "COPERNICUS_CLIENT_ID", "client_secret": "COPERNICUS_CLIENT_SECRET"},
    )
    availability = raw.get("availability", {}) or {}

    return ImageryConfig(
        nasa=_section(NasaEarthConfig, nasa),
        copernicus=_section(CopernicusConfig, copernicus),
        gibs=_section(GibsConfig, providers.get("gibs")),
        server=_section(ServerConfig, raw.get("server")),
        logging=_section(LoggingConfig, raw.get("logging")),
        window_days=int(availability.get("window_days", AVAILABILITY_WINDOW_DAYS)),
    )

"""
Unit tests for YAML configuration loading
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import CopernicusConfig, GibsConfig, ImageryConfig, NasaEarthConfig, load_config


class TestLoadConfig:
    """Test cases for load_config"""

    def test_missing_file_gives_defaults(self, tmp_path):
        """No file: defaults everywhere, nothing from an empty env"""
        cfg = load_config(str(tmp_path / "missing.yaml"), env={})
        assert cfg == ImageryConfig()
        assert cfg.nasa.api_key is None
        assert cfg.gibs.zoom == 8
        assert cfg.copernicus.scene_limit == 20
        assert cfg.window_days == 7

    def test_env_credentials(self, tmp_path):
        """Credentials absent from the file come from the environment"""
        env = {"NASA_API_KEY": "nk", "COPERNICUS_CLIENT_ID": "cid", "COPERNICUS_CLIENT_SECRET": "sec"}
        cfg = load_config(str(tmp_path / "missing.yaml"), env=env)
        assert cfg.nasa.api_key == "nk"
        assert cfg.copernicus.client_id == "cid"
        assert cfg.copernicus.client_secret == "sec"

    def test_yaml_values(self, tmp_path):
        """File values override defaults; unknown keys are ignored"""
        path = tmp_path / "params.yaml"
        path.write_text(
            "availability:\n"
            "  window_days: 3\n"
            "logging:\n"
            "  level: DEBUG\n"
            "providers:\n"
            "  nasa:\n"
            "    api_key: from-file\n"
            "    unknown_key: 1\n"
            "  gibs:\n"
            "    zoom: 7\n"
            "    max_resolution: 2048\n"
            "    default_layer: VIIRS_SNPP_CorrectedReflectance_TrueColor\n"
            "  copernicus:\n"
            "    enabled: false\n"
        )
        cfg = load_config(str(path), env={"NASA_API_KEY": "from-env"})
        assert cfg.window_days == 3
        assert cfg.logging.level == "DEBUG"
        assert cfg.nasa.api_key == "from-file"
        assert cfg.gibs.zoom == 7
        assert cfg.gibs.max_resolution == 2048
        assert cfg.gibs.default_layer == "VIIRS_SNPP_CorrectedReflectance_TrueColor"
        assert cfg.copernicus.enabled is False

    def test_empty_file(self, tmp_path):
        """An empty YAML document is the same as no file"""
        path = tmp_path / "params.yaml"
        path.write_text("")
        assert load_config(str(path), env={}) == ImageryConfig()

    def test_sample_config_loads(self):
        """The shipped config/params.yaml parses"""
        cfg = load_config(os.path.join(project_root, "config", "params.yaml"), env={})
        assert cfg.gibs.base_url == GibsConfig().base_url
        assert cfg.copernicus.token_url == CopernicusConfig().token_url
        assert cfg.nasa.base_url == NasaEarthConfig().base_url

    def test_configs_are_frozen(self):
        """Config structs are read-only after startup"""
        with pytest.raises(AttributeError):
            NasaEarthConfig().api_key = "x"  # type: ignore[misc]

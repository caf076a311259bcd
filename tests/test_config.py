"""
Tests for centralized configuration module.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from clipforge import config
from clipforge.config import (
    CacheConfig,
    PathConfig,
    RenderConfig,
    Settings,
    get_settings,
    reload_settings,
)
from clipforge.exceptions import ConfigurationError


class TestPathConfig:
    """Tests for PathConfig."""

    def test_default_paths(self):
        """Default paths are relative to the working directory."""
        with patch.dict(os.environ, {}, clear=True):
            paths = PathConfig()
            assert paths.cache_dir == Path(".clipforge/cache")
            assert paths.output_dir == Path(".clipforge/output")

    def test_custom_paths_from_env(self):
        with patch.dict(os.environ, {"CLIPFORGE_CACHE_DIR": "/custom/cache", "CLIPFORGE_OUTPUT_DIR": "/custom/out"}):
            paths = PathConfig()
            assert paths.cache_dir == Path("/custom/cache")
            assert paths.output_dir == Path("/custom/out")

    def test_ensure_directories(self, tmp_path):
        paths = PathConfig(cache_dir=tmp_path / "c", output_dir=tmp_path / "o")
        paths.ensure_directories()
        assert (tmp_path / "c").is_dir()
        assert (tmp_path / "o").is_dir()


class TestCacheConfig:

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cache = CacheConfig()
            assert cache.enabled is True
            assert cache.ttl_hours == 0

    def test_disabled_from_env(self):
        with patch.dict(os.environ, {"CLIPFORGE_CACHE": "false", "CLIPFORGE_CACHE_TTL_HOURS": "12"}):
            cache = CacheConfig()
            assert cache.enabled is False
            assert cache.ttl_hours == 12.0


class TestRenderConfig:

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            render = RenderConfig()
            assert render.mode == "default"
            assert (render.width, render.height, render.fps) == (1080, 1920, 30.0)
            assert render.default_clip_duration == 3.0

    def test_mode_is_lowercased(self):
        with patch.dict(os.environ, {"CLIPFORGE_MODE": "PREVIEW"}):
            assert RenderConfig().mode == "preview"


class TestSettingsValidation:

    @pytest.mark.parametrize("var,value", [
        ("CLIPFORGE_MODE", "turbo"),
        ("CLIPFORGE_EXPORT_FORMAT", "edl"),
        ("CLIPFORGE_FPS", "0"),
    ])
    def test_invalid_values(self, var, value):
        with patch.dict(os.environ, {var: value}):
            with pytest.raises(ConfigurationError):
                Settings()

    def test_valid_overrides(self):
        with patch.dict(os.environ, {"CLIPFORGE_EXPORT_FORMAT": "interchange-xml", "CLIPFORGE_FPS": "25"}):
            settings = Settings()
            assert settings.export.default_format == "interchange-xml"
            assert settings.render.fps == 25.0


class TestGlobalSettings:

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reload_picks_up_env(self, monkeypatch):
        monkeypatch.setenv("CLIPFORGE_PROJECT_NAME", "Harbour")
        settings = reload_settings()
        assert settings.export.project_name == "Harbour"
        assert config.get_settings() is settings

    def test_settings_reload_returns_fresh_instance(self):
        settings = get_settings()
        assert settings.reload() is not settings

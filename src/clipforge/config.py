"""
Centralized Configuration for ClipForge

Single source of truth for cache locations, render defaults, placeholder
settings and export defaults. Every value can be overridden through an
environment variable.

Usage:
    from clipforge.config import get_settings

    settings = get_settings()
    cache_dir = settings.paths.cache_dir
    if settings.cache.enabled:
        ...
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError

VALID_MODES = ("strict", "default", "preview")
VALID_FORMATS = ("interchange-json", "interchange-xml")


# =============================================================================
# Path Configuration
# =============================================================================
@dataclass
class PathConfig:
    """Filesystem locations used by an export run."""

    cache_dir: Path = field(default_factory=lambda: Path(os.environ.get("CLIPFORGE_CACHE_DIR", ".clipforge/cache")))
    output_dir: Path = field(default_factory=lambda: Path(os.environ.get("CLIPFORGE_OUTPUT_DIR", ".clipforge/output")))

    def ensure_directories(self) -> None:
        """Create all directories if they don't exist."""
        for path in [self.cache_dir, self.output_dir]:
            path.mkdir(parents=True, exist_ok=True)


# =============================================================================
# Cache Configuration
# =============================================================================
@dataclass
class CacheConfig:
    """Content-addressed cache behaviour."""

    enabled: bool = field(default_factory=lambda: os.environ.get("CLIPFORGE_CACHE", "true").lower() == "true")
    # 0 disables expiry
    ttl_hours: float = field(default_factory=lambda: float(os.environ.get("CLIPFORGE_CACHE_TTL_HOURS", "0")))


# =============================================================================
# Render Configuration
# =============================================================================
@dataclass
class RenderConfig:
    """Defaults applied while walking a composition."""

    mode: str = field(default_factory=lambda: os.environ.get("CLIPFORGE_MODE", "default").lower())
    width: int = field(default_factory=lambda: int(os.environ.get("CLIPFORGE_WIDTH", "1080")))
    height: int = field(default_factory=lambda: int(os.environ.get("CLIPFORGE_HEIGHT", "1920")))
    fps: float = field(default_factory=lambda: float(os.environ.get("CLIPFORGE_FPS", "30")))

    # Fallback for duration="auto" when no child media has an intrinsic duration
    default_clip_duration: float = field(default_factory=lambda: float(os.environ.get("CLIPFORGE_DEFAULT_CLIP_DURATION", "3.0")))
    default_transition: str = "fade"
    default_transition_duration: float = 0.5


# =============================================================================
# Placeholder Configuration
# =============================================================================
@dataclass
class PlaceholderConfig:
    """Synthetic media used in preview mode and on provider failure."""

    duration: float = field(default_factory=lambda: float(os.environ.get("CLIPFORGE_PLACEHOLDER_DURATION", "3.0")))
    ffmpeg_binary: str = field(default_factory=lambda: os.environ.get("FFMPEG_BINARY", "ffmpeg"))
    font_path: Optional[str] = field(default_factory=lambda: os.environ.get("CLIPFORGE_FONT") or None)


# =============================================================================
# Export Configuration
# =============================================================================
@dataclass
class ExportConfig:
    default_format: str = field(default_factory=lambda: os.environ.get("CLIPFORGE_EXPORT_FORMAT", "interchange-json"))
    project_name: str = field(default_factory=lambda: os.environ.get("CLIPFORGE_PROJECT_NAME", "ClipForge"))


# =============================================================================
# Main Settings Class
# =============================================================================
@dataclass
class Settings:
    """
    Main configuration container.

    Usage:
        from clipforge.config import get_settings

        settings = get_settings()
        fps = settings.render.fps
        ttl = settings.cache.ttl_hours
    """

    paths: PathConfig = field(default_factory=PathConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    placeholder: PlaceholderConfig = field(default_factory=PlaceholderConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    def __post_init__(self):
        if isinstance(self.paths.cache_dir, str):
            self.paths.cache_dir = Path(self.paths.cache_dir)
        if self.render.mode not in VALID_MODES:
            raise ConfigurationError(
                f"CLIPFORGE_MODE must be one of {', '.join(VALID_MODES)}, got '{self.render.mode}'"
            )
        if self.export.default_format not in VALID_FORMATS:
            raise ConfigurationError(
                f"CLIPFORGE_EXPORT_FORMAT must be one of {', '.join(VALID_FORMATS)}, "
                f"got '{self.export.default_format}'"
            )
        if self.render.fps <= 0:
            raise ConfigurationError(f"CLIPFORGE_FPS must be positive, got {self.render.fps}")

    def reload(self) -> "Settings":
        """Reload settings from environment (useful after env changes)."""
        return Settings()


# =============================================================================
# Global Settings Instance
# =============================================================================
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (lazy initialization)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload of settings from environment."""
    global _settings
    _settings = Settings()
    return _settings

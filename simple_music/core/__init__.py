"""
Core module for simple-music.

Foundational components used by every other package:
    - exceptions: exception hierarchy
    - config: config.yaml / .env loading and validation
    - logger: console + file logging

file_manager and progress live here too but are imported directly, since
they depend on the catalog models and on rich respectively.

Usage:
    from simple_music.core import (
        Config, load_config,
        setup_logging, get_logger,
        SimpleMusicError, ConfigError,
    )
"""

from simple_music.core.config import (
    Config,
    FallbackConfig,
    FilenameConfig,
    LosslessConfig,
    OutputConfig,
    PlaybackConfig,
    RateLimitConfig,
    SpotifyConfig,
    load_config,
)
from simple_music.core.exceptions import (
    CatalogError,
    ConfigError,
    DownloadError,
    ManifestError,
    MetadataError,
    ProviderError,
    ResolverError,
    SimpleMusicError,
)
from simple_music.core.logger import (
    get_logger,
    log_acquisition_failure,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "SpotifyConfig",
    "OutputConfig",
    "PlaybackConfig",
    "FilenameConfig",
    "LosslessConfig",
    "RateLimitConfig",
    "FallbackConfig",
    "load_config",
    # Exceptions
    "SimpleMusicError",
    "ConfigError",
    "CatalogError",
    "ResolverError",
    "ManifestError",
    "ProviderError",
    "DownloadError",
    "MetadataError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_acquisition_failure",
    "shutdown_logging",
]

"""
simple-music: track acquisition and playback cache.

Given a song's metadata, find a playable source, download it, tag it and
hand a ready file back to a playback queue.

Architecture:
    Acquisition is layered leaf-first:

    lossless/rate_limiter  RateLimiter: per-provider call budget
    youtube/resolver       TrackResolver: YouTube Music candidates
    lossless/manifest      DASH manifest decoding
    lossless/engine        LosslessEngine: song.link -> Tidal / Deezer FLAC
    download/fallback      FallbackDownloader: yt-dlp
    download/tagger        MetadataTagger: mutagen tags + cover art
    core/file_manager      FileManager: cache and download paths
    download/orchestrator  SmartDownloadService: the acquisition policy
    player/controller      PlayerController: queue + just-in-time acquisition

Modules:
    core/       - Configuration, exceptions, logging, paths, progress bars
    catalog/    - Spotify catalog lookup (spotipy)
    youtube/    - YouTube Music search (ytmusicapi)
    lossless/   - FLAC providers
    download/   - Fallback download, tagging, orchestration, albums
    player/     - Playback queue
    cli.py      - Command-line interface

Usage:
    Command Line:
        simple-music search "Daft Punk One More Time"
        simple-music stream --title "One More Time" --artist "Daft Punk"
        simple-music album 2noRn2Aes5aoNVsU6iWThc

    Python API:
        from simple_music.core import load_config, setup_logging
        from simple_music.cli import build_service

        config = load_config()
        service = build_service(config)
        song = await service.cache_and_play(candidate, metadata)

Dependencies:
    - spotipy: Spotify catalog
    - ytmusicapi: YouTube Music search
    - aiohttp: provider HTTP
    - ffmpeg-python: DASH remux
    - yt-dlp: YouTube extraction
    - mutagen, requests, Pillow: tagging and cover art
    - pyyaml, python-dotenv: configuration
    - click, rich-click, rich, tqdm: command line output
"""

__version__ = "0.1.0"
__author__ = "simple-music"
__license__ = "MIT"

from simple_music.catalog import CatalogClient, TrackMetadata
from simple_music.core import (
    CatalogError,
    Config,
    ConfigError,
    DownloadError,
    ManifestError,
    MetadataError,
    ProviderError,
    ResolverError,
    SimpleMusicError,
    get_logger,
    load_config,
    setup_logging,
)
from simple_music.player import SongModel

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "setup_logging",
    "get_logger",
    # Exceptions
    "SimpleMusicError",
    "ConfigError",
    "CatalogError",
    "ResolverError",
    "ManifestError",
    "ProviderError",
    "DownloadError",
    "MetadataError",
    # Models
    "CatalogClient",
    "TrackMetadata",
    "SongModel",
]

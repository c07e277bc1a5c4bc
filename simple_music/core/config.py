"""
Configuration management for simple-music.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml. Every section is
optional; a missing config.yaml in the working directory yields the
defaults below.

Credentials can also come from the environment (or a .env file loaded
with python-dotenv). Environment values win over the file:
    SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET  -> spotify section
    QOBUZ_APP_ID                              -> lossless.qobuz_app_id
    SIMPLE_MUSIC_DOWNLOAD_DIR                 -> output.custom_download_path

Example config.yaml:
    spotify:
      client_id: "your_client_id_here"
      client_secret: "your_client_secret_here"

    output:
      downloads_directory: "~/Downloads"
      custom_download_path: null
      cache_directory: null         # system temp directory

    playback:
      streaming_quality: "high"     # standard | high | lossless

    filenames:
      filename_pattern: "{artist} - {title}"
      playlist_filename_pattern: "{playlist_index} - {artist} - {title}"

    lossless:
      qobuz_app_id: null
      ffmpeg_path: null
      request_timeout: 30
      estimate_missing_timeline: false

    rate_limit:
      calls_per_window: 9
      window_seconds: 60
      min_interval_seconds: 7
      backoff_seconds: 15

    fallback:
      backend: "auto"               # auto | subprocess | streaming
      yt_dlp_path: null
      ffmpeg_path: null
"""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from simple_music.core.exceptions import ConfigError


# Default configuration file name (looked up in current working directory)
CONFIG_FILENAME = "config.yaml"

STREAMING_QUALITIES = ("standard", "high", "lossless")
FALLBACK_BACKENDS = ("auto", "subprocess", "streaming")
DEFAULT_FILENAME_PATTERN = "{artist} - {title}"


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify API credentials, used only for catalog lookups.

    Attributes:
        client_id: The Spotify application client ID, or None.
        client_secret: The Spotify application client secret, or None.
    """
    client_id: str | None = None
    client_secret: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class OutputConfig:
    """
    Filesystem locations.

    Attributes:
        downloads_directory: Parent of SimpleMusicDownloads/.
        custom_download_path: Used instead of the default download folder
                              when set AND the directory exists.
        cache_directory: Parent of SimpleMusicCache/. Defaults to the
                         system temp directory.
        logs_directory: Where setup_logging() creates logs/.
    """
    downloads_directory: Path
    custom_download_path: Path | None
    cache_directory: Path
    logs_directory: Path


@dataclass(frozen=True)
class PlaybackConfig:
    """
    Attributes:
        streaming_quality: 'standard', 'high' or 'lossless'. Lossless makes
                           the orchestrator try the lossless engine first.
    """
    streaming_quality: str = "high"


@dataclass(frozen=True)
class FilenameConfig:
    """
    Filename patterns for permanent downloads.

    Supported placeholders: {artist} {title} {album} {year} {track} {disc}
    {playlist_index} {date} {number}.
    """
    filename_pattern: str = DEFAULT_FILENAME_PATTERN
    playlist_filename_pattern: str = DEFAULT_FILENAME_PATTERN


@dataclass(frozen=True)
class LosslessConfig:
    """
    Lossless acquisition engine settings.

    Attributes:
        qobuz_app_id: App id for the informational Qobuz availability check.
                      The check is skipped when unset.
        ffmpeg_path: ffmpeg binary used to remux DASH segments. None means
                     'ffmpeg' from PATH.
        request_timeout: Per-request timeout in seconds for provider APIs.
        estimate_missing_timeline: When a SegmentTemplate has no timeline,
                                   guess a fixed segment count instead of
                                   failing.
    """
    qobuz_app_id: str | None = None
    ffmpeg_path: str | None = None
    request_timeout: int = 30
    estimate_missing_timeline: bool = False


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Cross-platform link service limits (per provider key).

    Attributes:
        calls_per_window: Maximum calls inside one rolling window.
        window_seconds: Rolling window length.
        min_interval_seconds: Minimum spacing between two consecutive calls.
        backoff_seconds: Sleep after an HTTP 429 before re-acquiring a slot.
    """
    calls_per_window: int = 9
    window_seconds: float = 60.0
    min_interval_seconds: float = 7.0
    backoff_seconds: float = 15.0


@dataclass(frozen=True)
class FallbackConfig:
    """
    Fallback (yt-dlp) acquisition settings.

    Attributes:
        backend: 'subprocess' runs the yt-dlp executable, 'streaming' extracts
                 in-process and streams the audio-only format, 'auto' picks
                 subprocess when both yt-dlp and ffmpeg executables exist.
        yt_dlp_path: Explicit yt-dlp executable.
        ffmpeg_path: Explicit ffmpeg executable (its directory is passed to
                     yt-dlp via --ffmpeg-location).
    """
    backend: str = "auto"
    yt_dlp_path: str | None = None
    ffmpeg_path: str | None = None


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable.

    Example:
        config = load_config()
        print(f"Cache root: {config.output.cache_directory}")
        print(f"Quality: {config.playback.streaming_quality}")
    """
    spotify: SpotifyConfig
    output: OutputConfig
    playback: PlaybackConfig
    filenames: FilenameConfig
    lossless: LosslessConfig
    rate_limit: RateLimitConfig
    fallback: FallbackConfig


def load_config(config_path: Path | None = None, use_env: bool = True) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to config file. If None, looks
                     for config.yaml in the current working directory and
                     falls back to defaults when it is absent.
        use_env: Load .env and apply environment overrides.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If an explicit config file is missing, the YAML is
                     invalid, or any field has an invalid value.

    Behavior:
        1. Locate config file (explicit path or CWD/config.yaml)
        2. Read and parse YAML content (empty file == all defaults)
        3. Apply environment overrides
        4. Parse every section with defaults
    """
    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        raw_config = _read_yaml(config_path)
    elif explicit:
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    if use_env:
        load_dotenv()
        raw_config = _apply_env_overrides(raw_config, os.environ)

    for section in ("spotify", "output", "playback", "filenames",
                    "lossless", "rate_limit", "fallback"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    return Config(
        spotify=_parse_spotify_config(raw_config.get("spotify")),
        output=_parse_output_config(raw_config.get("output")),
        playback=_parse_playback_config(raw_config.get("playback")),
        filenames=_parse_filename_config(raw_config.get("filenames")),
        lossless=_parse_lossless_config(raw_config.get("lossless")),
        rate_limit=_parse_rate_limit_config(raw_config.get("rate_limit")),
        fallback=_parse_fallback_config(raw_config.get("fallback")),
    )


def default_config() -> Config:
    """Return a Config with every section at its default."""
    return Config(
        spotify=SpotifyConfig(),
        output=_parse_output_config(None),
        playback=PlaybackConfig(),
        filenames=FilenameConfig(),
        lossless=LosslessConfig(),
        rate_limit=RateLimitConfig(),
        fallback=FallbackConfig(),
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )
    return raw_config


def _apply_env_overrides(
    raw_config: dict[str, Any],
    environ: Any
) -> dict[str, Any]:
    """
    Return a copy of raw_config with environment values merged in.

    Only non-empty variables override; sections are shallow-copied so the
    caller's dictionary is never mutated.
    """
    merged = {key: (dict(value) if isinstance(value, dict) else value)
              for key, value in raw_config.items()}

    overrides = {
        ("spotify", "client_id"): environ.get("SPOTIFY_CLIENT_ID"),
        ("spotify", "client_secret"): environ.get("SPOTIFY_CLIENT_SECRET"),
        ("lossless", "qobuz_app_id"): environ.get("QOBUZ_APP_ID"),
        ("output", "custom_download_path"): environ.get("SIMPLE_MUSIC_DOWNLOAD_DIR"),
    }
    for (section, key), value in overrides.items():
        if not value:
            continue
        current = merged.get(section)
        if not isinstance(current, dict):
            current = {}
            merged[section] = current
        current[key] = value
    return merged


def _optional_str(section: dict[str, Any], key: str, field: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(
            f"'{field}' must be a string or null",
            details={"field": field, "value": value}
        )
    return value


def _positive_number(
    section: dict[str, Any],
    key: str,
    field: str,
    default: float,
    integer: bool = False
) -> Any:
    value = section.get(key)
    if value is None:
        return default
    valid_types = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, valid_types) or value <= 0:
        kind = "a positive integer" if integer else "a positive number"
        raise ConfigError(
            f"'{field}' must be {kind}",
            details={"field": field, "value": value}
        )
    return value


def _parse_spotify_config(spotify_section: dict[str, Any] | None) -> SpotifyConfig:
    """
    Parse the optional spotify section.

    Raises:
        ConfigError: If only one of client_id / client_secret is given.
    """
    if not spotify_section:
        return SpotifyConfig()

    client_id = _optional_str(spotify_section, "client_id", "spotify.client_id")
    client_secret = _optional_str(spotify_section, "client_secret", "spotify.client_secret")

    if bool(client_id) != bool(client_secret):
        missing = "client_secret" if client_id else "client_id"
        raise ConfigError(
            f"Missing required field 'spotify.{missing}'",
            details={"field": f"spotify.{missing}"}
        )
    return SpotifyConfig(client_id=client_id, client_secret=client_secret)


def _parse_output_config(output_section: dict[str, Any] | None) -> OutputConfig:
    section = output_section or {}

    raw_downloads = _optional_str(section, "downloads_directory", "output.downloads_directory")
    downloads = (
        Path(raw_downloads).expanduser()
        if raw_downloads else Path.home() / "Downloads"
    )

    raw_custom = _optional_str(section, "custom_download_path", "output.custom_download_path")
    custom = Path(raw_custom).expanduser() if raw_custom else None

    raw_cache = _optional_str(section, "cache_directory", "output.cache_directory")
    cache = Path(raw_cache).expanduser() if raw_cache else Path(tempfile.gettempdir())

    raw_logs = _optional_str(section, "logs_directory", "output.logs_directory")
    logs = Path(raw_logs).expanduser() if raw_logs else downloads / "SimpleMusicDownloads"

    return OutputConfig(
        downloads_directory=downloads,
        custom_download_path=custom,
        cache_directory=cache,
        logs_directory=logs,
    )


def _parse_playback_config(playback_section: dict[str, Any] | None) -> PlaybackConfig:
    section = playback_section or {}
    quality = section.get("streaming_quality", "high")
    if quality not in STREAMING_QUALITIES:
        raise ConfigError(
            f"'playback.streaming_quality' must be one of {', '.join(STREAMING_QUALITIES)}",
            details={"field": "playback.streaming_quality", "value": quality}
        )
    return PlaybackConfig(streaming_quality=quality)


def _parse_filename_config(filename_section: dict[str, Any] | None) -> FilenameConfig:
    section = filename_section or {}
    pattern = _optional_str(section, "filename_pattern", "filenames.filename_pattern")
    playlist_pattern = _optional_str(
        section, "playlist_filename_pattern", "filenames.playlist_filename_pattern"
    )
    return FilenameConfig(
        filename_pattern=pattern or DEFAULT_FILENAME_PATTERN,
        playlist_filename_pattern=playlist_pattern or DEFAULT_FILENAME_PATTERN,
    )


def _parse_lossless_config(lossless_section: dict[str, Any] | None) -> LosslessConfig:
    section = lossless_section or {}

    estimate = section.get("estimate_missing_timeline", False)
    if not isinstance(estimate, bool):
        raise ConfigError(
            "'lossless.estimate_missing_timeline' must be true or false",
            details={"field": "lossless.estimate_missing_timeline", "value": estimate}
        )

    qobuz_app_id = section.get("qobuz_app_id")
    if qobuz_app_id is not None:
        qobuz_app_id = str(qobuz_app_id)

    return LosslessConfig(
        qobuz_app_id=qobuz_app_id,
        ffmpeg_path=_optional_str(section, "ffmpeg_path", "lossless.ffmpeg_path"),
        request_timeout=_positive_number(
            section, "request_timeout", "lossless.request_timeout", 30, integer=True
        ),
        estimate_missing_timeline=estimate,
    )


def _parse_rate_limit_config(rate_section: dict[str, Any] | None) -> RateLimitConfig:
    section = rate_section or {}
    return RateLimitConfig(
        calls_per_window=_positive_number(
            section, "calls_per_window", "rate_limit.calls_per_window", 9, integer=True
        ),
        window_seconds=_positive_number(
            section, "window_seconds", "rate_limit.window_seconds", 60.0
        ),
        min_interval_seconds=_positive_number(
            section, "min_interval_seconds", "rate_limit.min_interval_seconds", 7.0
        ),
        backoff_seconds=_positive_number(
            section, "backoff_seconds", "rate_limit.backoff_seconds", 15.0
        ),
    )


def _parse_fallback_config(fallback_section: dict[str, Any] | None) -> FallbackConfig:
    section = fallback_section or {}
    backend = section.get("backend", "auto")
    if backend not in FALLBACK_BACKENDS:
        raise ConfigError(
            f"'fallback.backend' must be one of {', '.join(FALLBACK_BACKENDS)}",
            details={"field": "fallback.backend", "value": backend}
        )
    return FallbackConfig(
        backend=backend,
        yt_dlp_path=_optional_str(section, "yt_dlp_path", "fallback.yt_dlp_path"),
        ffmpeg_path=_optional_str(section, "ffmpeg_path", "fallback.ffmpeg_path"),
    )

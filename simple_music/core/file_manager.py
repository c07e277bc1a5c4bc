"""
File layout for simple-music.

Architecture:
    {cache_root}/SimpleMusicCache/          # streaming cache (system temp by default)
    ├── Artist___Song_Title.mp3             # lossy: non-alphanumerics -> "_", max 50 chars
    └── Artist - Song Title.flac            # lossless: only illegal characters replaced

    {downloads_root}/SimpleMusicDownloads/  # permanent downloads
    ├── Artist - Song Title.mp3
    ├── Artist - Song Title.flac
    └── playlists/
        └── Album Title/
            └── 01 - Artist - Song Title.m4a

Cache paths are a pure function of the display name and quality, so the
playback queue can predict where a song WILL be before it is downloaded
and simply check whether the file exists. The filesystem is the only
record of what is cached.

Usage:
    fm = FileManager.from_config(config.output)
    path = fm.cache_path("Queen - Bohemian Rhapsody", quality="high")
"""

import re
from datetime import date
from pathlib import Path

from simple_music.catalog.models import TrackMetadata
from simple_music.core.config import OutputConfig
from simple_music.core.logger import get_logger


logger = get_logger(__name__)


CACHE_DIRNAME = "SimpleMusicCache"
DOWNLOADS_DIRNAME = "SimpleMusicDownloads"
PLAYLISTS_DIRNAME = "playlists"

# Characters that are invalid in filenames on Windows/macOS/Linux
_INVALID_CHARS_PATTERN = re.compile(r'[\\/:*?"<>|]')
_NON_ALNUM_PATTERN = re.compile(r"[^a-zA-Z0-9]")

_MAX_FILENAME_LENGTH = 200
_MAX_CACHE_NAME_LENGTH = 50


def sanitize_filename(name: str) -> str:
    """
    Replace characters that are illegal in filenames with underscores.

    Also truncates to _MAX_FILENAME_LENGTH and returns "Unknown" for empty
    input. Spaces and punctuation other than the illegal set are kept.
    """
    if not name:
        return "Unknown"

    result = _INVALID_CHARS_PATTERN.sub("_", name)
    if len(result) > _MAX_FILENAME_LENGTH:
        result = result[:_MAX_FILENAME_LENGTH]
    return result if result.strip() else "Unknown"


def sanitize_cache_name(name: str) -> str:
    """
    Cache-safe name for lossy files: every non-alphanumeric -> "_", then
    truncated to 50 characters.

    Example:
        "AC/DC - Back In Black" -> "AC_DC___Back_In_Black"
    """
    return _NON_ALNUM_PATTERN.sub("_", name)[:_MAX_CACHE_NAME_LENGTH]


class FileManager:
    """
    Computes every on-disk location and maintains the cache directory.

    Attributes:
        cache_dir: {cache_root}/SimpleMusicCache
        downloads_root: Parent of the default SimpleMusicDownloads folder.
        custom_download_path: Overrides the download folder when it exists.
    """

    def __init__(
        self,
        cache_root: Path,
        downloads_root: Path,
        custom_download_path: Path | None = None,
    ) -> None:
        self.cache_dir = cache_root / CACHE_DIRNAME
        self.downloads_root = downloads_root
        self.custom_download_path = custom_download_path
        self._filename_counter = 1

    @classmethod
    def from_config(cls, output: OutputConfig) -> "FileManager":
        return cls(
            cache_root=output.cache_directory,
            downloads_root=output.downloads_directory,
            custom_download_path=output.custom_download_path,
        )

    # =========================================================================
    # CACHE
    # =========================================================================

    def cache_path(self, display_name: str, quality: str = "high") -> Path:
        """
        Deterministic cache location for a song.

        Args:
            display_name: "Artist - Title".
            quality: 'lossless' selects the FLAC layout, anything else the
                     lossy MP3 layout.

        Returns:
            Path inside cache_dir (the directory is created, the file is not).
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        if quality == "lossless":
            return self.cache_dir / f"{sanitize_filename(display_name)}.flac"
        return self.cache_dir / f"{sanitize_cache_name(display_name)}.mp3"

    def clear_cache(self) -> int:
        """
        Delete every file in the cache directory.

        Files that cannot be removed (in use by the player, permissions) are
        skipped and logged.

        Returns:
            Number of files deleted.
        """
        if not self.cache_dir.exists():
            return 0

        deleted = 0
        for entry in self.cache_dir.iterdir():
            if not entry.is_file():
                continue
            try:
                entry.unlink()
                deleted += 1
            except OSError as e:
                logger.debug(f"Skipping locked cache file {entry.name}: {e}")
        logger.info(f"Cleared {deleted} cached files")
        return deleted

    def cache_size(self) -> int:
        """Total size of the cache directory in bytes."""
        if not self.cache_dir.exists():
            return 0
        return sum(f.stat().st_size for f in self.cache_dir.rglob("*") if f.is_file())

    def cache_size_label(self) -> str:
        """Cache size formatted like '12.3 MB'."""
        return f"{self.cache_size() / (1024 * 1024):.1f} MB"

    # =========================================================================
    # PERMANENT DOWNLOADS
    # =========================================================================

    @property
    def downloads_dir(self) -> Path:
        """Custom download folder when set and existing, else the default."""
        if self.custom_download_path is not None and self.custom_download_path.is_dir():
            return self.custom_download_path
        return self.downloads_root / DOWNLOADS_DIRNAME

    def download_path(self, filename: str, ext: str = "mp3") -> Path:
        """Permanent location for a single download; creates the folder."""
        directory = self.downloads_dir
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{sanitize_filename(filename)}.{ext}"

    def flac_download_path(self, filename: str) -> Path:
        return self.download_path(filename, ext="flac")

    def album_directory(self, album_title: str) -> Path:
        """SimpleMusicDownloads/playlists/{album}; created if missing."""
        directory = (
            self.downloads_root / DOWNLOADS_DIRNAME / PLAYLISTS_DIRNAME
            / sanitize_filename(album_title)
        )
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    # =========================================================================
    # FILENAME PATTERNS
    # =========================================================================

    def generate_filename(
        self,
        metadata: TrackMetadata,
        pattern: str,
        playlist_index: int | None = None,
    ) -> str:
        """
        Expand a filename pattern for a track.

        Placeholders:
            {artist} {title}
            {album}           'Unknown Album' when empty
            {year}            '0000' when unknown
            {track}           '0' when unknown
            {disc}            '1' when unknown
            {playlist_index}  zero-padded to 2 digits (00 when not given)
            {date}            today, YYYY-MM-DD
            {number}          running counter, zero-padded to 3 digits;
                              only advances when the pattern uses it

        The result is passed through sanitize_filename().

        Example:
            generate_filename(meta, "{playlist_index} - {artist} - {title}", 3)
            -> "03 - Queen - Bohemian Rhapsody"
        """
        if "{number}" in pattern:
            pattern = pattern.replace("{number}", f"{self._filename_counter:03d}")
            self._filename_counter += 1

        replacements = {
            "{artist}": metadata.artist,
            "{title}": metadata.title,
            "{album}": metadata.album or "Unknown Album",
            "{year}": metadata.year or "0000",
            "{track}": str(metadata.track_number) if metadata.track_number is not None else "0",
            "{disc}": str(metadata.disc_number) if metadata.disc_number is not None else "1",
            "{playlist_index}": f"{playlist_index or 0:02d}",
            "{date}": date.today().isoformat(),
        }
        filename = pattern
        for placeholder, value in replacements.items():
            filename = filename.replace(placeholder, value)
        return sanitize_filename(filename)

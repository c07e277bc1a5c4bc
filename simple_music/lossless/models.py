"""
Data models for lossless acquisition.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any


_TRACK_ID_PATTERN = re.compile(r"/track/(\d+)")


def extract_track_id(url: str | None) -> str | None:
    """Pull the numeric track ID out of a Tidal or Deezer track URL."""
    if not url:
        return None
    match = _TRACK_ID_PATTERN.search(url)
    return match.group(1) if match else None


@dataclass(frozen=True)
class StreamingLinks:
    """
    Per-platform URLs for one catalog track, as returned by song.link.

    Only lives for the duration of one acquisition.

    Attributes:
        spotify_id: The catalog ID the links were resolved for.
        deezer_url: Deezer track page, or None.
        tidal_url: Tidal track page, or None.
        amazon_url: Amazon Music page (informational only), or None.
    """
    spotify_id: str
    deezer_url: str | None = None
    tidal_url: str | None = None
    amazon_url: str | None = None

    @property
    def has_any(self) -> bool:
        return bool(self.deezer_url or self.tidal_url or self.amazon_url)

    @classmethod
    def from_songlink_response(cls, spotify_id: str, payload: dict[str, Any]) -> "StreamingLinks":
        """
        Build from a song.link /links response.

        Missing platforms stay None; payload["linksByPlatform"] is optional.
        """
        platforms = payload.get("linksByPlatform") or {}

        def url_for(platform: str) -> str | None:
            entry = platforms.get(platform)
            if isinstance(entry, dict):
                return entry.get("url") or None
            return None

        return cls(
            spotify_id=spotify_id,
            deezer_url=url_for("deezer"),
            tidal_url=url_for("tidal"),
            amazon_url=url_for("amazonMusic"),
        )


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class DeezerTrack:
    """
    The subset of the public Deezer track API the engine uses.

    Attributes:
        id: Deezer track ID.
        title, isrc, duration, track_position: Track fields.
        artist: artist.name.
        album: album.title.
        cover_url: album.cover_xl.
        release_date: YYYY-MM-DD string.
    """
    id: int
    title: str
    isrc: str = ""
    duration: int = 0
    track_position: int = 0
    artist: str = ""
    album: str = ""
    cover_url: str = ""
    release_date: str = ""

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "DeezerTrack":
        artist = payload.get("artist")
        album = payload.get("album")
        if not isinstance(artist, dict):
            artist = {}
        if not isinstance(album, dict):
            album = {}
        return cls(
            id=_as_int(payload.get("id")),
            title=str(payload.get("title") or ""),
            isrc=str(payload.get("isrc") or ""),
            duration=_as_int(payload.get("duration")),
            track_position=_as_int(payload.get("track_position")),
            artist=str(artist.get("name") or ""),
            album=str(album.get("title") or ""),
            cover_url=str(album.get("cover_xl") or ""),
            release_date=str(payload.get("release_date") or ""),
        )


@dataclass(frozen=True)
class AcquisitionResult:
    """
    Outcome of one lossless acquisition.

    Never partially populated: use succeeded() or failed().

    Attributes:
        success: Whether a file was produced.
        file_path: The produced file (success only).
        provider: Attempt label that delivered it ('tidal-hires', 'deezer',
                  'tidal-lossless').
        error: Failure reason (failure only).
    """
    success: bool
    file_path: Path | None = None
    provider: str | None = None
    error: str | None = None

    @classmethod
    def succeeded(cls, file_path: Path, provider: str) -> "AcquisitionResult":
        return cls(success=True, file_path=file_path, provider=provider)

    @classmethod
    def failed(cls, error: str) -> "AcquisitionResult":
        return cls(success=False, error=error)

"""
Track metadata model.

TrackMetadata is the input to every acquisition operation: it identifies
the song (title/artist/duration), optionally carries the identifiers that
unlock lossless providers (ISRC, Spotify ID), and carries the tag values
written into the finished file.
"""

from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class TrackMetadata:
    """
    Immutable description of a song.

    Attributes:
        title: Track title.
        artist: Primary artist (or comma-joined artists).
        album: Album title, may be empty.
        duration_seconds: Expected duration; 0 when unknown. Used to rank
                          search candidates.
        isrc: International Standard Recording Code, uppercase, or None.
        spotify_id: Spotify track ID; required by the lossless engine.
        album_art_url: Cover art URL, may be empty.
        year: Release year or full release date ("2019" / "2019-05-31").
        genre: Genre string, or None.
        track_number: Position on the album, or None.
        disc_number: Disc number, or None.

    Enrichment never mutates: with_enrichment() returns a new value.

    Example:
        meta = TrackMetadata(title="Song", artist="Artist", duration_seconds=210)
        meta = meta.with_enrichment(spotify_id="3n3Ppam7vgaVa1iaRUc9Lp")
    """

    title: str
    artist: str
    album: str = ""
    duration_seconds: int = 0
    isrc: str | None = None
    spotify_id: str | None = None
    album_art_url: str = ""
    year: str | None = None
    genre: str | None = None
    track_number: int | None = None
    disc_number: int | None = None

    @property
    def display_name(self) -> str:
        """'Artist - Title', the key used for cache filenames."""
        return f"{self.artist} - {self.title}"

    @property
    def spotify_url(self) -> str | None:
        if not self.spotify_id:
            return None
        return f"https://open.spotify.com/track/{self.spotify_id}"

    def with_enrichment(
        self,
        spotify_id: str | None = None,
        isrc: str | None = None,
        album_art_url: str | None = None,
        year: str | None = None,
    ) -> "TrackMetadata":
        """
        Return a copy with missing identifiers filled in.

        Values already present on this instance are kept; only empty fields
        are replaced.
        """
        return replace(
            self,
            spotify_id=self.spotify_id or spotify_id,
            isrc=self.isrc or (isrc.upper() if isrc else None),
            album_art_url=self.album_art_url or album_art_url or "",
            year=self.year or year,
        )

    @classmethod
    def from_spotify_track(
        cls,
        track_data: dict[str, Any],
        album_data: dict[str, Any] | None = None
    ) -> "TrackMetadata":
        """
        Build TrackMetadata from a Spotify track object.

        Args:
            track_data: A track object from the Web API (search item, track
                        endpoint or album track listing).
            album_data: Album object; album track listings omit the embedded
                        'album' key, so the caller passes the album here.

        Behavior:
            1. Join all artist names with ", "
            2. Take album name, cover (largest image first) and release date
               from the embedded album or album_data
            3. ISRC from external_ids, uppercased
            4. Duration from duration_ms, rounded down to seconds
        """
        artists = [a.get("name", "") for a in track_data.get("artists", []) if a.get("name")]
        album_info = track_data.get("album") or album_data or {}

        images = album_info.get("images") or []
        cover_url = images[0].get("url", "") if images else ""

        isrc = (track_data.get("external_ids") or {}).get("isrc")

        return cls(
            title=track_data.get("name", ""),
            artist=", ".join(artists) if artists else "Unknown Artist",
            album=album_info.get("name", ""),
            duration_seconds=int(track_data.get("duration_ms", 0)) // 1000,
            isrc=isrc.upper() if isrc else None,
            spotify_id=track_data.get("id"),
            album_art_url=cover_url,
            year=album_info.get("release_date") or None,
            track_number=track_data.get("track_number"),
            disc_number=track_data.get("disc_number"),
        )

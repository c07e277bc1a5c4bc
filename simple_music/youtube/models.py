"""
Data models for YouTube Music search results.
"""

from dataclasses import dataclass
from typing import Any


def _parse_duration(duration_str: str | None) -> int:
    """
    Parse a duration string to seconds.

    Examples:
        "3:33" -> 213
        "1:02:15" -> 3735
        None -> 0
    """
    if not duration_str:
        return 0

    try:
        parts = [int(part) for part in duration_str.split(":")]
    except (ValueError, TypeError, AttributeError):
        return 0

    if len(parts) == 2:
        minutes, seconds = parts
        return minutes * 60 + seconds
    if len(parts) == 3:
        hours, minutes, seconds = parts
        return hours * 3600 + minutes * 60 + seconds
    return 0


def _format_duration(seconds: int) -> str:
    """Inverse of _parse_duration for results that only carry seconds."""
    if seconds <= 0:
        return ""
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


@dataclass(frozen=True)
class CandidateMatch:
    """
    One playable search result.

    Attributes:
        title: Video/song title.
        artist: First credited artist (or channel name).
        duration: Display string "M:SS" / "H:MM:SS"; empty when unknown.
        url: Watch URL passed to the fallback engine.
        thumbnail_url: Largest thumbnail URL, may be empty.

    Example:
        match = CandidateMatch.from_ytmusic_result(result)
        print(f"{match.title} ({match.duration_seconds}s) {match.url}")
    """

    title: str
    artist: str
    duration: str
    url: str
    thumbnail_url: str = ""

    @property
    def duration_seconds(self) -> int:
        """Duration in seconds, 0 when the string is missing or malformed."""
        return _parse_duration(self.duration)

    @property
    def video_id(self) -> str:
        return self.url.rsplit("v=", 1)[-1] if "v=" in self.url else ""

    @classmethod
    def from_ytmusic_result(cls, result: dict[str, Any]) -> "CandidateMatch":
        """
        Create a CandidateMatch from a ytmusicapi search result.

        URL Format:
            - Songs: https://music.youtube.com/watch?v={id}
            - Videos and everything else: https://www.youtube.com/watch?v={id}

        Duration:
            ytmusicapi returns "duration" as a string and sometimes
            "duration_seconds" as an int; the string wins when present.
        """
        video_id = result.get("videoId") or ""
        if result.get("resultType") == "song":
            url = f"https://music.youtube.com/watch?v={video_id}"
        else:
            url = f"https://www.youtube.com/watch?v={video_id}"

        artists_data = result.get("artists") or []
        artist = ""
        if isinstance(artists_data, list):
            names = [a.get("name") for a in artists_data if isinstance(a, dict) and a.get("name")]
            artist = names[0] if names else ""

        duration = result.get("duration") or ""
        if not duration and result.get("duration_seconds"):
            try:
                duration = _format_duration(int(result["duration_seconds"]))
            except (ValueError, TypeError):
                duration = ""

        thumbnails = result.get("thumbnails") or []
        thumbnail_url = thumbnails[-1].get("url", "") if thumbnails else ""

        return cls(
            title=result.get("title") or "",
            artist=artist,
            duration=duration,
            url=url,
            thumbnail_url=thumbnail_url,
        )

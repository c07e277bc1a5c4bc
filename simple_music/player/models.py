"""
Data models for the playback queue.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from simple_music.catalog.models import TrackMetadata


class PlayerStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


class LoopMode(Enum):
    OFF = "off"
    ALL = "all"
    ONE = "one"

    def next(self) -> "LoopMode":
        """off -> all -> one -> off"""
        order = [LoopMode.OFF, LoopMode.ALL, LoopMode.ONE]
        return order[(order.index(self) + 1) % len(order)]


@dataclass(frozen=True)
class SongModel:
    """
    A queue entry.

    file_path is where the audio is (or is predicted to be); the file may
    not exist yet, which is what the queue's just-in-time acquisition
    deals with.

    Attributes:
        title, artist, album: Display metadata.
        file_path: Local audio file path.
        duration: Seconds, 0 when unknown.
        source_url: YouTube URL the file was (or will be) fetched from.
        online_art_url: Cover art URL.
        isrc: ISRC, carried along so re-acquisition can use it.
        spotify_id: Catalog ID, likewise.
    """
    title: str
    artist: str
    file_path: Path
    album: str = ""
    duration: float = 0.0
    source_url: str | None = None
    online_art_url: str | None = None
    isrc: str | None = None
    spotify_id: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title}"

    def to_metadata(self) -> TrackMetadata:
        return TrackMetadata(
            title=self.title,
            artist=self.artist,
            album=self.album,
            duration_seconds=int(self.duration),
            isrc=self.isrc,
            spotify_id=self.spotify_id,
            album_art_url=self.online_art_url or "",
        )

    def with_file_path(self, file_path: Path) -> "SongModel":
        return replace(self, file_path=file_path)

    def with_source_url(self, source_url: str | None) -> "SongModel":
        return replace(self, source_url=source_url)

    @classmethod
    def from_metadata(
        cls,
        metadata: TrackMetadata,
        file_path: Path,
        source_url: str | None = None,
    ) -> "SongModel":
        return cls(
            title=metadata.title,
            artist=metadata.artist,
            album=metadata.album,
            file_path=file_path,
            duration=float(metadata.duration_seconds),
            source_url=source_url,
            online_art_url=metadata.album_art_url or None,
            isrc=metadata.isrc,
            spotify_id=metadata.spotify_id,
        )


@dataclass
class PlaybackQueueState:
    """
    Mutable queue state, owned by PlayerController.

    Attributes:
        user_queue: "Play next" entries, consumed front first.
        playlist: Current context list (shuffled when shuffle is on).
        original_playlist: Unshuffled snapshot of the context list.
        playlist_index: Index into playlist, -1 when it is empty.
        loop_mode: OFF, ALL or ONE.
        shuffle: Whether playlist is a shuffled copy of original_playlist.
        current_song: The song loaded in the audio engine.
        is_playing: Engine state as last reported.
        position: Seconds into current_song.
        duration: Length of current_song as reported by the engine.
    """
    user_queue: list[SongModel] = field(default_factory=list)
    playlist: list[SongModel] = field(default_factory=list)
    original_playlist: list[SongModel] = field(default_factory=list)
    playlist_index: int = -1
    loop_mode: LoopMode = LoopMode.OFF
    shuffle: bool = False
    current_song: SongModel | None = None
    is_playing: bool = False
    position: float = 0.0
    duration: float = 0.0

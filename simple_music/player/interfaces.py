"""
Collaborators the player controller drives but does not implement.

AudioEngine renders sound; SongStore is the local library. Both are
structural protocols: any object with these methods works, which is how
the tests pass in simple fakes.
"""

from pathlib import Path
from typing import Protocol

from simple_music.player.models import SongModel


class AudioEngine(Protocol):
    """Playback backend. Events flow back through PlayerController.on_*."""

    async def play(self, song: SongModel) -> None: ...

    async def pause(self) -> None: ...

    async def resume(self) -> None: ...

    async def seek(self, seconds: float) -> None: ...

    def position(self) -> float: ...


class SongStore(Protocol):
    """Local song records keyed by file path."""

    def get_song_by_path(self, path: Path) -> SongModel | None: ...

    def save_songs(self, songs: list[SongModel]) -> None: ...

    def update_play_count(self, path: Path) -> None: ...

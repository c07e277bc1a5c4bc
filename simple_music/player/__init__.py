"""
Playback queue with just-in-time acquisition.

The audio engine and the song store are external; see interfaces.py.
"""

from simple_music.player.models import LoopMode, PlaybackQueueState, PlayerStatus, SongModel

__all__ = [
    "LoopMode",
    "PlaybackQueueState",
    "PlayerStatus",
    "SongModel",
]

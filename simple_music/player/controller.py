"""
Playback queue with just-in-time acquisition.

Queue Model:
    user_queue          "play next" entries; always drained first (FIFO)
    playlist            current context (album, search results, ...)
    original_playlist   the context in its unshuffled order

    With shuffle on, playlist is a shuffled copy of original_playlist with
    the song that was playing when shuffle was applied pinned at index 0.
    Turning shuffle off restores original_playlist and finds the current
    song in it by path.

JIT Acquisition:
    Queue entries point at files that may not exist (cache cleared, online
    search results). Before a song is handed to the audio engine:

        file exists?  -> play it
        otherwise     -> await service.cache_song(...)
                         predicted cache path exists? -> rebind and play
                         otherwise                    -> skip to the next entry

    Skipping is bounded by the number of queued entries, so a queue where
    nothing can be acquired ends paused instead of spinning.

Preloading:
    After every transition the next entry (user queue first, then the
    playlist, wrapping in loop-all) and the previous playlist entry are
    cached in background tasks when their files are missing. Errors in
    those tasks are logged and dropped.

Play Counting:
    Position samples feed a listening-time accumulator. The first 2
    seconds after a song change are ignored and deltas outside (0, 5)
    seconds are treated as seeks. Once 60% of the duration has been
    listened to, the next session finalization records one play in the
    song store.
"""

import asyncio
import random
import time
from pathlib import Path
from typing import Callable

from simple_music.core.logger import get_logger
from simple_music.download.orchestrator import SmartDownloadService
from simple_music.player.interfaces import AudioEngine, SongStore
from simple_music.player.models import LoopMode, PlaybackQueueState, PlayerStatus, SongModel


logger = get_logger(__name__)


# =============================================================================
# TIMING
# =============================================================================

PLAY_COUNT_THRESHOLD = 0.60
SONG_CHANGE_GRACE_SECONDS = 2.0
MAX_POSITION_DELTA_SECONDS = 5.0
LOOP_ONE_MARGIN_SECONDS = 0.5
LOOP_ONE_LOCK_SECONDS = 1.0
RESTART_THRESHOLD_SECONDS = 3.0


class PlayerController:
    """
    Owns PlaybackQueueState; every mutation goes through these methods.

    Attributes:
        service: Acquisition service used for JIT and preloads.
        engine: Audio backend.
        store: Optional local song store (play counts, rebound paths).
        state: Current queue state.
    """

    def __init__(
        self,
        service: SmartDownloadService,
        engine: AudioEngine,
        store: SongStore | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.service = service
        self.engine = engine
        self.store = store
        self.state = PlaybackQueueState()
        self._clock = clock
        self._rng = rng or random.Random()

        self._loading = False
        self._is_handling_completion = False
        self._loop_locked_until = float("-inf")
        self._preload_tasks: set[asyncio.Task] = set()

        self._threshold_met = False
        self._session_logged = False
        self._last_log_position = 0.0
        self._seconds_listened = 0.0
        self._last_song_change = clock()

    @property
    def status(self) -> PlayerStatus:
        if self._loading:
            return PlayerStatus.LOADING
        if self.state.current_song is None:
            return PlayerStatus.IDLE
        return PlayerStatus.PLAYING if self.state.is_playing else PlayerStatus.PAUSED

    @property
    def seconds_listened(self) -> float:
        return self._seconds_listened

    @property
    def threshold_met(self) -> bool:
        return self._threshold_met

    # =========================================================================
    # PLAY SELECTION
    # =========================================================================

    async def play_song(
        self,
        song: SongModel,
        new_queue: list[SongModel] | None = None,
        skip_finalize: bool = False,
        force_reload: bool = False,
    ) -> bool:
        """
        Play a song, optionally replacing the playlist context.

        Args:
            song: Song to play.
            new_queue: New context list; song should be one of its entries.
            skip_finalize: Do not close the current play session first
                           (used when the "new" song continues the old one).
            force_reload: Reload the engine even if song is already loaded.

        Returns:
            True if something is playing afterwards.
        """
        if not skip_finalize:
            self.finalize_play_session()
        self._start_new_session()

        state = self.state
        if new_queue is not None:
            if state.shuffle:
                state.playlist = self._shuffled_with_first(new_queue, song)
                state.original_playlist = list(new_queue)
                state.playlist_index = 0
            else:
                state.playlist = list(new_queue)
                state.original_playlist = list(new_queue)
                state.playlist_index = self._index_of(state.playlist, song)
        else:
            state.playlist_index = self._index_of(state.playlist, song)

        if state.playlist_index == -1 and state.playlist:
            state.playlist_index = 0

        ready = await self._ensure_file(song)
        if ready is None:
            logger.warning(f"Skipping {song.display_name}: no playable file")
            if state.user_queue or state.playlist:
                return await self.play_next(auto_play=True)
            return False

        current = state.current_song
        if current is not None and current.file_path == ready.file_path and not force_reload:
            await self.engine.seek(0)
            if not state.is_playing:
                await self.engine.resume()
                state.is_playing = True
        else:
            await self._start_playback(ready)

        self._preload_neighbors()
        return True

    async def play_next(self, auto_play: bool = False) -> bool:
        """
        Advance to the next entry (user queue first).

        Args:
            auto_play: True when called by the player itself (track ended,
                       JIT skip); the session was already finalized then.

        Returns:
            True if a song started, False at the end of the queue.
        """
        if not auto_play:
            self.finalize_play_session()
        self._start_new_session()

        state = self.state
        if not state.user_queue and not state.playlist:
            return False

        attempts = len(state.user_queue) + len(state.playlist)
        for _ in range(attempts):
            song = self._take_next()
            if song is None:
                logger.debug("End of queue")
                state.is_playing = False
                await self.engine.pause()
                return False

            ready = await self._ensure_file(song)
            if ready is not None:
                await self._start_playback(ready)
                self._preload_neighbors()
                return True
            logger.warning(f"Skipping {song.display_name}: no playable file")

        logger.error("No entry in the queue could be acquired")
        state.is_playing = False
        await self.engine.pause()
        return False

    async def play_previous(self) -> bool:
        """
        Restart the current song if more than 3 seconds in, else go back.

        At the start of the playlist the current song restarts unless loop
        mode is ALL, which wraps to the last entry.
        """
        if self.engine.position() > RESTART_THRESHOLD_SECONDS:
            await self.seek(0)
            return True

        self.finalize_play_session()
        self._start_new_session()

        state = self.state
        if not state.playlist:
            return False
        if state.playlist_index > 0:
            state.playlist_index -= 1
        elif state.loop_mode is LoopMode.ALL:
            state.playlist_index = len(state.playlist) - 1
        else:
            await self.seek(0)
            return True

        previous = state.playlist[state.playlist_index]
        ready = await self._ensure_file(previous)
        if ready is None:
            logger.warning(f"Skipping {previous.display_name}: no playable file")
            return await self.play_next(auto_play=True)

        await self._start_playback(ready)
        self._preload_neighbors()
        return True

    async def play_priority_song(self, song: SongModel) -> bool:
        """Play a user-queue entry immediately, removing it from the queue."""
        self.finalize_play_session()
        self._start_new_session()

        if song in self.state.user_queue:
            self.state.user_queue.remove(song)

        ready = await self._ensure_file(song)
        if ready is None:
            logger.warning(f"Skipping {song.display_name}: no playable file")
            return await self.play_next(auto_play=True)

        await self._start_playback(ready)
        self._preload_neighbors()
        return True

    async def play_random(self, new_queue: list[SongModel]) -> bool:
        """Turn shuffle on and start a random song of new_queue."""
        if not new_queue:
            return False
        self.finalize_play_session()
        self.state.shuffle = True
        song = self._rng.choice(new_queue)
        return await self.play_song(song, new_queue=new_queue, skip_finalize=True)

    async def swap_current_song_version(self, new_url: str) -> bool:
        """
        Replace the current song's audio with another YouTube candidate.

        The current file is deleted so the replay goes through JIT with the
        new URL. Metadata and art are kept.
        """
        song = self.state.current_song
        if song is None:
            return False

        logger.info(f"Swapping version of {song.display_name} to {new_url}")
        await self.engine.pause()
        self.state.is_playing = False

        try:
            song.file_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete {song.file_path}: {e}")

        updated = song.with_source_url(new_url)
        self._replace_entry(song, updated)
        self.state.current_song = updated
        return await self.play_song(updated, skip_finalize=True, force_reload=True)

    # =========================================================================
    # QUEUE EDITING
    # =========================================================================

    def insert_song_next(self, song: SongModel) -> None:
        """Append to the user queue and start caching it right away."""
        self.state.user_queue.append(song)
        if not song.file_path.exists():
            logger.debug(f"Play next: preloading {song.display_name}")
            self._spawn_preload(song)

    def add_to_queue(self, song: SongModel) -> None:
        self.state.user_queue.append(song)

    def reorder_user_queue(self, old_index: int, new_index: int) -> None:
        """
        Move a user-queue entry.

        new_index is the drop position counted before removal, as
        drag-and-drop lists report it.
        """
        queue = self.state.user_queue
        if old_index < new_index:
            new_index -= 1
        if not (0 <= old_index < len(queue) and 0 <= new_index < len(queue)):
            return
        queue.insert(new_index, queue.pop(old_index))

    def reorder_main_playlist(self, old_index: int, new_index: int) -> None:
        """Move a playlist entry; same index convention as reorder_user_queue()."""
        state = self.state
        if old_index < new_index:
            new_index -= 1
        if not (0 <= old_index < len(state.playlist) and 0 <= new_index < len(state.playlist)):
            return

        playlist = list(state.playlist)
        playlist.insert(new_index, playlist.pop(old_index))
        state.playlist = playlist
        if not state.shuffle:
            state.original_playlist = list(playlist)
        if state.current_song is not None:
            state.playlist_index = self._index_by_path(playlist, state.current_song.file_path)

    def toggle_shuffle(self) -> bool:
        """Flip shuffle; returns the new value."""
        state = self.state
        base = list(state.original_playlist or state.playlist)

        if not state.shuffle:
            if state.current_song is not None:
                shuffled = self._shuffled_with_first(base, state.current_song)
            else:
                shuffled = list(base)
                self._rng.shuffle(shuffled)
            state.shuffle = True
            state.playlist = shuffled
            state.original_playlist = base
            state.playlist_index = 0 if shuffled else -1
        else:
            state.shuffle = False
            state.playlist = list(base)
            state.original_playlist = base
            if state.current_song is not None:
                state.playlist_index = self._index_by_path(base, state.current_song.file_path)
            else:
                state.playlist_index = 0 if base else -1
        return state.shuffle

    def cycle_loop_mode(self) -> LoopMode:
        self.state.loop_mode = self.state.loop_mode.next()
        return self.state.loop_mode

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def toggle_play(self) -> None:
        if self.state.is_playing:
            await self.engine.pause()
            self.state.is_playing = False
        else:
            await self.engine.resume()
            self.state.is_playing = True

    async def seek(self, seconds: float) -> None:
        await self.engine.seek(seconds)
        self.state.position = seconds
        self._last_log_position = seconds

    # =========================================================================
    # ENGINE EVENTS
    # =========================================================================

    def on_duration(self, seconds: float) -> None:
        self.state.duration = seconds

    async def on_position(self, seconds: float) -> None:
        """Position sample from the engine: loop-one detection + play counting."""
        state = self.state
        state.position = seconds
        duration = state.duration

        if state.loop_mode is LoopMode.ONE and duration > 0:
            if seconds >= duration - LOOP_ONE_MARGIN_SECONDS:
                await self._force_loop_one()
                return

        if self._clock() - self._last_song_change < SONG_CHANGE_GRACE_SECONDS:
            return

        if state.current_song is not None and state.is_playing:
            delta = seconds - self._last_log_position
            if 0 < delta < MAX_POSITION_DELTA_SECONDS:
                self._seconds_listened += delta
            self._last_log_position = seconds

        if not self._session_logged and not self._threshold_met and duration > 0:
            if self._seconds_listened >= duration * PLAY_COUNT_THRESHOLD:
                self._threshold_met = True

    async def on_player_state(self, playing: bool, completed: bool = False) -> None:
        """
        Engine state change.

        A completion is handled once until the engine reports a
        non-completed state again.
        """
        if completed:
            if self._is_handling_completion:
                return
            self._is_handling_completion = True
            if self.state.loop_mode is LoopMode.ONE:
                await self._force_loop_one()
            else:
                self.finalize_play_session()
                await self.play_next(auto_play=True)
            return

        self._is_handling_completion = False
        self.state.is_playing = playing

    # =========================================================================
    # PLAY SESSIONS
    # =========================================================================

    def finalize_play_session(self) -> None:
        """Record one play for the current song if the threshold was met."""
        if self._session_logged or not self._threshold_met:
            return
        song = self.state.current_song
        if song is None:
            return
        if self.store is not None:
            self.store.update_play_count(song.file_path)
        logger.debug(f"Counted play of {song.display_name}")
        self._session_logged = True

    def _start_new_session(self, reset_time: bool = True) -> None:
        self._threshold_met = False
        self._session_logged = False
        self._last_log_position = 0.0
        self._seconds_listened = 0.0
        if reset_time:
            self._last_song_change = self._clock()
            self._loop_locked_until = float("-inf")

    async def _force_loop_one(self) -> None:
        now = self._clock()
        if now < self._loop_locked_until:
            return
        self._loop_locked_until = now + LOOP_ONE_LOCK_SECONDS

        self.finalize_play_session()
        self._start_new_session(reset_time=False)

        self.state.position = 0.0
        await self.engine.seek(0)
        if not self.state.is_playing:
            await self.engine.resume()
            self.state.is_playing = True

    # =========================================================================
    # JIT + PRELOAD
    # =========================================================================

    async def _ensure_file(self, song: SongModel) -> SongModel | None:
        """
        Return song with a path that exists, acquiring it if needed.

        Exactly one acquisition is attempted. None means the caller should
        move on.
        """
        if song.file_path.exists():
            return song

        logger.info(f"File missing for {song.display_name}, acquiring")
        metadata = song.to_metadata()
        self._loading = True
        try:
            await self.service.cache_song(metadata, youtube_url=song.source_url)
        except Exception as e:
            logger.error(f"Acquiring {song.display_name} failed: {type(e).__name__}: {e}")
            return None
        finally:
            self._loading = False

        cached = self.service.get_predicted_cache_path(metadata)
        if not cached.exists():
            return None

        rebound = song.with_file_path(cached)
        self._replace_entry(song, rebound)
        if self.store is not None:
            self.store.save_songs([rebound])
        logger.debug(f"Rebound {song.display_name} to {cached}")
        return rebound

    async def _start_playback(self, song: SongModel) -> None:
        self.state.current_song = song
        self.state.is_playing = True
        self.state.position = 0.0
        self._last_song_change = self._clock()
        await self.engine.play(song)

    def _preload_neighbors(self) -> None:
        for song in (self._peek_next(), self._peek_previous()):
            if song is not None and not song.file_path.exists():
                self._spawn_preload(song)

    def _spawn_preload(self, song: SongModel) -> None:
        task = asyncio.create_task(self._preload(song))
        self._preload_tasks.add(task)
        task.add_done_callback(self._preload_tasks.discard)

    async def _preload(self, song: SongModel) -> None:
        try:
            await self.service.cache_song(song.to_metadata(), youtube_url=song.source_url)
        except Exception as e:
            logger.warning(f"Preload of {song.display_name} failed: {e}")

    async def wait_for_preloads(self) -> None:
        """Wait until every background preload has finished."""
        while self._preload_tasks:
            await asyncio.gather(*list(self._preload_tasks), return_exceptions=True)

    # =========================================================================
    # QUEUE HELPERS
    # =========================================================================

    def _take_next(self) -> SongModel | None:
        state = self.state
        if state.user_queue:
            return state.user_queue.pop(0)
        if not state.playlist:
            return None

        next_index = state.playlist_index + 1
        if next_index >= len(state.playlist):
            if state.loop_mode is not LoopMode.ALL:
                return None
            next_index = 0
        state.playlist_index = next_index
        return state.playlist[next_index]

    def _peek_next(self) -> SongModel | None:
        state = self.state
        if state.user_queue:
            return state.user_queue[0]
        if not state.playlist:
            return None
        next_index = state.playlist_index + 1
        if next_index < len(state.playlist):
            return state.playlist[next_index]
        if state.loop_mode is LoopMode.ALL:
            return state.playlist[0]
        return None

    def _peek_previous(self) -> SongModel | None:
        state = self.state
        if not state.playlist:
            return None
        previous_index = state.playlist_index - 1
        if previous_index < 0:
            if state.loop_mode is not LoopMode.ALL:
                return None
            previous_index = len(state.playlist) - 1
        return state.playlist[previous_index]

    def _shuffled_with_first(self, songs: list[SongModel], first: SongModel) -> list[SongModel]:
        shuffled = list(songs)
        self._rng.shuffle(shuffled)
        if first in shuffled:
            shuffled.remove(first)
        else:
            shuffled = [s for s in shuffled if s.file_path != first.file_path]
        shuffled.insert(0, first)
        return shuffled

    def _replace_entry(self, old: SongModel, new: SongModel) -> None:
        state = self.state
        for songs in (state.playlist, state.original_playlist, state.user_queue):
            for i, entry in enumerate(songs):
                if entry == old:
                    songs[i] = new

    @staticmethod
    def _index_of(songs: list[SongModel], song: SongModel) -> int:
        if song in songs:
            return songs.index(song)
        return PlayerController._index_by_path(songs, song.file_path)

    @staticmethod
    def _index_by_path(songs: list[SongModel], path: Path) -> int:
        for i, entry in enumerate(songs):
            if entry.file_path == path:
                return i
        return -1

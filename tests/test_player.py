"""Tests for the playback queue controller"""

import random
from dataclasses import replace
from unittest.mock import AsyncMock, Mock

import pytest
from spotipy.oauth2 import SpotifyOauthError

from conftest import FakeClock
from simple_music.catalog.client import CatalogClient
from simple_music.core.config import PlaybackConfig
from simple_music.download.orchestrator import SmartDownloadService
from simple_music.lossless.models import AcquisitionResult
from simple_music.player.controller import PlayerController
from simple_music.player.models import LoopMode, PlayerStatus


class FakeEngine:
    """Records what the controller asked the audio backend to do."""

    def __init__(self) -> None:
        self.played = []
        self.seeks = []
        self.pauses = 0
        self.resumes = 0
        self.current_position = 0.0

    async def play(self, song):
        self.played.append(song)

    async def pause(self):
        self.pauses += 1

    async def resume(self):
        self.resumes += 1

    async def seek(self, seconds):
        self.seeks.append(seconds)

    def position(self):
        return self.current_position


class FakeService:
    """cache_song() succeeds only for display names listed in `available`."""

    def __init__(self, cache_dir, available=()) -> None:
        self.cache_dir = cache_dir
        self.available = set(available)
        self.cache_calls = []

    async def cache_song(self, metadata, youtube_url=None):
        self.cache_calls.append((metadata.display_name, youtube_url))
        if metadata.display_name not in self.available:
            return False
        path = self.get_predicted_cache_path(metadata)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"cached")
        return True

    def get_predicted_cache_path(self, metadata):
        return self.cache_dir / f"{metadata.display_name}.mp3"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def store():
    return Mock()


@pytest.fixture
def service(temp_dir):
    return FakeService(temp_dir / "cache")


@pytest.fixture
def player(service, engine, store, clock):
    return PlayerController(service, engine, store=store, clock=clock, rng=random.Random(7))


class TestPlaySong:
    """Selecting songs and the JIT path"""

    @pytest.mark.asyncio
    async def test_plays_existing_file(self, player, engine, make_song):
        a, b = make_song("a"), make_song("b")

        assert await player.play_song(b, new_queue=[a, b]) is True

        assert engine.played == [b]
        assert player.state.current_song == b
        assert player.state.playlist_index == 1
        assert player.status is PlayerStatus.PLAYING

    @pytest.mark.asyncio
    async def test_missing_file_acquired_once_and_rebound(self, player, engine, service, store, make_song):
        a, b = make_song("a", create=False), make_song("b")
        service.available.add(a.display_name)

        assert await player.play_song(a, new_queue=[a, b]) is True

        assert service.cache_calls == [(a.display_name, None)]
        rebound = engine.played[0]
        assert rebound.file_path == service.cache_dir / "Artist - a.mp3"
        assert player.state.playlist[0] == rebound
        assert player.state.original_playlist[0] == rebound
        store.save_songs.assert_called_once_with([rebound])

    @pytest.mark.asyncio
    async def test_unacquirable_song_is_skipped(self, player, engine, service, make_song):
        a, b = make_song("a", create=False), make_song("b")

        assert await player.play_song(a, new_queue=[a, b]) is True

        assert service.cache_calls[0] == (a.display_name, None)
        assert engine.played == [b]
        assert player.state.playlist_index == 1
        await player.wait_for_preloads()

    @pytest.mark.asyncio
    async def test_nothing_acquirable_ends_paused(self, player, engine, service, make_song):
        a, b = make_song("a", create=False), make_song("b", create=False)

        assert await player.play_song(a, new_queue=[a, b]) is False

        assert [name for name, _ in service.cache_calls] == [a.display_name, b.display_name]
        assert engine.played == []
        assert engine.pauses == 1
        assert not player.state.is_playing

    @pytest.mark.asyncio
    async def test_same_song_restarts_instead_of_reloading(self, player, engine, make_song):
        a = make_song("a")
        await player.play_song(a, new_queue=[a])

        await player.play_song(a)

        assert engine.played == [a]
        assert engine.seeks == [0]

    @pytest.mark.asyncio
    async def test_neighbors_preloaded(self, player, service, make_song):
        a, b, c = make_song("a", create=False), make_song("b"), make_song("c", create=False)
        service.available.update({a.display_name, c.display_name})

        await player.play_song(b, new_queue=[a, b, c])
        await player.wait_for_preloads()

        assert sorted(name for name, _ in service.cache_calls) == [a.display_name, c.display_name]


class TestNavigation:

    @pytest.mark.asyncio
    async def test_user_queue_before_playlist(self, player, engine, make_song):
        a, b, queued = make_song("a"), make_song("b"), make_song("queued")
        await player.play_song(a, new_queue=[a, b])
        player.add_to_queue(queued)

        await player.play_next()

        assert engine.played[-1] == queued
        assert player.state.user_queue == []
        assert player.state.playlist_index == 0

    @pytest.mark.asyncio
    async def test_end_of_playlist(self, player, engine, make_song):
        a = make_song("a")
        await player.play_song(a, new_queue=[a])

        assert await player.play_next() is False
        assert engine.pauses == 1

    @pytest.mark.asyncio
    async def test_loop_all_wraps(self, player, engine, make_song):
        a, b = make_song("a"), make_song("b")
        await player.play_song(b, new_queue=[a, b])
        player.state.loop_mode = LoopMode.ALL

        assert await player.play_next() is True
        assert engine.played[-1] == a

    @pytest.mark.asyncio
    async def test_previous_restarts_after_three_seconds(self, player, engine, make_song):
        a, b = make_song("a"), make_song("b")
        await player.play_song(b, new_queue=[a, b])
        engine.current_position = 12.0

        await player.play_previous()

        assert engine.played == [b]
        assert engine.seeks == [0]

    @pytest.mark.asyncio
    async def test_previous_goes_back(self, player, engine, make_song):
        a, b = make_song("a"), make_song("b")
        await player.play_song(b, new_queue=[a, b])
        engine.current_position = 1.0

        await player.play_previous()

        assert engine.played[-1] == a
        assert player.state.playlist_index == 0

    @pytest.mark.asyncio
    async def test_previous_at_start_without_loop(self, player, engine, make_song):
        a, b = make_song("a"), make_song("b")
        await player.play_song(a, new_queue=[a, b])

        await player.play_previous()

        assert engine.played == [a]
        assert engine.seeks == [0]

    @pytest.mark.asyncio
    async def test_priority_song_removed_from_queue(self, player, engine, make_song):
        a, queued = make_song("a"), make_song("queued")
        await player.play_song(a, new_queue=[a])
        player.add_to_queue(queued)

        await player.play_priority_song(queued)

        assert engine.played[-1] == queued
        assert player.state.user_queue == []

    @pytest.mark.asyncio
    async def test_swap_version_reacquires_from_new_url(self, player, engine, service, make_song):
        a = make_song("a")
        service.available.add(a.display_name)
        await player.play_song(a, new_queue=[a])

        assert await player.swap_current_song_version("https://youtu.be/other") is True

        assert not a.file_path.exists()
        assert service.cache_calls == [(a.display_name, "https://youtu.be/other")]
        assert engine.played[-1].source_url == "https://youtu.be/other"
        assert player.state.playlist[0].source_url == "https://youtu.be/other"


class TestQueueEditing:

    def test_reorder_user_queue(self, player, make_song):
        a, b, c = make_song("a"), make_song("b"), make_song("c")
        player.state.user_queue = [a, b, c]

        player.reorder_user_queue(0, 3)
        assert player.state.user_queue == [b, c, a]

        player.reorder_user_queue(2, 0)
        assert player.state.user_queue == [a, b, c]

    def test_reorder_out_of_range_ignored(self, player, make_song):
        a, b = make_song("a"), make_song("b")
        player.state.user_queue = [a, b]
        player.reorder_user_queue(5, 0)
        assert player.state.user_queue == [a, b]

    @pytest.mark.asyncio
    async def test_reorder_playlist_tracks_current_song(self, player, make_song):
        a, b, c = make_song("a"), make_song("b"), make_song("c")
        await player.play_song(a, new_queue=[a, b, c])

        player.reorder_main_playlist(0, 3)

        assert player.state.playlist == [b, c, a]
        assert player.state.original_playlist == [b, c, a]
        assert player.state.playlist_index == 2

    @pytest.mark.asyncio
    async def test_insert_song_next_preloads_missing_file(self, player, service, make_song):
        song = make_song("later", create=False)

        player.insert_song_next(song)
        await player.wait_for_preloads()

        assert player.state.user_queue == [song]
        assert service.cache_calls == [(song.display_name, None)]

    def test_cycle_loop_mode(self, player):
        modes = [player.cycle_loop_mode() for _ in range(3)]
        assert modes == [LoopMode.ALL, LoopMode.ONE, LoopMode.OFF]


class TestShuffle:

    @pytest.mark.asyncio
    async def test_current_song_pinned_first(self, player, make_song):
        songs = [make_song(name) for name in "abcdef"]
        await player.play_song(songs[3], new_queue=songs)

        assert player.toggle_shuffle() is True

        assert player.state.playlist[0] == songs[3]
        assert sorted(s.title for s in player.state.playlist) == list("abcdef")
        assert player.state.original_playlist == songs
        assert player.state.playlist_index == 0

    @pytest.mark.asyncio
    async def test_unshuffle_restores_order_and_index(self, player, make_song):
        songs = [make_song(name) for name in "abcdef"]
        await player.play_song(songs[3], new_queue=songs)
        player.toggle_shuffle()

        assert player.toggle_shuffle() is False

        assert player.state.playlist == songs
        assert player.state.playlist_index == 3

    @pytest.mark.asyncio
    async def test_play_random_enables_shuffle(self, player, engine, make_song):
        songs = [make_song(name) for name in "abcd"]

        await player.play_random(songs)

        assert player.state.shuffle
        assert player.state.playlist[0] == engine.played[0]
        assert player.state.original_playlist == songs


class TestPlaybackEvents:
    """Loop-one, play counting, completion"""

    @pytest.mark.asyncio
    async def test_loop_one_restarts_once_per_lock_window(self, player, engine, clock, make_song):
        a = make_song("a")
        await player.play_song(a, new_queue=[a])
        player.state.loop_mode = LoopMode.ONE
        player.on_duration(100.0)

        await player.on_position(99.6)
        await player.on_position(99.8)
        assert engine.seeks == [0]

        clock.advance(1.5)
        await player.on_position(99.7)
        assert engine.seeks == [0, 0]

    @pytest.mark.asyncio
    async def test_play_counted_after_sixty_percent(self, player, store, clock, make_song):
        a, b = make_song("a"), make_song("b")
        await player.play_song(a, new_queue=[a, b])
        player.on_duration(10.0)
        clock.advance(3)

        for second in range(1, 8):
            await player.on_position(float(second))

        assert player.threshold_met
        await player.play_next()
        await player.play_next()
        store.update_play_count.assert_called_once_with(a.file_path)

    @pytest.mark.asyncio
    async def test_seeks_and_grace_period_not_counted(self, player, store, clock, make_song):
        a, b = make_song("a"), make_song("b")
        await player.play_song(a, new_queue=[a, b])
        player.on_duration(10.0)

        await player.on_position(1.0)
        clock.advance(3)
        await player.on_position(9.0)

        assert player.seconds_listened == 0
        assert not player.threshold_met
        await player.play_next()
        store.update_play_count.assert_not_called()

    @pytest.mark.asyncio
    async def test_completion_handled_once(self, player, engine, make_song):
        a, b, c = make_song("a"), make_song("b"), make_song("c")
        await player.play_song(a, new_queue=[a, b, c])

        await player.on_player_state(False, completed=True)
        await player.on_player_state(False, completed=True)
        assert engine.played == [a, b]

        await player.on_player_state(True)
        await player.on_player_state(False, completed=True)
        assert engine.played == [a, b, c]

    @pytest.mark.asyncio
    async def test_completion_in_loop_one_restarts(self, player, engine, make_song):
        a, b = make_song("a"), make_song("b")
        await player.play_song(a, new_queue=[a, b])
        player.state.loop_mode = LoopMode.ONE

        await player.on_player_state(False, completed=True)

        assert engine.played == [a]
        assert engine.seeks == [0]

    @pytest.mark.asyncio
    async def test_toggle_play(self, player, engine, make_song):
        a = make_song("a")
        await player.play_song(a, new_queue=[a])

        await player.toggle_play()
        assert player.status is PlayerStatus.PAUSED
        await player.toggle_play()
        assert engine.resumes == 1

    def test_idle_without_song(self, player):
        assert player.status is PlayerStatus.IDLE


class TestAcquisitionFailures:
    """JIT against the real acquisition service with failing providers"""

    def build_service(self, file_manager, config, catalog):
        resolver = Mock()
        resolver.find_best_matches = AsyncMock(return_value=[])
        lossless = Mock()
        lossless.acquire_lossless = AsyncMock(return_value=AcquisitionResult.failed("unused"))
        fallback = Mock()
        fallback.download = AsyncMock(side_effect=RuntimeError("extractor crashed"))
        return SmartDownloadService(
            resolver=resolver,
            lossless_engine=lossless,
            fallback=fallback,
            tagger=Mock(),
            file_manager=file_manager,
            config=replace(config, playback=PlaybackConfig(streaming_quality="lossless")),
            catalog=catalog,
        )

    @pytest.mark.asyncio
    async def test_catalog_auth_failure_skips_to_next(self, file_manager, config, engine, clock, make_song):
        spotify = Mock()
        spotify.search.side_effect = SpotifyOauthError("invalid_client")
        service = self.build_service(file_manager, config, CatalogClient(spotify))
        player = PlayerController(service, engine, store=Mock(), clock=clock)
        missing, following = make_song("missing", create=False), make_song("next")

        assert await player.play_song(missing, new_queue=[missing, following]) is True

        await player.wait_for_preloads()
        assert engine.played == [following]
        spotify.search.assert_called()

    @pytest.mark.asyncio
    async def test_unexpected_fallback_error_skips_to_next(self, file_manager, config, engine, clock, make_song):
        service = self.build_service(file_manager, config, catalog=None)
        player = PlayerController(service, engine, store=Mock(), clock=clock)
        missing = make_song("missing", create=False, source_url="https://youtu.be/x")
        following = make_song("next")

        assert await player.play_song(missing, new_queue=[missing, following]) is True

        await player.wait_for_preloads()
        assert engine.played == [following]
        service.fallback.download.assert_awaited()

    @pytest.mark.asyncio
    async def test_raising_service_does_not_break_playback(self, engine, clock, make_song):
        service = Mock()
        service.cache_song = AsyncMock(side_effect=KeyError("links"))
        player = PlayerController(service, engine, store=Mock(), clock=clock)
        missing, following = make_song("missing", create=False), make_song("next")

        assert await player.play_song(missing, new_queue=[missing, following]) is True

        await player.wait_for_preloads()
        assert engine.played == [following]
        service.get_predicted_cache_path.assert_not_called()

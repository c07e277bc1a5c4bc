"""Test configuration and fixtures"""

import json
import struct
import tempfile
from dataclasses import replace
from pathlib import Path

import pytest

from simple_music.catalog.models import TrackMetadata
from simple_music.core.config import default_config
from simple_music.core.file_manager import FileManager
from simple_music.player.models import SongModel


# =============================================================================
# FAKE HTTP
# =============================================================================

class FakeStreamReader:
    """Mimics aiohttp's response.content for iter_chunked()."""

    def __init__(self, body: bytes) -> None:
        self._body = body

    async def iter_chunked(self, size: int):
        for start in range(0, len(self._body), size):
            yield self._body[start:start + size]


class FakeResponse:
    """Minimal aiohttp ClientResponse stand-in, usable as an async context manager."""

    def __init__(self, status=200, json_data=None, text=None, body=b""):
        self.status = status
        self._json = json_data
        self._text = text
        self._body = body
        self.content_length = len(body) if body else None
        self.content = FakeStreamReader(body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        if self._json is None and (self._text is not None or self._body):
            return json.loads(await self.text())
        return self._json

    async def text(self):
        return self._text if self._text is not None else self._body.decode("utf-8")

    async def read(self):
        return self._body


class FakeSession:
    """
    aiohttp ClientSession stand-in routing GETs by URL substring.

    A route maps to a FakeResponse, an exception instance (raised from
    get()), or a list of those consumed in order (the last one repeats).
    """

    def __init__(self, routes: dict) -> None:
        self.routes = dict(routes)
        self.requests: list[str] = []
        self.request_kwargs: list[dict] = []
        self.closed = False

    def get(self, url, **kwargs):
        self.requests.append(url)
        self.request_kwargs.append(kwargs)
        for fragment, response in self.routes.items():
            if fragment not in url:
                continue
            if isinstance(response, list):
                response = response.pop(0) if len(response) > 1 else response[0]
            if isinstance(response, Exception):
                raise response
            return response
        return FakeResponse(status=404)

    async def close(self):
        self.closed = True


class FakeClock:
    """Hand-driven monotonic clock with an async sleep that advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def file_manager(temp_dir):
    return FileManager(cache_root=temp_dir / "tmp", downloads_root=temp_dir / "home")


@pytest.fixture
def config():
    """Default config with the album pattern most tests expect"""
    base = default_config()
    return replace(
        base,
        filenames=replace(base.filenames, playlist_filename_pattern="{playlist_index} - {artist} - {title}"),
    )


@pytest.fixture
def sample_metadata():
    return TrackMetadata(
        title="Bohemian Rhapsody",
        artist="Queen",
        album="A Night at the Opera",
        duration_seconds=354,
        isrc="GBUM71029604",
        spotify_id="4u7EnebtmKWzUH433cf5Qv",
        album_art_url="https://i.scdn.co/image/cover",
        year="1975-10-31",
    )


@pytest.fixture
def sample_track_data():
    """Spotify Web API track object"""
    return {
        "id": "4u7EnebtmKWzUH433cf5Qv",
        "name": "Bohemian Rhapsody",
        "artists": [{"id": "1dfeR4HaWDbWqFHLkxsg1d", "name": "Queen"}],
        "album": {
            "id": "1GbtB4zTqAsyfZEsm1RZfx",
            "name": "A Night at the Opera",
            "release_date": "1975-10-31",
            "images": [
                {"url": "https://i.scdn.co/image/large", "height": 640},
                {"url": "https://i.scdn.co/image/small", "height": 64},
            ],
        },
        "duration_ms": 354320,
        "external_ids": {"isrc": "gbum71029604"},
        "track_number": 11,
        "disc_number": 1,
    }


@pytest.fixture
def make_song(temp_dir):
    """Factory for queue entries; create=True writes the audio file."""
    library = temp_dir / "library"
    library.mkdir(parents=True, exist_ok=True)

    def _make(title: str, create: bool = True, **kwargs) -> SongModel:
        path = library / f"{title}.mp3"
        if create:
            path.write_bytes(b"audio")
        return SongModel(title=title, artist="Artist", file_path=path, duration=200.0, **kwargs)

    return _make


def minimal_flac_bytes() -> bytes:
    """A metadata-only FLAC file: marker plus a single STREAMINFO block."""
    streaminfo = (
        struct.pack(">HH", 4096, 4096)
        + b"\x00" * 6
        + struct.pack(">Q", (44100 << 44) | (1 << 41) | (15 << 36))
        + b"\x00" * 16
    )
    return b"fLaC" + bytes([0x80]) + len(streaminfo).to_bytes(3, "big") + streaminfo

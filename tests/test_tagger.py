"""Tests for tag writing"""

from io import BytesIO
from unittest.mock import Mock

import pytest
import requests
from mutagen.flac import FLAC
from PIL import Image

from conftest import minimal_flac_bytes
from simple_music.catalog.models import TrackMetadata
from simple_music.download.tagger import MetadataTagger, release_year


def png_bytes(size=(1200, 800)) -> bytes:
    buffer = BytesIO()
    Image.new("RGBA", size, (200, 30, 30, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def flac_file(temp_dir):
    path = temp_dir / "song.flac"
    path.write_bytes(minimal_flac_bytes())
    return path


@pytest.fixture
def art_session():
    session = Mock()
    session.get.return_value = Mock(content=png_bytes(), raise_for_status=Mock())
    return session


class TestReleaseYear:

    @pytest.mark.parametrize("value,expected", [
        ("2019-05-31", "2019"),
        ("1975", "1975"),
        ("", None),
        (None, None),
    ])
    def test_release_year(self, value, expected):
        assert release_year(value) == expected


class TestAlbumArt:

    def test_normalized_to_bounded_jpeg(self, art_session):
        art = MetadataTagger(session=art_session).fetch_album_art("https://i.scdn.co/image/cover")

        assert art[:2] == b"\xff\xd8"
        with Image.open(BytesIO(art)) as img:
            assert img.mode == "RGB"
            assert max(img.size) <= 1000

    def test_download_failure(self):
        session = Mock()
        session.get.side_effect = requests.ConnectionError("offline")
        assert MetadataTagger(session=session).fetch_album_art("https://x/cover.jpg") is None

    def test_undecodable_bytes_kept(self):
        session = Mock()
        session.get.return_value = Mock(content=b"not an image", raise_for_status=Mock())
        assert MetadataTagger(session=session).fetch_album_art("https://x/cover") == b"not an image"

    def test_no_url(self, art_session):
        assert MetadataTagger(session=art_session).fetch_album_art("") is None
        art_session.get.assert_not_called()


class TestTagging:

    def test_flac_vorbis_comments_and_picture(self, flac_file, sample_metadata, art_session):
        tagger = MetadataTagger(session=art_session)

        assert tagger.tag(flac_file, sample_metadata) is True

        audio = FLAC(flac_file)
        assert audio["title"] == ["Bohemian Rhapsody"]
        assert audio["artist"] == ["Queen"]
        assert audio["date"] == ["1975"]
        assert audio["isrc"] == ["GBUM71029604"]
        assert len(audio.pictures) == 1
        assert audio.pictures[0].mime == "image/jpeg"

    def test_read_tags(self, flac_file):
        tagger = MetadataTagger(session=Mock())
        tagger.tag(flac_file, TrackMetadata(title="Song", artist="Artist", album="Album", track_number=4))

        tags = tagger.read_tags(flac_file)

        assert tags["title"] == "Song"
        assert tags["album"] == "Album"
        assert tags["tracknumber"] == "4"

    def test_listeners_notified_after_write(self, flac_file):
        tagger = MetadataTagger(session=Mock())
        listener = Mock()
        tagger.add_invalidation_listener(listener)

        tagger.tag(flac_file, TrackMetadata(title="Song", artist="Artist"))
        tagger.remove_invalidation_listener(listener)
        tagger.tag(flac_file, TrackMetadata(title="Song", artist="Artist"))

        listener.assert_called_once_with(flac_file)

    def test_missing_file(self, temp_dir):
        assert MetadataTagger(session=Mock()).tag(temp_dir / "nope.mp3", TrackMetadata("a", "b")) is False

    def test_unsupported_format(self, temp_dir):
        path = temp_dir / "song.wav"
        path.write_bytes(b"RIFF")
        assert MetadataTagger(session=Mock()).tag(path, TrackMetadata("a", "b")) is False

    def test_corrupt_file_is_not_fatal(self, temp_dir):
        path = temp_dir / "song.flac"
        path.write_bytes(b"garbage")
        assert MetadataTagger(session=Mock()).tag(path, TrackMetadata("a", "b")) is False

"""Tests for the Spotify catalog client and track metadata"""

from unittest.mock import Mock

import pytest
import requests
import spotipy
from spotipy.oauth2 import SpotifyOauthError

from simple_music.catalog.client import CatalogClient
from simple_music.catalog.models import TrackMetadata
from simple_music.core.config import SpotifyConfig
from simple_music.core.exceptions import CatalogError


class TestTrackMetadata:

    def test_from_spotify_track(self, sample_track_data):
        metadata = TrackMetadata.from_spotify_track(sample_track_data)

        assert metadata.title == "Bohemian Rhapsody"
        assert metadata.artist == "Queen"
        assert metadata.album == "A Night at the Opera"
        assert metadata.duration_seconds == 354
        assert metadata.isrc == "GBUM71029604"
        assert metadata.album_art_url == "https://i.scdn.co/image/large"
        assert metadata.year == "1975-10-31"
        assert metadata.track_number == 11

    def test_album_listing_item_takes_album_from_argument(self, sample_track_data):
        item = dict(sample_track_data)
        album = item.pop("album")

        metadata = TrackMetadata.from_spotify_track(item, album_data=album)

        assert metadata.album == "A Night at the Opera"

    def test_multiple_artists_joined(self):
        data = {"name": "Song", "artists": [{"name": "A"}, {"name": "B"}], "duration_ms": 1000}
        assert TrackMetadata.from_spotify_track(data).artist == "A, B"

    def test_enrichment_keeps_existing_values(self):
        metadata = TrackMetadata(title="Song", artist="Artist", isrc="KEEP")

        enriched = metadata.with_enrichment(spotify_id="new", isrc="other", year="2020")

        assert enriched.spotify_id == "new"
        assert enriched.isrc == "KEEP"
        assert enriched.year == "2020"
        assert metadata.spotify_id is None

    def test_display_name_and_url(self, sample_metadata):
        assert sample_metadata.display_name == "Queen - Bohemian Rhapsody"
        assert sample_metadata.spotify_url == "https://open.spotify.com/track/4u7EnebtmKWzUH433cf5Qv"


class TestCatalogClient:

    def test_requires_credentials(self):
        with pytest.raises(CatalogError) as exc_info:
            CatalogClient.from_config(SpotifyConfig())
        assert exc_info.value.is_auth_error

    def test_search_metadata(self, sample_track_data):
        spotify = Mock()
        spotify.search.return_value = {"tracks": {"items": [sample_track_data]}}

        metadata = CatalogClient(spotify).search_metadata("Queen Bohemian Rhapsody")

        assert metadata.spotify_id == "4u7EnebtmKWzUH433cf5Qv"
        spotify.search.assert_called_once_with(q="Queen Bohemian Rhapsody", type="track", limit=1)

    def test_search_without_results(self):
        spotify = Mock()
        spotify.search.return_value = {"tracks": {"items": []}}
        assert CatalogClient(spotify).search_metadata("nothing") is None

    def test_search_auth_failure(self):
        spotify = Mock()
        spotify.search.side_effect = spotipy.SpotifyException(401, -1, "invalid token")

        with pytest.raises(CatalogError) as exc_info:
            CatalogClient(spotify).search_metadata("x")
        assert exc_info.value.is_auth_error

    def test_album_follows_pages(self, sample_track_data):
        album = {"name": "A Night at the Opera", "images": [{"url": "https://i.scdn.co/cover"}]}
        first_page = {"items": [dict(sample_track_data, name="One")], "next": "page2"}
        second_page = {"items": [dict(sample_track_data, name="Two")], "next": None}
        spotify = Mock()
        spotify.album.return_value = album
        spotify.album_tracks.return_value = first_page
        spotify.next.return_value = second_page

        listing = CatalogClient(spotify).album("1GbtB4zTqAsyfZEsm1RZfx")

        assert listing.title == "A Night at the Opera"
        assert listing.cover_url == "https://i.scdn.co/cover"
        assert [t.title for t in listing.tracks] == ["One", "Two"]
        spotify.next.assert_called_once_with(first_page)

    def test_search_oauth_failure(self):
        spotify = Mock()
        spotify.search.side_effect = SpotifyOauthError("invalid_client")

        with pytest.raises(CatalogError) as exc_info:
            CatalogClient(spotify).search_metadata("x")
        assert exc_info.value.is_auth_error

    def test_search_network_failure(self):
        spotify = Mock()
        spotify.search.side_effect = requests.ConnectionError("offline")

        with pytest.raises(CatalogError) as exc_info:
            CatalogClient(spotify).search_metadata("x")
        assert not exc_info.value.is_auth_error

    @pytest.mark.parametrize("error", [
        SpotifyOauthError("invalid_client"),
        requests.ConnectionError("offline"),
    ])
    def test_album_wraps_transport_errors(self, error):
        spotify = Mock()
        spotify.album.side_effect = error

        with pytest.raises(CatalogError):
            CatalogClient(spotify).album("1GbtB4zTqAsyfZEsm1RZfx")

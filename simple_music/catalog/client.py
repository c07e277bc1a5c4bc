"""
Spotify catalog client.

The catalog is used for two things:
    - enrichment: finding the Spotify ID / ISRC for a song that only has
      title and artist, so the lossless engine can resolve streaming links
    - album listings for the bulk album download

CatalogClient is a plain object constructed with credentials and passed
to the services that need it. spotipy is synchronous; async callers wrap
these methods in asyncio.to_thread().

Usage:
    client = CatalogClient.from_config(config.spotify)
    meta = client.search_metadata("Artist Song Title")
"""

from dataclasses import dataclass
from typing import Any

import requests
import spotipy
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOauthError

from simple_music.catalog.models import TrackMetadata
from simple_music.core.config import SpotifyConfig
from simple_music.core.exceptions import CatalogError
from simple_music.core.logger import get_logger


logger = get_logger(__name__)

ALBUM_PAGE_SIZE = 50


@dataclass(frozen=True)
class AlbumListing:
    """
    An album and its tracks in disc/track order.

    Attributes:
        album_id: Spotify album ID.
        title: Album title (also the download subdirectory name).
        cover_url: Largest cover image URL, or None.
        tracks: Tracks with album, cover and release date filled in.
    """
    album_id: str
    title: str
    cover_url: str | None
    tracks: tuple[TrackMetadata, ...]


class CatalogClient:
    """
    Thin wrapper over spotipy with client-credentials auth.

    Attributes:
        spotify: The underlying spotipy.Spotify instance.
    """

    def __init__(self, spotify: spotipy.Spotify) -> None:
        self.spotify = spotify

    @classmethod
    def from_config(cls, spotify_config: SpotifyConfig) -> "CatalogClient":
        """
        Create a client from the spotify config section.

        Raises:
            CatalogError: If no credentials are configured.
        """
        if not spotify_config.is_configured:
            raise CatalogError(
                "Spotify credentials are not configured "
                "(set spotify.client_id/client_secret or SPOTIFY_CLIENT_ID/SPOTIFY_CLIENT_SECRET)",
                is_auth_error=True
            )
        auth_manager = SpotifyClientCredentials(
            client_id=spotify_config.client_id,
            client_secret=spotify_config.client_secret,
        )
        return cls(spotipy.Spotify(auth_manager=auth_manager, retries=3))

    def search_metadata(self, query: str) -> TrackMetadata | None:
        """
        Return the first catalog track for a free-text query.

        Args:
            query: Usually "artist title".

        Returns:
            TrackMetadata of the top hit, or None when nothing matched.

        Raises:
            CatalogError: On authentication or API failures.
        """
        try:
            response = self.spotify.search(q=query, type="track", limit=1)
        except spotipy.SpotifyException as e:
            raise CatalogError(
                f"Catalog search failed: {e.msg}",
                details={"query": query, "status_code": e.http_status},
                is_auth_error=e.http_status in (400, 401),
            ) from e
        except SpotifyOauthError as e:
            raise CatalogError(
                f"Catalog authentication failed: {e}",
                details={"query": query},
                is_auth_error=True,
            ) from e
        except requests.RequestException as e:
            raise CatalogError(
                f"Catalog unreachable: {e}",
                details={"query": query},
            ) from e

        items = (response or {}).get("tracks", {}).get("items") or []
        if not items:
            logger.debug(f"Catalog search returned nothing for '{query}'")
            return None
        return TrackMetadata.from_spotify_track(items[0])

    def album(self, album_id: str) -> AlbumListing:
        """
        Fetch an album and all of its tracks.

        Album track listings are paginated; every page is followed.

        Raises:
            CatalogError: If the album cannot be fetched.
        """
        try:
            album_data = self.spotify.album(album_id)
            items: list[dict[str, Any]] = []
            page = self.spotify.album_tracks(album_id, limit=ALBUM_PAGE_SIZE)
            while page:
                items.extend(page.get("items") or [])
                page = self.spotify.next(page) if page.get("next") else None
        except spotipy.SpotifyException as e:
            raise CatalogError(
                f"Failed to fetch album: {e.msg}",
                details={"album_id": album_id, "status_code": e.http_status},
            ) from e
        except SpotifyOauthError as e:
            raise CatalogError(
                f"Catalog authentication failed: {e}",
                details={"album_id": album_id},
                is_auth_error=True,
            ) from e
        except requests.RequestException as e:
            raise CatalogError(
                f"Catalog unreachable: {e}",
                details={"album_id": album_id},
            ) from e

        images = album_data.get("images") or []
        tracks = tuple(
            TrackMetadata.from_spotify_track(item, album_data=album_data)
            for item in items
        )
        return AlbumListing(
            album_id=album_id,
            title=album_data.get("name", "Unknown Album"),
            cover_url=images[0].get("url") if images else None,
            tracks=tracks,
        )

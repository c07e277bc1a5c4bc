"""
Spotify catalog: track metadata and album listings.
"""

from simple_music.catalog.client import AlbumListing, CatalogClient
from simple_music.catalog.models import TrackMetadata

__all__ = [
    "AlbumListing",
    "CatalogClient",
    "TrackMetadata",
]

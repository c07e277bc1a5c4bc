"""
Acquisition policy: lossless first when configured, YouTube otherwise.

SmartDownloadService is the only entry point the player and the CLI use to
turn TrackMetadata into a local file. It composes:

    TrackResolver       YouTube Music candidates for a track
    LosslessEngine      song.link -> Tidal / Deezer FLAC
    FallbackDownloader  yt-dlp (subprocess or in-process streaming)
    MetadataTagger      tags + cover art after a download
    FileManager         every path decision

Operations:
    cache_and_play()   stream: lossless cache -> lossy cache -> fallback
    cache_song()       background preload, same policy, never raises
    download_flac()    lossless only (cache or permanent download folder)
    download_song()    manual permanent download of a chosen candidate

Failure Policy:
    Nothing below this class raises into the player. The lossless engine
    returns AcquisitionResult, the fallback returns bool, the resolver
    returns []. The only operation that raises is download_song(), because
    a manual download has a user waiting for the error message.
"""

import asyncio
from pathlib import Path
from typing import Callable

from simple_music.catalog.client import CatalogClient
from simple_music.catalog.models import TrackMetadata
from simple_music.core.config import Config
from simple_music.core.exceptions import CatalogError, DownloadError, SimpleMusicError
from simple_music.core.file_manager import FileManager
from simple_music.core.logger import (
    format_acquired_message,
    format_no_match_message,
    get_logger,
    log_acquisition_failure,
)
from simple_music.download.fallback import FallbackDownloader
from simple_music.download.tagger import MetadataTagger
from simple_music.lossless.engine import LosslessEngine
from simple_music.player.models import SongModel
from simple_music.youtube.models import CandidateMatch
from simple_music.youtube.resolver import (
    PRELOAD_TOLERANCE_SECONDS,
    TrackResolver,
    pick_closest,
)


logger = get_logger(__name__)

ProgressCallback = Callable[[float], None]

LOSSLESS_QUALITY = "lossless"
FALLBACK_AUDIO_FORMAT = "mp3"


def _ignore_progress(_: float) -> None:
    pass


class SmartDownloadService:
    """
    Composes resolver, engines, tagger and file layout into one policy.

    Attributes:
        resolver: YouTube Music candidate search.
        lossless: FLAC engine.
        fallback: yt-dlp based downloader.
        tagger: Tag writer.
        files: Path layout.
        config: Full application configuration.
        catalog: Optional Spotify client used to enrich tracks that have no
                 Spotify ID before a lossless attempt.
    """

    def __init__(
        self,
        resolver: TrackResolver,
        lossless_engine: LosslessEngine,
        fallback: FallbackDownloader,
        tagger: MetadataTagger,
        file_manager: FileManager,
        config: Config,
        catalog: CatalogClient | None = None,
    ) -> None:
        self.resolver = resolver
        self.lossless = lossless_engine
        self.fallback = fallback
        self.tagger = tagger
        self.files = file_manager
        self.config = config
        self.catalog = catalog

    @property
    def streaming_quality(self) -> str:
        return self.config.playback.streaming_quality

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def find_best_matches(self, metadata: TrackMetadata) -> list[CandidateMatch]:
        return await self.resolver.find_best_matches(metadata)

    # =========================================================================
    # STREAMING
    # =========================================================================

    async def cache_and_play(
        self,
        video: CandidateMatch,
        metadata: TrackMetadata,
        on_progress: ProgressCallback | None = None,
        streaming_quality: str | None = None,
    ) -> SongModel | None:
        """
        Make a chosen candidate playable as fast as possible.

        Args:
            video: Candidate the user picked (used by the fallback path).
            metadata: Track being played.
            on_progress: 0.0-1.0 transfer progress.
            streaming_quality: Overrides playback.streaming_quality.

        Returns:
            SongModel pointing at the cached file, or None if every path
            failed.

        Behavior:
            1. 'lossless': enrich with a Spotify ID if needed and try a
               FLAC into the cache. Success returns immediately.
            2. Lossy cache hit: return it without downloading.
            3. Fallback download of video.url into the lossy cache path.
            Streamed files are not tagged.
        """
        quality = streaming_quality or self.streaming_quality
        on_progress = on_progress or _ignore_progress

        if quality == LOSSLESS_QUALITY:
            enriched = await self.enrich_metadata(metadata)
            if self.can_download_flac(enriched):
                song = await self.download_flac(enriched, on_progress, is_streaming=True)
                if song is not None:
                    return song
            logger.info(f"FLAC unavailable for {metadata.display_name}, streaming from YouTube")

        cache_path = self.files.cache_path(metadata.display_name)
        if cache_path.exists():
            logger.debug(f"Cache hit: {cache_path.name}")
            return SongModel.from_metadata(metadata, cache_path, source_url=video.url)

        success = await self.fallback.download(
            video.url, cache_path, on_progress, audio_format=FALLBACK_AUDIO_FORMAT
        )
        if not success:
            log_acquisition_failure(
                logger, metadata.display_name, metadata.spotify_id,
                source="fallback", reason=f"Stream download failed for {video.url}",
            )
            return None

        logger.info(format_acquired_message(metadata.display_name, "youtube", cache_path))
        return SongModel.from_metadata(metadata, cache_path, source_url=video.url)

    async def cache_song(self, metadata: TrackMetadata, youtube_url: str | None = None) -> bool:
        """
        Background preload of a track into the cache.

        Follows the cache_and_play() policy, except that when no URL is
        given the resolver is asked and the first candidate within one
        second of the expected duration wins (else the top candidate).
        Successful fallback downloads are tagged.

        Returns:
            True if a cached file exists afterwards. Never raises.
        """
        try:
            return await self._cache_song(metadata, youtube_url)
        except (SimpleMusicError, OSError) as e:
            logger.warning(f"Preload failed for {metadata.display_name}: {e}")
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error caching {metadata.display_name}: {type(e).__name__}: {e}",
                exc_info=True,
            )
            return False

    async def _cache_song(self, metadata: TrackMetadata, youtube_url: str | None) -> bool:
        if self.streaming_quality == LOSSLESS_QUALITY:
            enriched = await self.enrich_metadata(metadata)
            if self.can_download_flac(enriched):
                song = await self.download_flac(enriched, _ignore_progress, is_streaming=True)
                if song is not None:
                    return True
            logger.debug(f"Preload: FLAC unavailable for {metadata.display_name}")

        cache_path = self.files.cache_path(metadata.display_name)
        if cache_path.exists():
            logger.debug(f"Preload: already cached {metadata.display_name}")
            return True

        target_url = youtube_url
        if not target_url:
            candidates = await self.resolver.find_best_matches(metadata)
            best = pick_closest(candidates, metadata.duration_seconds, PRELOAD_TOLERANCE_SECONDS)
            if best is None:
                logger.warning(format_no_match_message(metadata.display_name, "no YouTube candidates"))
                return False
            target_url = best.url

        success = await self.fallback.download(
            target_url, cache_path, _ignore_progress, audio_format=FALLBACK_AUDIO_FORMAT
        )
        if not success:
            log_acquisition_failure(
                logger, metadata.display_name, metadata.spotify_id,
                source="fallback", reason=f"Preload download failed for {target_url}",
            )
            return False

        await self.tag_file(cache_path, metadata)
        logger.debug(f"Preload: cached {metadata.display_name}")
        return True

    # =========================================================================
    # LOSSLESS
    # =========================================================================

    async def download_flac(
        self,
        metadata: TrackMetadata,
        on_progress: ProgressCallback | None = None,
        is_streaming: bool = False,
    ) -> SongModel | None:
        """
        Acquire a FLAC copy through the lossless engine.

        Args:
            metadata: Track; spotify_id is required.
            on_progress: 0.0-1.0 transfer progress.
            is_streaming: True writes into the cache (named after the
                          display name so the player can predict it),
                          False into the download folder using
                          filenames.filename_pattern.

        Returns:
            SongModel for the FLAC file, or None on failure.
        """
        if not self.can_download_flac(metadata):
            logger.debug(f"No Spotify ID for {metadata.display_name}, skipping FLAC")
            return None

        if is_streaming:
            output_path = self.files.cache_path(metadata.display_name, quality=LOSSLESS_QUALITY)
        else:
            output_path = self.files.flac_download_path(self.generate_filename(metadata))

        if output_path.exists():
            logger.debug(f"FLAC already present: {output_path}")
            return SongModel.from_metadata(metadata, output_path)

        result = await self.lossless.acquire_lossless(metadata, output_path, on_progress)
        if not result.success or result.file_path is None:
            log_acquisition_failure(
                logger, metadata.display_name, metadata.spotify_id,
                source="lossless", reason=result.error or "unknown error",
            )
            return None

        logger.info(format_acquired_message(metadata.display_name, result.provider or "lossless", result.file_path))
        await self.tag_file(result.file_path, metadata)
        return SongModel.from_metadata(metadata, result.file_path)

    def can_download_flac(self, metadata: TrackMetadata) -> bool:
        return bool(metadata.spotify_id)

    async def enrich_metadata(self, metadata: TrackMetadata) -> TrackMetadata:
        """Fill in spotify_id/isrc from the catalog when they are missing."""
        if metadata.spotify_id or self.catalog is None:
            return metadata

        query = f"{metadata.artist} {metadata.title}"
        try:
            found = await asyncio.to_thread(self.catalog.search_metadata, query)
        except CatalogError as e:
            logger.warning(f"Catalog lookup failed for {metadata.display_name}: {e}")
            return metadata

        if found is None:
            return metadata
        logger.debug(f"Catalog match for {metadata.display_name}: {found.spotify_id}")
        return metadata.with_enrichment(
            spotify_id=found.spotify_id,
            isrc=found.isrc,
            album_art_url=found.album_art_url,
            year=found.year,
        )

    # =========================================================================
    # PERMANENT DOWNLOADS
    # =========================================================================

    async def download_song(
        self,
        video: CandidateMatch,
        metadata: TrackMetadata,
        on_progress: ProgressCallback | None = None,
        audio_format: str = FALLBACK_AUDIO_FORMAT,
    ) -> SongModel:
        """
        Download a chosen candidate into the download folder and tag it.

        Raises:
            DownloadError: If the fallback engine did not produce the file.
        """
        filename = self.generate_filename(metadata)
        output_path = self.files.download_path(filename, ext=audio_format)

        success = await self.fallback.download(video.url, output_path, on_progress, audio_format=audio_format)
        if not success:
            raise DownloadError(
                f"Download failed for {metadata.display_name}",
                details={"url": video.url, "path": str(output_path)},
            )

        await self.tag_file(output_path, metadata)
        logger.info(format_acquired_message(metadata.display_name, "youtube", output_path))
        return SongModel.from_metadata(metadata, output_path, source_url=video.url)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def tag_file(self, file_path: Path, metadata: TrackMetadata) -> bool:
        return await asyncio.to_thread(self.tagger.tag, file_path, metadata)

    def generate_filename(
        self,
        metadata: TrackMetadata,
        pattern: str | None = None,
        playlist_index: int | None = None,
    ) -> str:
        return self.files.generate_filename(
            metadata,
            pattern or self.config.filenames.filename_pattern,
            playlist_index=playlist_index,
        )

    def get_predicted_cache_path(self, metadata: TrackMetadata) -> Path:
        """
        Where a track will be once cached.

        In lossless mode an existing FLAC cache file wins; otherwise the
        lossy cache path is returned whether or not the file exists yet.
        """
        if self.streaming_quality == LOSSLESS_QUALITY:
            flac_path = self.files.cache_path(metadata.display_name, quality=LOSSLESS_QUALITY)
            if flac_path.exists():
                return flac_path
        return self.files.cache_path(metadata.display_name)

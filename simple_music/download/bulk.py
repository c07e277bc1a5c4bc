"""
Album (bulk) download.

Downloads every track of an album sequentially into
SimpleMusicDownloads/playlists/{album}/ as tagged .m4a files named with
filenames.playlist_filename_pattern.

Only one bulk download runs at a time per service instance; a second call
while one is active returns immediately with empty stats.
"""

from dataclasses import dataclass, replace
from typing import Callable

from simple_music.catalog.models import TrackMetadata
from simple_music.core.logger import format_progress_message, get_logger, log_acquisition_failure
from simple_music.download.orchestrator import SmartDownloadService
from simple_music.youtube.resolver import pick_closest


logger = get_logger(__name__)

ALBUM_AUDIO_FORMAT = "m4a"

# "within 10 seconds", exclusive
ALBUM_MATCH_TOLERANCE_SECONDS = 9

STATUS_DOWNLOADING = "Downloading..."
STATUS_COMPLETED = "Completed"


@dataclass(frozen=True)
class DownloadProgress:
    """
    Snapshot reported after every track.

    Attributes:
        progress: Fraction of tracks processed, 0.0-1.0.
        status: "Downloading..." or "Completed".
        details: "x / total Songs Downloaded".
    """
    progress: float
    status: str
    details: str | None = None


@dataclass
class DownloadStats:
    """
    Statistics from an album download.

    Attributes:
        total: Tracks in the album.
        downloaded: Downloaded and tagged.
        failed: Download failed.
        no_match: No YouTube candidate found.
    """
    total: int = 0
    downloaded: int = 0
    failed: int = 0
    no_match: int = 0

    @property
    def success_rate(self) -> float:
        """Success rate as a percentage."""
        if self.total == 0:
            return 0.0
        return (self.downloaded / self.total) * 100


ProgressListener = Callable[[DownloadProgress], None]


class BulkDownloadService:
    """Sequential album downloader on top of SmartDownloadService."""

    def __init__(self, service: SmartDownloadService) -> None:
        self.service = service
        self._is_downloading = False

    @property
    def is_downloading(self) -> bool:
        return self._is_downloading

    async def download_album(
        self,
        album_title: str,
        songs: list[TrackMetadata],
        cover_url: str | None = None,
        on_progress: ProgressListener | None = None,
    ) -> DownloadStats:
        """
        Download an album track by track.

        Args:
            album_title: Folder name under playlists/.
            songs: Tracks in album order.
            cover_url: Album cover; preferred over per-track art so the
                       whole folder carries the same image.
            on_progress: Receives a DownloadProgress after each track.

        Returns:
            DownloadStats for the run.

        Behavior:
            For each track: resolve candidates, take the first within 10
            seconds of the expected duration (else the top one), download
            as m4a, tag. A failing track is counted and skipped.
        """
        if self._is_downloading:
            logger.warning("Bulk download already in progress")
            return DownloadStats()

        self._is_downloading = True
        stats = DownloadStats(total=len(songs))
        try:
            album_dir = self.service.files.album_directory(album_title)
            logger.info(f"Downloading {len(songs)} tracks to {album_dir}")
            self._report(on_progress, 0, stats.total, STATUS_DOWNLOADING)

            for index, song in enumerate(songs, start=1):
                metadata = self._prepare_metadata(song, index, cover_url)
                await self._download_one(metadata, index, album_dir, stats)
                self._report(on_progress, index, stats.total, STATUS_DOWNLOADING)
                logger.debug(format_progress_message(index, stats.total, stats.downloaded, stats.failed + stats.no_match))

            self._report(on_progress, stats.total, stats.total, STATUS_COMPLETED)
        finally:
            self._is_downloading = False

        logger.info(
            f"Album complete: {stats.downloaded}/{stats.total} downloaded, "
            f"{stats.failed} failed, {stats.no_match} without match"
        )
        return stats

    def _prepare_metadata(self, song: TrackMetadata, index: int, cover_url: str | None) -> TrackMetadata:
        return replace(
            song,
            album_art_url=cover_url or song.album_art_url,
            track_number=song.track_number or index,
            disc_number=song.disc_number or 1,
        )

    async def _download_one(self, metadata, index, album_dir, stats: DownloadStats) -> None:
        candidates = await self.service.find_best_matches(metadata)
        match = pick_closest(candidates, metadata.duration_seconds, ALBUM_MATCH_TOLERANCE_SECONDS)
        if match is None:
            stats.no_match += 1
            log_acquisition_failure(
                logger, metadata.display_name, metadata.spotify_id,
                source="fallback", reason="No YouTube match",
            )
            return

        filename = self.service.generate_filename(
            metadata,
            pattern=self.service.config.filenames.playlist_filename_pattern,
            playlist_index=index,
        )
        file_path = album_dir / f"{filename}.{ALBUM_AUDIO_FORMAT}"

        success = await self.service.fallback.download(
            match.url, file_path, audio_format=ALBUM_AUDIO_FORMAT
        )
        if not success:
            stats.failed += 1
            log_acquisition_failure(
                logger, metadata.display_name, metadata.spotify_id,
                source="fallback", reason=f"Download failed for {match.url}",
            )
            return

        await self.service.tag_file(file_path, metadata)
        stats.downloaded += 1

    @staticmethod
    def _report(listener: ProgressListener | None, completed: int, total: int, status: str) -> None:
        if listener is None:
            return
        listener(DownloadProgress(
            progress=completed / total if total else 0.0,
            status=status,
            details=f"{completed} / {total} Songs Downloaded",
        ))

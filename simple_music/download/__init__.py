"""
Download module for simple-music.

Components:
    - FallbackDownloader: yt-dlp subprocess or in-process streaming
    - MetadataTagger: tags and cover art (MP3, M4A, FLAC)
    - SmartDownloadService: lossless-then-YouTube acquisition policy
    - BulkDownloadService: sequential album download

Usage:
    from simple_music.download import SmartDownloadService, BulkDownloadService
"""

from simple_music.download.bulk import BulkDownloadService, DownloadProgress, DownloadStats
from simple_music.download.fallback import Backend, CompletionSignal, FallbackDownloader
from simple_music.download.orchestrator import SmartDownloadService
from simple_music.download.tagger import MetadataTagger

__all__ = [
    "Backend",
    "BulkDownloadService",
    "CompletionSignal",
    "DownloadProgress",
    "DownloadStats",
    "FallbackDownloader",
    "MetadataTagger",
    "SmartDownloadService",
]

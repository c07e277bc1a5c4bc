"""
YouTube Music track resolution.

Turns TrackMetadata into an ordered list of playable candidates for the
fallback engine.

Resolution Algorithm:
    1. If the track has an ISRC, search the quoted ISRC (songs filter).
       A non-empty result set is accepted as-is.
    2. Otherwise (or if the ISRC search was empty) search
       "{artist} - {title} Official Audio" (videos filter).
    3. If the expected duration is known, stable-sort by absolute
       duration difference.
    4. Keep candidates within DURATION_TOLERANCE_SECONDS; if none survive,
       keep the whole sorted list.
    5. Return at most MAX_CANDIDATES.

Any error from the search backend yields an empty list: a track that
cannot be resolved is a soft failure for the caller.

Dependencies:
    - ytmusicapi: YouTube Music search (blocking, run via asyncio.to_thread)

Usage:
    resolver = TrackResolver()
    candidates = await resolver.find_best_matches(metadata)
"""

import asyncio
import random
import time
from typing import Any, Callable

from ytmusicapi import YTMusic

from simple_music.catalog.models import TrackMetadata
from simple_music.core.exceptions import ResolverError
from simple_music.core.logger import get_logger
from simple_music.youtube.models import CandidateMatch


logger = get_logger(__name__)


# =============================================================================
# MATCHING THRESHOLDS
# =============================================================================

# Candidates whose duration differs by more than this are filtered out
# (unless that would filter out everything)
DURATION_TOLERANCE_SECONDS = 10

# Upper bound on the list returned by find_best_matches()
MAX_CANDIDATES = 5

# Preload accepts the first candidate this close to the expected duration
PRELOAD_TOLERANCE_SECONDS = 1

ISRC_SEARCH_OPTIONS = {"filter": "songs", "ignore_spelling": True, "limit": 20}
TEXT_SEARCH_OPTIONS = {"filter": "videos", "limit": 20}


# =============================================================================
# RETRY CONFIGURATION
# =============================================================================

MAX_SEARCH_RETRIES = 3
RETRY_DELAY_BASE = 1.0
RETRY_DELAY_MAX = 8.0
RETRY_JITTER_FACTOR = 0.3


def rank_by_duration(
    candidates: list[CandidateMatch],
    expected_seconds: int,
    tolerance: int = DURATION_TOLERANCE_SECONDS,
    limit: int = MAX_CANDIDATES,
) -> list[CandidateMatch]:
    """
    Order candidates by closeness to the expected duration.

    Args:
        candidates: Raw search results in provider order.
        expected_seconds: Expected duration; <= 0 disables ranking.
        tolerance: Maximum accepted difference in seconds.
        limit: Maximum number of candidates returned.

    Returns:
        At most `limit` candidates. The sort is stable, so equally distant
        candidates keep provider order. If no candidate is within
        tolerance, the full sorted list is used instead of an empty one.

    Example:
        expected 200, durations [215, 205, 198] -> [198, 205] (215 is 15s off)
    """
    if expected_seconds <= 0:
        return candidates[:limit]

    ordered = sorted(
        candidates,
        key=lambda c: abs(c.duration_seconds - expected_seconds)
    )
    within = [
        c for c in ordered
        if abs(c.duration_seconds - expected_seconds) <= tolerance
    ]
    return (within or ordered)[:limit]


def pick_closest(
    candidates: list[CandidateMatch],
    expected_seconds: int,
    tolerance: int,
) -> CandidateMatch | None:
    """
    Return the first candidate within tolerance, else the first candidate.

    Used on an already ranked list: preload asks for a 1 second match,
    album downloads for anything under 10 seconds.
    """
    if not candidates:
        return None
    for candidate in candidates:
        if abs(candidate.duration_seconds - expected_seconds) <= tolerance:
            return candidate
    return candidates[0]


class TrackResolver:
    """
    Finds YouTube candidates for a track.

    Attributes:
        max_retries: Attempts per search call before giving up.
        retry_delay_base: First backoff delay in seconds (doubles per attempt).
    """

    def __init__(
        self,
        ytmusic: YTMusic | None = None,
        max_retries: int = MAX_SEARCH_RETRIES,
        retry_delay_base: float = RETRY_DELAY_BASE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ytmusic = ytmusic
        self.max_retries = max_retries
        self.retry_delay_base = retry_delay_base
        self._sleep = sleep

    @property
    def ytmusic(self) -> YTMusic:
        # Created on first use; the constructor fetches a visitor session
        if self._ytmusic is None:
            self._ytmusic = YTMusic(language="en")
        return self._ytmusic

    async def find_best_matches(self, metadata: TrackMetadata) -> list[CandidateMatch]:
        """
        Return ranked candidates for a track, or [] on any failure.
        """
        try:
            return await asyncio.to_thread(self._find_best_matches_sync, metadata)
        except Exception as e:
            logger.error(f"Search failed for {metadata.display_name}: {e}")
            return []

    async def search_videos(self, query: str, limit: int = 10) -> list[CandidateMatch]:
        """
        Free-text search for the manual search panel.

        Results are returned in provider order without duration ranking.
        """
        try:
            results = await asyncio.to_thread(
                self._search, query, {"filter": "videos", "limit": limit}
            )
        except Exception as e:
            logger.error(f"Search failed for '{query}': {e}")
            return []
        return results[:limit]

    def _find_best_matches_sync(self, metadata: TrackMetadata) -> list[CandidateMatch]:
        candidates: list[CandidateMatch] = []

        if metadata.isrc:
            candidates = self._search(f'"{metadata.isrc}"', ISRC_SEARCH_OPTIONS)
            if candidates:
                logger.debug(f"ISRC search hit for {metadata.display_name}: {len(candidates)} results")

        if not candidates:
            query = f"{metadata.artist} - {metadata.title} Official Audio"
            candidates = self._search(query, TEXT_SEARCH_OPTIONS)

        return rank_by_duration(candidates, metadata.duration_seconds)

    def _search(self, query: str, options: dict[str, Any]) -> list[CandidateMatch]:
        raw_results = self._search_with_retry(query, options)

        results = []
        for raw in raw_results:
            if not isinstance(raw, dict) or not raw.get("videoId"):
                continue
            results.append(CandidateMatch.from_ytmusic_result(raw))
        return results

    def _search_with_retry(self, query: str, options: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Run ytmusic.search with exponential backoff and jitter.

        Raises:
            ResolverError: When every attempt failed.
        """
        last_exception: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                return self.ytmusic.search(query, **options) or []
            except Exception as e:
                last_exception = e
                if attempt == self.max_retries - 1:
                    break

                delay = min(self.retry_delay_base * (2 ** attempt), RETRY_DELAY_MAX)
                delay += delay * RETRY_JITTER_FACTOR * (2 * random.random() - 1)
                logger.debug(
                    f"Search attempt {attempt + 1}/{self.max_retries} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                self._sleep(max(0.0, delay))

        raise ResolverError(
            f"Search failed after {self.max_retries} attempts: {last_exception}",
            details={"query": query, "original_error": str(last_exception)}
        ) from last_exception

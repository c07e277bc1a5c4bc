"""
Lossless (FLAC) acquisition.

Acquisition Flow:
    1. Resolve per-platform links for the catalog track via song.link
       (rate limited; HTTP 429 -> back off and try again)
    2. Try each provider in order, first success wins:
         tidal-hires     Tidal proxy servers, HI_RES_LOSSLESS
         deezer          Deezer track lookup + FLAC download link
         tidal-lossless  Tidal proxy servers, LOSSLESS
    3. If everything failed and the track has an ISRC, ask Qobuz whether
       the track exists. This is informational only and never changes
       the outcome.

Tidal proxies answer with a direct file URL or a DASH manifest
(see lossless.manifest). Manifests are fetched segment by segment into a
temporary .m4a and remuxed into the final FLAC container with ffmpeg
(copy codec). If ffmpeg is unavailable the raw stream is kept under the
final name.

Failures never raise out of acquire_lossless(); they are reported as an
AcquisitionResult so the orchestrator can fall back to YouTube.

Dependencies:
    - aiohttp: all provider HTTP traffic
    - ffmpeg-python: DASH remux

Usage:
    async with LosslessEngine(RateLimiter()) as engine:
        result = await engine.acquire_lossless(metadata, Path("out.flac"))
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Awaitable, Callable
from urllib.parse import quote

import aiohttp
import ffmpeg

from simple_music.catalog.models import TrackMetadata
from simple_music.core.config import LosslessConfig, RateLimitConfig
from simple_music.core.exceptions import DownloadError, ManifestError, ProviderError
from simple_music.core.logger import get_logger
from simple_music.lossless.manifest import (
    DirectUrl,
    EmbeddedManifest,
    classify_track_response,
    decode_manifest,
)
from simple_music.lossless.models import (
    AcquisitionResult,
    DeezerTrack,
    StreamingLinks,
    extract_track_id,
)
from simple_music.lossless.rate_limiter import RateLimiter


logger = get_logger(__name__)

ProgressCallback = Callable[[float], None]


# =============================================================================
# PROVIDER ENDPOINTS
# =============================================================================

SONGLINK_API_URL = "https://api.song.link/v1-alpha.1/links"
SONGLINK_PROVIDER_KEY = "song.link"
TIDAL_SERVERS_URL = "https://raw.githubusercontent.com/afkarxyz/SpotiFLAC/refs/heads/main/tidal.json"
DEEZER_TRACK_URL = "https://api.deezer.com/2.0/track/{track_id}"
DEEZMATE_DOWNLOAD_URL = "https://api.deezmate.com/dl/{track_id}"
QOBUZ_SEARCH_URL = "https://www.qobuz.com/api.json/0.2/track/search"

TIDAL_HI_RES = "HI_RES_LOSSLESS"
TIDAL_LOSSLESS = "LOSSLESS"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# song.link attempts before giving up on repeated 429s
MAX_LINK_ATTEMPTS = 3

DOWNLOAD_CHUNK_SIZE = 64 * 1024

NO_PLATFORM_ERROR = "Could not find track on any platform"
ALL_SERVICES_FAILED_ERROR = "Download failed on all services"
MISSING_ID_ERROR = "Track has no Spotify ID"


class LosslessEngine:
    """
    Song.link + Tidal/Deezer FLAC downloader.

    Attributes:
        rate_limiter: Shared limiter guarding song.link.
        config: Lossless section of the configuration.
        backoff_seconds: Sleep after an HTTP 429 before retrying.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        config: LosslessConfig | None = None,
        rate_config: RateLimitConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.config = config or LosslessConfig()
        self.backoff_seconds = (rate_config or RateLimitConfig()).backoff_seconds
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._tidal_servers: list[str] | None = None

    async def __aenter__(self) -> "LosslessEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(trust_env=True)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.request_timeout)

    def _transfer_timeout(self) -> aiohttp.ClientTimeout:
        # Large files: bound stalls, not the whole transfer
        return aiohttp.ClientTimeout(total=None, sock_connect=self.config.request_timeout,
                                     sock_read=self.config.request_timeout)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def acquire_lossless(
        self,
        metadata: TrackMetadata,
        output_path: Path,
        on_progress: ProgressCallback | None = None,
    ) -> AcquisitionResult:
        """
        Download a FLAC copy of a track to output_path.

        Args:
            metadata: Track to acquire; spotify_id is required.
            output_path: Final file path. Parent directories are created.
            on_progress: Called with a 0.0-1.0 fraction while downloading.

        Returns:
            AcquisitionResult with the delivering provider on success, or
            the failure reason.
        """
        if not metadata.spotify_id:
            return AcquisitionResult.failed(MISSING_ID_ERROR)

        links = await self.resolve_links(metadata.spotify_id)
        if links is None:
            return AcquisitionResult.failed(NO_PLATFORM_ERROR)

        output_path.parent.mkdir(parents=True, exist_ok=True)

        attempts: list[tuple[str, Callable[[], Awaitable[Path | None]]]] = [
            ("tidal-hires", lambda: self._attempt_tidal(links, output_path, TIDAL_HI_RES, on_progress)),
            ("deezer", lambda: self._attempt_deezer(links, output_path, on_progress)),
            ("tidal-lossless", lambda: self._attempt_tidal(links, output_path, TIDAL_LOSSLESS, on_progress)),
        ]

        for label, attempt in attempts:
            try:
                path = await attempt()
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError,
                    ProviderError, ManifestError, DownloadError) as e:
                logger.warning(f"[{label}] attempt failed for {metadata.display_name}: {e}")
                continue
            if path is not None:
                logger.info(f"[{label}] delivered {metadata.display_name}")
                return AcquisitionResult.succeeded(path, label)
            logger.debug(f"[{label}] no result for {metadata.display_name}")

        if metadata.isrc:
            available = await self.check_qobuz_availability(metadata.isrc)
            if available:
                logger.info(
                    f"{metadata.display_name} exists on Qobuz (ISRC {metadata.isrc}) "
                    "but no Qobuz download path is implemented"
                )

        return AcquisitionResult.failed(ALL_SERVICES_FAILED_ERROR)

    async def resolve_links(self, spotify_id: str) -> StreamingLinks | None:
        """
        Ask song.link for the Deezer/Tidal/Amazon pages of a catalog track.

        Returns:
            StreamingLinks with at least one platform, or None on any failure
            (non-200, malformed JSON, no platforms, repeated 429s).
        """
        spotify_url = f"https://open.spotify.com/track/{spotify_id}"
        url = f"{SONGLINK_API_URL}?url={quote(spotify_url, safe='')}"
        session = await self._get_session()

        for attempt in range(1, MAX_LINK_ATTEMPTS + 1):
            await self.rate_limiter.acquire_slot(SONGLINK_PROVIDER_KEY)
            try:
                async with session.get(
                    url, headers={"User-Agent": USER_AGENT}, timeout=self._timeout()
                ) as resp:
                    if resp.status == 429:
                        logger.warning(
                            f"song.link rate limit hit (attempt {attempt}/{MAX_LINK_ATTEMPTS}), "
                            f"backing off {self.backoff_seconds:.0f}s"
                        )
                        await self._sleep(self.backoff_seconds)
                        continue
                    if resp.status != 200:
                        logger.warning(f"song.link returned HTTP {resp.status} for {spotify_id}")
                        return None
                    payload = await resp.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
                logger.warning(f"song.link request failed for {spotify_id}: {e}")
                return None

            if not isinstance(payload, dict):
                return None
            links = StreamingLinks.from_songlink_response(spotify_id, payload)
            if not links.has_any:
                logger.info(f"song.link knows no streaming platforms for {spotify_id}")
                return None
            return links

        logger.error(f"song.link still rate limited after {MAX_LINK_ATTEMPTS} attempts")
        return None

    async def fetch_deezer_track(self, track_id: str) -> DeezerTrack | None:
        """Look a track up on the public Deezer API."""
        session = await self._get_session()
        async with session.get(
            DEEZER_TRACK_URL.format(track_id=track_id), timeout=self._timeout()
        ) as resp:
            if resp.status != 200:
                raise ProviderError(
                    f"Deezer track lookup returned HTTP {resp.status}",
                    provider="deezer",
                    status_code=resp.status,
                )
            try:
                payload = await resp.json(content_type=None)
            except json.JSONDecodeError as e:
                raise ProviderError(
                    f"Deezer track lookup returned invalid JSON: {e}", provider="deezer"
                ) from e

        if not isinstance(payload, dict) or "error" in payload:
            return None
        return DeezerTrack.from_api(payload)

    async def check_qobuz_availability(self, isrc: str) -> bool:
        """
        Report whether Qobuz lists a track with this ISRC.

        Never raises: any failure is logged and reported as unavailable.
        """
        if not self.config.qobuz_app_id:
            logger.debug("Qobuz app id not configured, skipping availability check")
            return False

        params = {"query": isrc, "limit": "1", "app_id": self.config.qobuz_app_id}
        try:
            session = await self._get_session()
            async with session.get(QOBUZ_SEARCH_URL, params=params, timeout=self._timeout()) as resp:
                if resp.status != 200:
                    logger.debug(f"Qobuz search returned HTTP {resp.status}")
                    return False
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            logger.debug(f"Qobuz availability check failed: {e}")
            return False

        tracks = payload.get("tracks") if isinstance(payload, dict) else None
        total = tracks.get("total", 0) if isinstance(tracks, dict) else 0
        return isinstance(total, int) and total > 0

    # =========================================================================
    # PROVIDER ATTEMPTS
    # =========================================================================

    async def _attempt_tidal(
        self,
        links: StreamingLinks,
        output_path: Path,
        quality: str,
        on_progress: ProgressCallback | None,
    ) -> Path | None:
        track_id = extract_track_id(links.tidal_url)
        if track_id is None:
            return None

        for server in await self._get_tidal_servers():
            body = await self._fetch_tidal_track(server, track_id, quality)
            if body is None:
                continue

            try:
                if await self._download_tidal_response(body, output_path, on_progress):
                    return output_path
            except (ManifestError, DownloadError, OSError) as e:
                logger.debug(f"Tidal server {server} unusable: {e}")
        return None

    async def _download_tidal_response(
        self,
        body: str,
        output_path: Path,
        on_progress: ProgressCallback | None,
    ) -> bool:
        response = classify_track_response(body)
        if isinstance(response, DirectUrl):
            return await self.download_file(response.url, output_path, on_progress)
        if isinstance(response, EmbeddedManifest):
            urls = decode_manifest(
                response.document,
                estimate_missing_timeline=self.config.estimate_missing_timeline,
            )
            if len(urls) == 1:
                return await self.download_file(urls[0], output_path, on_progress)
            return await self.download_segments(urls, output_path, on_progress)
        logger.debug(f"Unusable Tidal response: {response.reason}")
        return False

    async def _attempt_deezer(
        self,
        links: StreamingLinks,
        output_path: Path,
        on_progress: ProgressCallback | None,
    ) -> Path | None:
        track_id = extract_track_id(links.deezer_url)
        if track_id is None:
            return None

        try:
            track = await self.fetch_deezer_track(track_id)
        except (aiohttp.ClientError, asyncio.TimeoutError, ProviderError) as e:
            logger.debug(f"Deezer track lookup failed for {track_id}: {e}")
            track = None
        if track is not None:
            logger.debug(f"Deezer match: {track.artist} - {track.title} ({track.isrc or 'no ISRC'})")

        session = await self._get_session()
        async with session.get(
            DEEZMATE_DOWNLOAD_URL.format(track_id=track_id), timeout=self._timeout()
        ) as resp:
            if resp.status != 200:
                raise ProviderError(
                    f"Deezer download link request returned HTTP {resp.status}",
                    provider="deezer",
                    status_code=resp.status,
                )
            try:
                payload = await resp.json(content_type=None)
            except json.JSONDecodeError as e:
                raise ProviderError(
                    f"Deezer download link response is not JSON: {e}", provider="deezer"
                ) from e

        if not isinstance(payload, dict) or not payload.get("success"):
            return None
        links_payload = payload.get("links")
        flac_url = links_payload.get("flac") if isinstance(links_payload, dict) else None
        if not isinstance(flac_url, str) or not flac_url:
            return None

        if await self.download_file(flac_url, output_path, on_progress):
            return output_path
        return None

    async def _get_tidal_servers(self) -> list[str]:
        """Fetch (once per engine) the list of Tidal proxy servers."""
        if self._tidal_servers is not None:
            return self._tidal_servers

        session = await self._get_session()
        try:
            async with session.get(TIDAL_SERVERS_URL, timeout=self._timeout()) as resp:
                if resp.status != 200:
                    logger.warning(f"Tidal server list returned HTTP {resp.status}")
                    return []
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load Tidal server list: {e}")
            return []

        if not isinstance(payload, list):
            return []
        self._tidal_servers = [
            f"https://{host}" for host in payload if isinstance(host, str) and host
        ]
        return self._tidal_servers

    async def _fetch_tidal_track(self, server: str, track_id: str, quality: str) -> str | None:
        session = await self._get_session()
        url = f"{server}/track?id={track_id}&quality={quality}"
        try:
            async with session.get(url, timeout=self._timeout()) as resp:
                if resp.status != 200:
                    logger.debug(f"Tidal server {server} returned HTTP {resp.status}")
                    return None
                return await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Tidal server {server} failed: {e}")
            return None

    # =========================================================================
    # TRANSFER
    # =========================================================================

    async def download_file(
        self,
        url: str,
        output_path: Path,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        """
        Stream a complete file to output_path.

        Writes to "<name>.part" and renames into place only when the
        transfer finished, so a partial file never sits at output_path.
        """
        tmp_path = output_path.with_name(output_path.name + ".part")
        session = await self._get_session()
        try:
            async with session.get(
                url, headers={"User-Agent": USER_AGENT}, timeout=self._transfer_timeout()
            ) as resp:
                if resp.status != 200:
                    logger.warning(f"Download returned HTTP {resp.status}")
                    return False
                total = resp.content_length or 0
                received = 0
                with open(tmp_path, "wb") as f:
                    async for chunk in resp.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
                        received += len(chunk)
                        if on_progress and total:
                            on_progress(min(received / total, 1.0))
            if received == 0:
                tmp_path.unlink(missing_ok=True)
                return False
            os.replace(tmp_path, output_path)
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"Download failed: {e}")
            tmp_path.unlink(missing_ok=True)
            return False

    async def download_segments(
        self,
        urls: list[str],
        output_path: Path,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        """
        Fetch DASH segments in order, concatenate, then remux to output_path.

        Progress is reported per segment.
        """
        temp_path = output_path.with_name(f"{output_path.stem}_temp.m4a")
        session = await self._get_session()
        try:
            with open(temp_path, "wb") as f:
                for index, url in enumerate(urls):
                    async with session.get(url, timeout=self._timeout()) as resp:
                        if resp.status != 200:
                            raise DownloadError(
                                f"Segment {index} returned HTTP {resp.status}",
                                details={"url": url}
                            )
                        f.write(await resp.read())
                    if on_progress:
                        on_progress((index + 1) / len(urls))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, DownloadError) as e:
            logger.warning(f"Segment download failed: {e}")
            temp_path.unlink(missing_ok=True)
            return False

        await asyncio.to_thread(self._remux, temp_path, output_path)
        return output_path.exists()

    def _remux(self, source: Path, destination: Path) -> None:
        """Copy the audio stream into the destination container."""
        ffmpeg_cmd = self.config.ffmpeg_path or "ffmpeg"
        try:
            (
                ffmpeg
                .input(str(source))
                .output(str(destination), acodec="copy")
                .overwrite_output()
                .run(cmd=ffmpeg_cmd, quiet=True)
            )
        except (ffmpeg.Error, FileNotFoundError) as e:
            logger.warning(f"ffmpeg remux failed ({e}), keeping the raw stream")
            os.replace(source, destination)
            return
        source.unlink(missing_ok=True)

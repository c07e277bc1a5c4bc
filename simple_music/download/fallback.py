"""
Fallback (YouTube) audio acquisition.

Two backends implement the same operation, download(url, destination,
on_progress) -> bool:

    SUBPROCESS  runs the yt-dlp executable with ffmpeg post-processing.
                Produces exactly the requested audio format. Progress is
                parsed from "[download]  42.0%" lines on stdout.
    STREAMING   extracts stream info in-process with the yt_dlp library
                and streams the best audio-only format straight to disk
                with aiohttp. No ffmpeg needed, no transcoding: the payload
                keeps its source codec whatever the file extension says.

Completion is single-shot: whatever combination of exit codes, missing
files and exceptions happens, the caller's result is decided exactly once
through CompletionSignal.

Dependencies:
    - yt-dlp: executable (subprocess backend) and library (streaming backend)
    - aiohttp: streaming backend transfer
"""

import asyncio
import os
import re
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import aiohttp
import yt_dlp
from yt_dlp.utils import YoutubeDLError

from simple_music.core.config import FallbackConfig
from simple_music.core.logger import get_logger


logger = get_logger(__name__)

ProgressCallback = Callable[[float], None]

_PROGRESS_PATTERN = re.compile(r"\[download\]\s+(\d+\.\d+)%")
_QUIET_STDERR_MARKERS = ("[download]", "[ExtractAudio]")
_LINE_SEPARATOR = re.compile(rb"[\r\n]")

STREAM_CHUNK_SIZE = 64 * 1024


class Backend(Enum):
    SUBPROCESS = "subprocess"
    STREAMING = "streaming"


class CompletionSignal:
    """
    A result that can be set exactly once.

    complete() returns True for the call that actually decided the result
    and False for every later call, which is ignored.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def complete(self, success: bool) -> bool:
        if self._future.done():
            return False
        self._future.set_result(success)
        return True

    async def wait(self) -> bool:
        return await self._future


class YtDlpQuietLogger:
    """Routes yt_dlp library output into our logger at DEBUG level."""

    def debug(self, msg: str) -> None:
        logger.debug(f"yt-dlp: {msg}")

    def info(self, msg: str) -> None:
        logger.debug(f"yt-dlp: {msg}")

    def warning(self, msg: str) -> None:
        logger.debug(f"yt-dlp warning: {msg}")

    def error(self, msg: str) -> None:
        logger.error(f"yt-dlp: {msg}")


def parse_progress(line: str) -> float | None:
    """
    Extract a 0.0-1.0 fraction from a yt-dlp progress line.

    Example:
        "[download]  42.5% of 3.21MiB at 1.2MiB/s" -> 0.425
    """
    match = _PROGRESS_PATTERN.search(line)
    if match is None:
        return None
    return min(max(float(match.group(1)) / 100.0, 0.0), 1.0)


async def _iter_lines(stream: asyncio.StreamReader):
    """
    Yield pipe output split on both CR and LF.

    yt-dlp redraws its progress line with a bare CR.
    """
    pending = b""
    while True:
        chunk = await stream.read(STREAM_CHUNK_SIZE)
        if not chunk:
            break
        *lines, pending = _LINE_SEPARATOR.split(pending + chunk)
        for line in lines:
            if line:
                yield line
    if pending:
        yield pending


def select_audio_format(formats: list[dict[str, Any]]) -> dict[str, Any] | None:
    """
    Pick the highest-bitrate audio-only format from yt-dlp's format list.

    Audio-only means no video codec and a real audio codec; bitrate is abr,
    falling back to tbr.
    """
    audio_only = [
        f for f in formats
        if f.get("url")
        and f.get("vcodec") == "none"
        and f.get("acodec") not in (None, "none")
    ]
    if not audio_only:
        return None
    return max(audio_only, key=lambda f: f.get("abr") or f.get("tbr") or 0)


class FallbackDownloader:
    """
    Downloads a YouTube URL to an audio file.

    Attributes:
        backend: Backend chosen from the configuration.
        yt_dlp_path: yt-dlp executable for the subprocess backend.
        ffmpeg_path: ffmpeg executable handed to yt-dlp.
    """

    def __init__(
        self,
        config: FallbackConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        config = config or FallbackConfig()
        self.yt_dlp_path = config.yt_dlp_path or shutil.which("yt-dlp")
        self.ffmpeg_path = config.ffmpeg_path or shutil.which("ffmpeg")
        self.backend = self._resolve_backend(config.backend)
        self._session = session
        self._owns_session = session is None

    def _resolve_backend(self, requested: str) -> Backend:
        if requested == "subprocess":
            return Backend.SUBPROCESS
        if requested == "streaming":
            return Backend.STREAMING
        if self.yt_dlp_path and self.ffmpeg_path:
            return Backend.SUBPROCESS
        logger.debug("yt-dlp/ffmpeg executables not found, using the streaming backend")
        return Backend.STREAMING

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(trust_env=True)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def download(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None = None,
        audio_format: str = "mp3",
    ) -> bool:
        """
        Download `url` as audio to `destination`.

        Returns:
            True only if the backend reported success AND the destination
            file exists.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        signal = CompletionSignal()

        try:
            if self.backend is Backend.SUBPROCESS:
                await self._download_subprocess(url, destination, on_progress, audio_format, signal)
            else:
                await self._download_streaming(url, destination, on_progress, signal)
        except (OSError, ValueError, aiohttp.ClientError, asyncio.TimeoutError, YoutubeDLError) as e:
            logger.error(f"Fallback download failed for {url}: {e}")
            signal.complete(False)

        # A backend that returned without deciding counts as a failure
        signal.complete(False)
        return await signal.wait()

    # =========================================================================
    # SUBPROCESS BACKEND
    # =========================================================================

    def build_command(self, url: str, destination: Path, audio_format: str) -> list[str]:
        command = [
            self.yt_dlp_path or "yt-dlp",
            "-x",
            "--no-playlist",
            "--extractor-args", "youtube:player_client=default",
            "--audio-format", audio_format,
            "--audio-quality", "0",
            "--force-overwrites",
            "--newline",
        ]
        ffmpeg_dir = Path(self.ffmpeg_path).parent if self.ffmpeg_path else None
        if ffmpeg_dir is not None and ffmpeg_dir != Path("."):
            command += ["--ffmpeg-location", str(ffmpeg_dir)]
        command += ["--output", str(destination), "--no-part", url]
        return command

    async def _download_subprocess(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None,
        audio_format: str,
        signal: CompletionSignal,
    ) -> None:
        command = self.build_command(url, destination, audio_format)
        logger.debug(f"Running {' '.join(command[:-1])} <url>")

        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            await asyncio.gather(
                self._read_stdout(process.stdout, on_progress),
                self._read_stderr(process.stderr),
            )
            exit_code = await process.wait()
        finally:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        if exit_code != 0:
            logger.warning(f"yt-dlp exited with code {exit_code}")
            signal.complete(False)
            return
        signal.complete(destination.exists())

    async def _read_stdout(
        self,
        stream: asyncio.StreamReader | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        if stream is None:
            return
        async for raw_line in _iter_lines(stream):
            progress = parse_progress(raw_line.decode("utf-8", errors="replace"))
            if progress is not None and on_progress:
                on_progress(progress)

    async def _read_stderr(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        async for raw_line in _iter_lines(stream):
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line and not any(marker in line for marker in _QUIET_STDERR_MARKERS):
                logger.error(f"yt-dlp: {line}")

    # =========================================================================
    # STREAMING BACKEND
    # =========================================================================

    def _extract_info(self, url: str) -> dict[str, Any]:
        options = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "logger": YtDlpQuietLogger(),
        }
        with yt_dlp.YoutubeDL(options) as ydl:
            return ydl.extract_info(url, download=False) or {}

    async def _download_streaming(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None,
        signal: CompletionSignal,
    ) -> None:
        info = await asyncio.to_thread(self._extract_info, url)
        audio_format = select_audio_format(info.get("formats") or [])
        if audio_format is None:
            logger.warning(f"No audio-only stream for {url}")
            signal.complete(False)
            return

        expected = audio_format.get("filesize") or audio_format.get("filesize_approx") or 0
        headers = audio_format.get("http_headers") or {}
        tmp_path = destination.with_name(destination.name + ".part")

        session = await self._get_session()
        try:
            async with session.get(audio_format["url"], headers=headers) as resp:
                if resp.status != 200:
                    logger.warning(f"Audio stream returned HTTP {resp.status}")
                    signal.complete(False)
                    return
                total = expected or resp.content_length or 0
                received = 0
                with open(tmp_path, "wb") as f:
                    async for chunk in resp.content.iter_chunked(STREAM_CHUNK_SIZE):
                        f.write(chunk)
                        received += len(chunk)
                        if on_progress and total:
                            on_progress(min(received / total, 1.0))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
            tmp_path.unlink(missing_ok=True)
            raise

        os.replace(tmp_path, destination)
        signal.complete(destination.exists())

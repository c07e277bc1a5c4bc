"""
Command-line interface for simple-music.

Built with Click; rich-click is used for help colors and rich for tables
and progress bars.

Commands:
    simple-music search <query>                     YouTube Music video search
    simple-music match --title T --artist A         Ranked candidates for a track
    simple-music stream --title T --artist A        Cache a track for playback
    simple-music download --title T --artist A      Permanent download (--lossless for FLAC)
    simple-music album <spotify-album-id>           Download a whole album
    simple-music cache --size | --clear             Inspect or clear the stream cache

Global Options:
    --config <path>     config.yaml to use (default: ./config.yaml)
    --verbose           DEBUG output on the console
    --version           Show version and exit

Exit Codes:
    0  success
    1  acquisition failed / configuration error
    3  Spotify catalog error
    4  other simple-music error
    130 interrupted
"""

import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable

import rich_click as click
from rich.console import Console
from rich.table import Table

click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.MAX_WIDTH = 100

from simple_music import __version__
from simple_music.catalog.client import CatalogClient
from simple_music.catalog.models import TrackMetadata
from simple_music.core import (
    CatalogError,
    Config,
    ConfigError,
    DownloadError,
    SimpleMusicError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from simple_music.core.config import STREAMING_QUALITIES
from simple_music.core.file_manager import FileManager
from simple_music.core.progress import AlbumProgressBar, TransferProgressBar
from simple_music.download.bulk import BulkDownloadService, DownloadProgress
from simple_music.download.fallback import FallbackDownloader
from simple_music.download.orchestrator import SmartDownloadService
from simple_music.download.tagger import MetadataTagger
from simple_music.lossless.engine import LosslessEngine
from simple_music.lossless.rate_limiter import RateLimiter
from simple_music.youtube.models import CandidateMatch
from simple_music.youtube.resolver import TrackResolver


logger = get_logger(__name__)
console = Console()


# =============================================================================
# SERVICE WIRING
# =============================================================================

def build_service(config: Config) -> SmartDownloadService:
    """
    Assemble a SmartDownloadService from the configuration.

    The Spotify catalog is only wired in when credentials are configured;
    without it, lossless acquisition works only for tracks that already
    carry a Spotify ID.
    """
    rate_limiter = RateLimiter(
        calls_per_window=config.rate_limit.calls_per_window,
        window_seconds=config.rate_limit.window_seconds,
        min_interval_seconds=config.rate_limit.min_interval_seconds,
    )
    catalog = CatalogClient.from_config(config.spotify) if config.spotify.is_configured else None
    return SmartDownloadService(
        resolver=TrackResolver(),
        lossless_engine=LosslessEngine(rate_limiter, config.lossless, config.rate_limit),
        fallback=FallbackDownloader(config.fallback),
        tagger=MetadataTagger(),
        file_manager=FileManager.from_config(config.output),
        config=config,
        catalog=catalog,
    )


async def close_service(service: SmartDownloadService) -> None:
    await service.lossless.close()
    await service.fallback.close()


def _execute(ctx: click.Context, work: Callable[[Config], Awaitable[bool] | bool]) -> None:
    """
    Load configuration, set up logging and run one command.

    Args:
        ctx: Click context holding the global options.
        work: Command body. Returns True on success; may be a coroutine
              function, in which case it runs under asyncio.run().
    """
    options = ctx.obj or {}
    try:
        config = load_config(options.get("config_path"))
        setup_logging(config.output.logs_directory, verbose=options.get("verbose", False))

        result = work(config)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
        if not result:
            sys.exit(1)

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except DownloadError as e:
        click.echo(f"Download failed: {e.message}", err=True)
        sys.exit(1)

    except CatalogError as e:
        click.echo(f"Spotify error: {e.message}", err=True)
        if e.is_auth_error:
            click.echo("Check spotify.client_id and spotify.client_secret in config.yaml", err=True)
        logger.error(f"Spotify error: {e.message}", exc_info=True)
        sys.exit(3)

    except SimpleMusicError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(4)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)

    finally:
        shutdown_logging()


def _track_from_options(
    title: str,
    artist: str,
    album: str | None,
    duration: int | None,
    isrc: str | None,
    spotify_id: str | None,
) -> TrackMetadata:
    return TrackMetadata(
        title=title,
        artist=artist,
        album=album or "",
        duration_seconds=duration or 0,
        isrc=isrc.upper() if isrc else None,
        spotify_id=spotify_id,
    )


def _print_candidates(candidates: list[CandidateMatch], expected_seconds: int = 0) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Artist")
    table.add_column("Duration", justify="right")
    if expected_seconds:
        table.add_column("Δ s", justify="right")
    table.add_column("URL", overflow="fold")

    for i, candidate in enumerate(candidates, start=1):
        row = [str(i), candidate.title, candidate.artist, candidate.duration]
        if expected_seconds:
            row.append(str(abs(candidate.duration_seconds - expected_seconds)))
        row.append(candidate.url)
        table.add_row(*row)
    console.print(table)


async def _pick_candidate(
    service: SmartDownloadService,
    metadata: TrackMetadata,
    url: str | None,
) -> CandidateMatch | None:
    if url:
        return CandidateMatch(
            title=metadata.title,
            artist=metadata.artist,
            duration="0:00",
            url=url,
        )
    candidates = await service.find_best_matches(metadata)
    return candidates[0] if candidates else None


def track_options(func):
    """--title/--artist/... shared by match, stream and download."""
    decorators = [
        click.option("--title", required=True, help="Track title"),
        click.option("--artist", required=True, help="Track artist"),
        click.option("--album", default=None, help="Album title"),
        click.option("--duration", type=int, default=None, help="Expected duration in seconds"),
        click.option("--isrc", default=None, help="ISRC for an exact-match search"),
        click.option("--spotify-id", default=None, help="Spotify track ID (enables lossless)"),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


# =============================================================================
# COMMANDS
# =============================================================================

@click.group(invoke_without_command=True)
@click.option(
    "--config", "config_path",
    type=click.Path(path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)",
)
@click.option("--verbose", is_flag=True, help="Show debug output")
@click.option("--version", is_flag=True, help="Show version and exit.")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool, version: bool) -> None:
    """
    simple-music: find, download, cache and tag songs.

    \b
    EXAMPLES:
        simple-music search "Daft Punk One More Time"
        simple-music match --title "One More Time" --artist "Daft Punk" --duration 320
        simple-music stream --title "One More Time" --artist "Daft Punk"
        simple-music download --title "One More Time" --artist "Daft Punk" --lossless
        simple-music album 2noRn2Aes5aoNVsU6iWThc
        simple-music cache --clear
    """
    if version:
        click.echo(f"simple-music {__version__}")
        ctx.exit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("query")
@click.option("--limit", type=int, default=10, show_default=True, help="Maximum results")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int) -> None:
    """Search YouTube Music videos."""

    async def work(config: Config) -> bool:
        resolver = TrackResolver()
        candidates = await resolver.search_videos(query, limit=limit)
        if not candidates:
            click.echo("No results", err=True)
            return False
        _print_candidates(candidates)
        return True

    _execute(ctx, work)


@cli.command()
@track_options
@click.pass_context
def match(ctx: click.Context, title, artist, album, duration, isrc, spotify_id) -> None:
    """Show the ranked YouTube candidates for a track."""
    metadata = _track_from_options(title, artist, album, duration, isrc, spotify_id)

    async def work(config: Config) -> bool:
        candidates = await TrackResolver().find_best_matches(metadata)
        if not candidates:
            click.echo(f"No match for {metadata.display_name}", err=True)
            return False
        _print_candidates(candidates, metadata.duration_seconds)
        return True

    _execute(ctx, work)


@cli.command()
@track_options
@click.option("--url", default=None, help="YouTube URL to use instead of searching")
@click.option(
    "--quality",
    type=click.Choice(STREAMING_QUALITIES),
    default=None,
    help="Override playback.streaming_quality",
)
@click.pass_context
def stream(ctx: click.Context, title, artist, album, duration, isrc, spotify_id, url, quality) -> None:
    """Cache a track for playback and print its path."""
    metadata = _track_from_options(title, artist, album, duration, isrc, spotify_id)

    async def work(config: Config) -> bool:
        service = build_service(config)
        try:
            video = await _pick_candidate(service, metadata, url)
            if video is None:
                click.echo(f"No match for {metadata.display_name}", err=True)
                return False
            with TransferProgressBar(metadata.display_name, status="streaming") as bar:
                song = await service.cache_and_play(
                    video, metadata, on_progress=bar.set_fraction, streaming_quality=quality
                )
        finally:
            await close_service(service)

        if song is None:
            click.echo(f"Could not acquire {metadata.display_name}", err=True)
            return False
        click.echo(str(song.file_path))
        return True

    _execute(ctx, work)


@cli.command()
@track_options
@click.option("--url", default=None, help="YouTube URL to use instead of searching")
@click.option(
    "--format", "audio_format",
    type=click.Choice(["mp3", "m4a", "opus", "flac"]),
    default="mp3",
    show_default=True,
    help="Audio format for YouTube downloads",
)
@click.option("--lossless", is_flag=True, help="Try a FLAC from Tidal/Deezer first")
@click.pass_context
def download(ctx: click.Context, title, artist, album, duration, isrc, spotify_id,
             url, audio_format, lossless) -> None:
    """Download a track into the download folder."""
    metadata = _track_from_options(title, artist, album, duration, isrc, spotify_id)

    async def work(config: Config) -> bool:
        service = build_service(config)
        try:
            if lossless:
                enriched = await service.enrich_metadata(metadata)
                with TransferProgressBar(metadata.display_name, status="flac") as bar:
                    song = await service.download_flac(enriched, bar.set_fraction)
                if song is not None:
                    click.echo(str(song.file_path))
                    return True
                click.echo("FLAC unavailable, downloading from YouTube", err=True)

            video = await _pick_candidate(service, metadata, url)
            if video is None:
                click.echo(f"No match for {metadata.display_name}", err=True)
                return False
            with TransferProgressBar(metadata.display_name) as bar:
                song = await service.download_song(
                    video, metadata, on_progress=bar.set_fraction, audio_format=audio_format
                )
        finally:
            await close_service(service)

        click.echo(str(song.file_path))
        return True

    _execute(ctx, work)


@cli.command()
@click.argument("album_id")
@click.pass_context
def album(ctx: click.Context, album_id: str) -> None:
    """Download a Spotify album as tagged m4a files."""

    async def work(config: Config) -> bool:
        service = build_service(config)
        if service.catalog is None:
            raise ConfigError(
                "Album downloads need Spotify credentials",
                details={"field": "spotify"},
            )
        try:
            listing = await asyncio.to_thread(service.catalog.album, album_id)
            bulk = BulkDownloadService(service)

            with AlbumProgressBar(total=len(listing.tracks), description=listing.title) as bar:
                def on_progress(progress: DownloadProgress) -> None:
                    bar.update(progress.progress, progress.details)

                stats = await bulk.download_album(
                    listing.title,
                    list(listing.tracks),
                    cover_url=listing.cover_url,
                    on_progress=on_progress,
                )
        finally:
            await close_service(service)

        click.echo(
            f"{stats.downloaded}/{stats.total} downloaded "
            f"({stats.success_rate:.0f}%), {stats.failed} failed, {stats.no_match} without match"
        )
        return stats.downloaded == stats.total

    _execute(ctx, work)


@cli.command()
@click.option("--size", "show_size", is_flag=True, help="Print the cache size")
@click.option("--clear", is_flag=True, help="Delete every cached file")
@click.pass_context
def cache(ctx: click.Context, show_size: bool, clear: bool) -> None:
    """Inspect or clear the stream cache."""
    if not show_size and not clear:
        raise click.UsageError("Use --size and/or --clear")

    def work(config: Config) -> bool:
        files = FileManager.from_config(config.output)
        if show_size:
            click.echo(f"{files.cache_dir}: {files.cache_size_label()}")
        if clear:
            deleted = files.clear_cache()
            click.echo(f"Deleted {deleted} cached files")
        return True

    _execute(ctx, work)


def main() -> None:
    """Entry point for the `simple-music` console script."""
    cli()


if __name__ == "__main__":
    main()

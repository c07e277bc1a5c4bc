"""
Logging configuration for simple-music.

Outputs configured by setup_logging():
    - Console: colored, written through tqdm.write() so progress bars survive
    - log_full_<ts>.log: every record at DEBUG and above
    - log_errors_<ts>.log: ERROR and CRITICAL only
    - acquisition_failures_<ts>.log: tracks no provider could deliver

Library code never configures handlers itself; it only calls
get_logger(__name__). Without setup_logging() the records propagate to
whatever the host application installed (pytest's caplog in the tests).

Usage:
    from simple_music.core.logger import setup_logging, get_logger

    setup_logging(output_dir)
    logger = get_logger(__name__)
    logger.info("Resolving streaming links")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


LOG_FULL_PREFIX = "log_full"
LOG_ERRORS_PREFIX = "log_errors"
ACQUISITION_FAILURES_PREFIX = "acquisition_failures"

FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Console formatter that colors the level name.

    DEBUG blue, INFO green, WARNING yellow, ERROR red, CRITICAL bold red.
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        return f"{color}{record.levelname}{Colors.RESET}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Handler that writes through tqdm.write().

    Plain stream handlers interleave with carriage-return based progress
    bars and leave half-drawn lines behind; tqdm.write() prints the message
    above any active bar instead.
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
        except Exception:
            self.handleError(record)


class AcquisitionFailedTrackHandler(logging.Handler):
    """
    Collects tracks that could not be acquired from any source.

    Only records carrying the 'acquisition_failed_track' extra field are
    written; everything else is ignored. Output format:

        Artist Name - Song Title
        spotify:3n3Ppam7vgaVa1iaRUc9Lp | lossless: Download failed on all services

    Attributes:
        report_path: Path to the acquisition_failures log file.
        report_file: Open file handle (None until open() is called).

    Usage:
        log_acquisition_failure(logger, metadata_display, spotify_id,
                                source="lossless", reason="...")
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open (truncate) the report file."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "acquisition_failed_track"):
            return
        if self.report_file is None:
            return

        try:
            track = getattr(record, "acquisition_failed_track", "Unknown")
            spotify_id = getattr(record, "acquisition_failed_spotify_id", None) or "-"
            source = getattr(record, "acquisition_failed_source", "unknown")
            reason = getattr(record, "acquisition_failed_reason", "")

            self.report_file.write(f"{track}\n")
            self.report_file.write(f"spotify:{spotify_id} | {source}: {reason}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """Close the report file handle. Safe to call multiple times."""
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Let only ERROR and CRITICAL records through."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(output_dir: Path, verbose: bool = False) -> Path:
    """
    Configure the root logger for a CLI run.

    Call once at startup, after the configuration is loaded.

    Args:
        output_dir: Directory in which a 'logs' subdirectory is created.
        verbose: Show DEBUG records on the console as well.

    Returns:
        Path: The logs directory that was created.

    Behavior:
        1. Create output_dir/logs
        2. Reset the root logger to DEBUG with no handlers
        3. Attach the console handler (INFO, or DEBUG when verbose)
        4. Attach full, error-only and acquisition-failure file handlers,
           all suffixed with the same timestamp
    """
    logs_dir = output_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    file_formatter = logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT)

    full_handler = logging.FileHandler(
        logs_dir / f"{LOG_FULL_PREFIX}_{timestamp}.log", mode="w", encoding="utf-8"
    )
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(file_formatter)
    root_logger.addHandler(full_handler)

    error_handler = logging.FileHandler(
        logs_dir / f"{LOG_ERRORS_PREFIX}_{timestamp}.log", mode="w", encoding="utf-8"
    )
    error_handler.setLevel(logging.DEBUG)  # ErrorOnlyFilter does the cut
    error_handler.setFormatter(file_formatter)
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    failures_handler = AcquisitionFailedTrackHandler(
        logs_dir / f"{ACQUISITION_FAILURES_PREFIX}_{timestamp}.log"
    )
    failures_handler.open()
    root_logger.addHandler(failures_handler)

    # Chatty third-party loggers
    for noisy in ("urllib3", "spotipy", "asyncio", "PIL"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logs_dir


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module, typically get_logger(__name__).

    Loggers obtained before setup_logging() still work; they simply
    propagate to whatever handlers the root logger has at that time.
    """
    return logging.getLogger(name)


def format_acquired_message(display_name: str, provider: str, path: Path) -> str:
    """Colored 'Acquired' line: which provider delivered which file."""
    return (
        f"{Colors.GREEN}Acquired{Colors.RESET}: {display_name} "
        f"[{Colors.MAGENTA}{provider}{Colors.RESET}] -> "
        f"{Colors.CYAN}{path}{Colors.RESET}"
    )


def format_no_match_message(display_name: str, reason: str) -> str:
    """Colored 'No match' line."""
    return f"{Colors.RED}No match{Colors.RESET}: {display_name} ({reason})"


def format_progress_message(completed: int, total: int, succeeded: int, failed: int) -> str:
    return (
        f"Progress: {completed}/{total} "
        f"(ok: {Colors.GREEN}{succeeded}{Colors.RESET}, "
        f"failed: {Colors.RED}{failed}{Colors.RESET})"
    )


def log_acquisition_failure(
    logger: logging.Logger,
    display_name: str,
    spotify_id: str | None,
    source: str,
    reason: str
) -> None:
    """
    Log a track that could not be acquired.

    Attaches the extra fields AcquisitionFailedTrackHandler looks for, so
    the failure also lands in the acquisition_failures report.

    Args:
        logger: Logger to emit through.
        display_name: "Artist - Title".
        spotify_id: Catalog ID, if known.
        source: 'lossless' or 'fallback'.
        reason: Human-readable failure reason.

    Example:
        log_acquisition_failure(
            logger, "Artist - Song", "3n3Ppam7vgaVa1iaRUc9Lp",
            source="lossless", reason="Download failed on all services"
        )
    """
    logger.warning(
        f"Acquisition failed ({source}): {display_name} - {reason}",
        extra={
            "acquisition_failed_track": display_name,
            "acquisition_failed_spotify_id": spotify_id,
            "acquisition_failed_source": source,
            "acquisition_failed_reason": reason,
        }
    )


def shutdown_logging() -> None:
    """Flush, close and detach every root handler. Call at exit."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            pass
        root_logger.removeHandler(handler)

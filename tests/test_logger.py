"""Tests for logging setup"""

import logging

import pytest

from simple_music.core.logger import (
    get_logger,
    log_acquisition_failure,
    setup_logging,
    shutdown_logging,
)


@pytest.fixture
def logs_dir(temp_dir):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    path = setup_logging(temp_dir)
    yield path
    shutdown_logging()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


class TestLogging:

    def test_log_files_created(self, logs_dir, temp_dir):
        assert logs_dir == temp_dir / "logs"
        names = sorted(p.name.split("_")[0] + "_" + p.name.split("_")[1] for p in logs_dir.iterdir())
        assert names == ["acquisition_failures", "log_errors", "log_full"]

    def test_errors_file_only_has_errors(self, logs_dir):
        logger = get_logger("simple_music.test")
        logger.info("just info")
        logger.error("something broke")
        for handler in logging.getLogger().handlers:
            handler.flush()

        errors = next(logs_dir.glob("log_errors_*.log")).read_text(encoding="utf-8")
        full = next(logs_dir.glob("log_full_*.log")).read_text(encoding="utf-8")

        assert "something broke" in errors
        assert "just info" not in errors
        assert "just info" in full

    def test_acquisition_failure_report(self, logs_dir):
        logger = get_logger("simple_music.test")

        log_acquisition_failure(
            logger, "Queen - Bohemian Rhapsody", "4u7EnebtmKWzUH433cf5Qv",
            source="lossless", reason="Download failed on all services",
        )

        report = next(logs_dir.glob("acquisition_failures_*.log")).read_text(encoding="utf-8")
        assert "Queen - Bohemian Rhapsody" in report
        assert "spotify:4u7EnebtmKWzUH433cf5Qv | lossless: Download failed on all services" in report

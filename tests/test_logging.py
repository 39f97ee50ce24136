"""
Tests for the logging configuration module.

Tests the centralized logging configuration functionality.
"""

import logging
import os
import time
from pathlib import Path
from unittest.mock import patch

from contactsync.utils.logging import (
    CONSOLE_FORMAT,
    DATE_FORMAT,
    LOGGER_NAME,
    VERBOSE_FORMAT,
    ColoredFormatter,
    cleanup_old_logs,
    disable_logging,
    enable_logging,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    set_log_level,
    setup_logging,
)


class TestConstants:
    """Tests for module constants."""

    def test_console_format_defined(self):
        """Test CONSOLE_FORMAT is defined."""
        assert "%(message)s" in CONSOLE_FORMAT

    def test_verbose_format_defined(self):
        """Test VERBOSE_FORMAT is defined."""
        assert "%(filename)s" in VERBOSE_FORMAT
        assert "%(lineno)d" in VERBOSE_FORMAT


class TestGetLogLevelFromEnv:
    """Tests for get_log_level_from_env function."""

    @patch.dict(os.environ, {"CONTACTSYNC_DEBUG": "1"}, clear=False)
    def test_debug_mode_from_env(self):
        """Test debug mode enabled with '1'."""
        assert get_log_level_from_env() == logging.DEBUG

    @patch.dict(
        os.environ,
        {"CONTACTSYNC_LOG_LEVEL": "WARNING", "CONTACTSYNC_DEBUG": ""},
        clear=False,
    )
    def test_log_level_warning(self):
        """Test WARNING log level from env."""
        assert get_log_level_from_env() == logging.WARNING

    @patch.dict(
        os.environ,
        {"CONTACTSYNC_LOG_LEVEL": "WARN", "CONTACTSYNC_DEBUG": ""},
        clear=False,
    )
    def test_warn_alias_for_warning(self):
        """Test WARN is an alias for WARNING."""
        assert get_log_level_from_env() == logging.WARNING

    @patch.dict(
        os.environ,
        {"CONTACTSYNC_LOG_LEVEL": "INVALID", "CONTACTSYNC_DEBUG": ""},
        clear=False,
    )
    def test_invalid_level_defaults_to_info(self):
        """Test invalid log level defaults to INFO."""
        assert get_log_level_from_env() == logging.INFO


class TestGetLogFilePath:
    """Tests for get_log_file_path function."""

    @patch.dict(os.environ, {"CONTACTSYNC_LOG_FILE": "/custom/path/app.log"})
    def test_custom_log_file_from_env(self):
        """Test custom log file path from environment."""
        assert get_log_file_path() == Path("/custom/path/app.log")

    @patch.dict(os.environ, {"CONTACTSYNC_LOG_FILE": "disabled"})
    def test_log_file_disabled(self):
        """Test log file disabled with 'disabled'."""
        assert get_log_file_path() is None

    def test_dated_file_in_log_dir(self, tmp_path, monkeypatch):
        """Test that the default file is a dated log in log_dir."""
        monkeypatch.delenv("CONTACTSYNC_LOG_FILE", raising=False)
        path = get_log_file_path(tmp_path)
        assert path.parent == tmp_path
        assert path.name.startswith("contactsync_")
        assert path.suffix == ".log"


class TestColoredFormatter:
    """Tests for ColoredFormatter class."""

    def test_formatter_with_colors_disabled(self):
        """Test formatter with colors explicitly disabled."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=False)
        assert formatter.use_colors is False

    @patch("sys.stderr")
    def test_formatter_non_tty(self, mock_stderr):
        """Test formatter detects non-TTY and disables colors."""
        mock_stderr.isatty.return_value = False
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=True)
        assert formatter.use_colors is False

    @patch.dict(os.environ, {"NO_COLOR": "1"})
    @patch("sys.stderr")
    def test_formatter_respects_no_color_env(self, mock_stderr):
        """Test formatter respects NO_COLOR environment variable."""
        mock_stderr.isatty.return_value = True
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=True)
        assert formatter.use_colors is False

    def test_colors_do_not_leak_into_record(self):
        """Test that formatting leaves the original record untouched."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=False)
        formatter.use_colors = True
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "boom", None, None)

        output = formatter.format(record)

        assert "\033[31m" in output
        assert record.levelname == "ERROR"
        assert record.msg == "boom"


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_returns_package_logger(self):
        """Test that the package root logger is configured."""
        logger = setup_logging(enable_file_logging=False)
        assert logger.name == LOGGER_NAME
        assert len(logger.handlers) == 1

    def test_verbose_sets_debug(self):
        """Test verbose mode enables DEBUG level."""
        logger = setup_logging(verbose=True, enable_file_logging=False)
        assert logger.level == logging.DEBUG

    def test_explicit_level(self):
        """Test an explicit level is used."""
        logger = setup_logging(level=logging.ERROR, enable_file_logging=False)
        assert logger.level == logging.ERROR

    def test_file_logging_in_log_dir(self, tmp_path, monkeypatch):
        """Test that a file handler writes into log_dir."""
        monkeypatch.delenv("CONTACTSYNC_LOG_FILE", raising=False)
        logger = setup_logging(log_dir=tmp_path / "logs")

        file_handlers = [
            h for h in logger.handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(file_handlers) == 1
        assert Path(file_handlers[0].baseFilename).parent == tmp_path / "logs"
        for handler in file_handlers:
            handler.close()

    def test_repeated_setup_does_not_duplicate_handlers(self):
        """Test that calling setup twice replaces handlers."""
        setup_logging(enable_file_logging=False)
        logger = setup_logging(enable_file_logging=False)
        assert len(logger.handlers) == 1


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs function."""

    def test_keeps_most_recent(self, tmp_path):
        """Test that only the newest keep_count logs survive."""
        now = time.time()
        for i in range(5):
            path = tmp_path / f"contactsync_2024010{i}.log"
            path.write_text("x")
            os.utime(path, (now - 100 + i, now - 100 + i))
        (tmp_path / "other.log").write_text("x")

        deleted = cleanup_old_logs(log_dir=tmp_path, keep_count=2)

        assert deleted == 3
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == [
            "contactsync_20240103.log",
            "contactsync_20240104.log",
            "other.log",
        ]

    def test_zero_keep_count_disables_cleanup(self, tmp_path):
        """Test that keep_count 0 deletes nothing."""
        (tmp_path / "contactsync_20240101.log").write_text("x")
        assert cleanup_old_logs(log_dir=tmp_path, keep_count=0) == 0

    def test_missing_directory(self, tmp_path):
        """Test that a missing directory is not an error."""
        assert cleanup_old_logs(log_dir=tmp_path / "missing") == 0


class TestLoggerHelpers:
    """Tests for get_logger and runtime level helpers."""

    def test_get_logger_prefixes_name(self):
        """Test that loggers are placed under the package logger."""
        assert get_logger("mymodule").name == "contactsync.mymodule"
        assert get_logger("contactsync.sync").name == "contactsync.sync"

    def test_set_log_level(self):
        """Test changing the level at runtime."""
        setup_logging(enable_file_logging=False)
        set_log_level(logging.WARNING)
        assert logging.getLogger(LOGGER_NAME).level == logging.WARNING

    def test_disable_and_enable(self):
        """Test toggling logging output."""
        disable_logging()
        assert logging.getLogger(LOGGER_NAME).disabled is True
        enable_logging()
        assert logging.getLogger(LOGGER_NAME).disabled is False

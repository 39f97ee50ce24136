"""
Logging setup for contactsync.

Everything logs under the "contactsync" logger. setup_logging() attaches a
console handler on stderr and, unless disabled, a dated DEBUG log file in
<config-dir>/logs. Levels can be forced from the environment:

    CONTACTSYNC_DEBUG=1            DEBUG everywhere
    CONTACTSYNC_LOG_LEVEL=WARNING  console level
    CONTACTSYNC_LOG_FILE=path      explicit log file ("disabled" turns it off)
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from contactsync.utils.paths import resolve_config_dir

LOGGER_NAME = "contactsync"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_PREFIX = "contactsync_"

ENV_LOG_LEVEL = "CONTACTSYNC_LOG_LEVEL"
ENV_DEBUG = "CONTACTSYNC_DEBUG"
ENV_LOG_FILE = "CONTACTSYNC_LOG_FILE"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_FILE_LOGGING_OFF = ("", "none", "disabled")


def get_default_log_dir() -> Path:
    """Logs directory inside the resolved configuration directory."""
    return resolve_config_dir() / "logs"


class ColoredFormatter(logging.Formatter):
    """
    Formatter that wraps the level name and message in ANSI colors.

    Colors are dropped when stderr is not a terminal, when NO_COLOR is set
    (https://no-color.org/) or when TERM is "dumb".
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._terminal_has_colors()

    @staticmethod
    def _terminal_has_colors() -> bool:
        isatty = getattr(sys.stderr, "isatty", None)
        if isatty is None or not isatty():
            return False
        if os.environ.get("NO_COLOR"):
            return False
        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return super().format(record)

        # Other handlers share the record
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        colored.msg = f"{color}{record.msg}{self.RESET}"
        return super().format(colored)


def get_log_level_from_env() -> int:
    """
    Logging level requested by the environment.

    CONTACTSYNC_DEBUG ("1", "true" or "yes") wins over CONTACTSYNC_LOG_LEVEL.
    Unknown level names fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    return _LEVELS.get(os.environ.get(ENV_LOG_LEVEL, "INFO").upper(), logging.INFO)


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Resolve the log file for this run.

    Args:
        log_dir: Directory for the dated log file; ignored when
                 CONTACTSYNC_LOG_FILE is set

    Returns:
        Log file path, or None when file logging is disabled
    """
    override = os.environ.get(ENV_LOG_FILE)
    if override is not None:
        if override.lower() in _FILE_LOGGING_OFF:
            return None
        return Path(override)

    name = f"{LOG_FILE_PREFIX}{datetime.now().strftime('%Y%m%d')}.log"
    return (log_dir or get_default_log_dir()) / name


def _console_handler(level: int, verbose: bool, use_colors: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    fmt = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    if use_colors:
        handler.setFormatter(ColoredFormatter(fmt, DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(fmt, DATE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    # The file always gets everything
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the contactsync logger.

    Calling it again replaces the handlers of the previous call.

    Args:
        level: Console level; taken from the environment when None
        verbose: Force DEBUG and use the detailed console format
        log_dir: Directory for the dated log file
        log_file: Explicit log file, overrides log_dir
        enable_file_logging: Attach the file handler
        use_colors: Color console output when the terminal supports it

    Returns:
        The configured "contactsync" logger
    """
    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False
    logger.addHandler(_console_handler(level, verbose, use_colors))

    if not enable_file_logging:
        return logger

    path = log_file or get_log_file_path(log_dir)
    if path is None:
        return logger
    try:
        logger.addHandler(_file_handler(path))
    except OSError as e:
        logger.warning(f"Could not create log file {path}: {e}")
    else:
        logger.debug(f"Log file: {path}")
    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Delete dated log files beyond the keep_count most recent.

    A keep_count of 0 or less disables cleanup.

    Returns:
        Number of files deleted
    """
    if keep_count <= 0:
        return 0
    directory = log_dir or get_default_log_dir()
    if not directory.is_dir():
        return 0

    logs = sorted(
        directory.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    deleted = 0
    for stale in logs[keep_count:]:
        try:
            stale.unlink()
        except OSError as e:
            logging.getLogger(LOGGER_NAME).debug(f"Could not delete {stale}: {e}")
        else:
            deleted += 1
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Logger placed under the contactsync hierarchy."""
    if name.startswith(LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def set_log_level(level: int) -> None:
    """Change the console level at runtime. The file handler stays at DEBUG."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


def disable_logging() -> None:
    logging.getLogger(LOGGER_NAME).disabled = True


def enable_logging() -> None:
    logging.getLogger(LOGGER_NAME).disabled = False


__all__ = [
    "setup_logging",
    "get_logger",
    "set_log_level",
    "disable_logging",
    "enable_logging",
    "cleanup_old_logs",
    "ColoredFormatter",
    "get_log_level_from_env",
    "get_log_file_path",
    "get_default_log_dir",
    "LOGGER_NAME",
    "DEFAULT_FORMAT",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
]

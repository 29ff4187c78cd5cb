"""Logging configuration for chatlog-ingest.

Provides centralized logging setup with file output to ~/chatlog-ingest/logs/,
plus a small bridge that mirrors parser log lines to a caller's ``on_log``
callback.
"""

import logging
import sys
from collections.abc import Callable
from pathlib import Path

# Default log directory
DEFAULT_LOG_DIR = Path.home() / "chatlog-ingest" / "logs"

LogCallback = Callable[[str, str], None]


def resolve_level(level: int | str) -> int:
    """Turn a level name from config ("debug", "INFO") into a logging level."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int | str = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for a chatlog-ingest component.

    Creates a logger with both file and optional console handlers.
    Log files are written to <log_dir>/<name>.log.

    Args:
        name: Logger name (used for log filename)
        log_dir: Directory for log files (defaults to ~/chatlog-ingest/logs/)
        level: Logging level or level name (defaults to INFO)
        console: Whether to also log to stderr (defaults to True)

    Returns:
        Configured logger instance
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR
    level = resolve_level(level)

    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(f"chatlog_ingest.{name}")
    logger.setLevel(level)

    # Import workers call this once per process; don't stack handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a chatlog-ingest component.

    Returns an existing logger or creates a basic one. For file output,
    use setup_logging().

    Args:
        name: Logger name (will be prefixed with 'chatlog_ingest.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"chatlog_ingest.{name}")


def log_forwarder(logger: logging.Logger, on_log: LogCallback | None) -> LogCallback:
    """Build a ``(level, message)`` callable that logs and mirrors to ``on_log``.

    Args:
        logger: Logger receiving every line
        on_log: Optional caller callback; gets "info" or "error" levels only

    Returns:
        Callable accepting a level name and a message
    """

    def emit(level: str, message: str) -> None:
        logger.log(resolve_level(level), message)
        if on_log is not None:
            on_log("error" if level in ("error", "warning") else "info", message)

    return emit

"""Loguru logging setup for loopback-mcp.

Usage:
    from loopback_mcp.daemon.logging_setup import setup_logging

    setup_logging(log_level="INFO")

Features:
    - Thread-safe sinks with enqueue=True (the lifecycle worker, the
      HTTP engine thread and the caller all log concurrently)
    - Automatic rotation (10 MB) and retention (7 days) for the file sink
    - Colored console output on stderr
"""

import sys
from pathlib import Path

from loguru import logger

from .paths import get_logs_dir

# stderr, colorized
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# server.log, plain text
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | "
    "{level: <8} | "
    "{name}:{function}:{line} | "
    "{message}"
)


def setup_logging(
    log_level: str | None = None,
    console: bool = True,
    file: bool = False,
    log_dir: Path | str | None = None,
    serialize_file: bool = False,
) -> Path | None:
    """Replace every loguru sink with the stderr and/or file sinks requested.

    Callers should call ``logger.complete()`` before process exit so the
    enqueue thread drains.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Defaults to INFO.
        console: Log to stderr.
        file: Enable file output.
        log_dir: Directory for log files (default: platform logs directory).
        serialize_file: Write file records as JSON lines.

    Returns:
        Path of the log file when the file sink is enabled, else None.
    """
    logger.remove()

    if log_level is None:
        log_level = "INFO"
    log_level = log_level.upper()

    if console and sys.stderr is not None:
        logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=log_level,
            colorize=True,
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    if not file:
        return None

    log_dir = Path(log_dir) if log_dir is not None else get_logs_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "server.log"

    logger.add(
        str(log_file),
        level=log_level,
        format=FILE_FORMAT,
        rotation="10 MB",
        retention="7 days",
        compression="gz",
        serialize=serialize_file,
        enqueue=True,
        backtrace=True,
        diagnose=False,  # SECURITY: no variable values in files
    )
    return log_file

"""
koko-ms Structured Logging.

    - Numeric log levels (1-4) for simplified configuration
    - Colored console output for humans, on stderr by default so that
      stdout stays free for streamed audio
    - Optional rotating JSONL file output for machine parsing
    - Request id and worker id correlation through contextvars

Log Levels:
    1 = MINIMAL  - Startup, shutdown, fatal errors only
    2 = NORMAL   - Request and batch lifecycle (default)
    3 = VERBOSE  - Per-chunk timing, pool waits
    4 = DEBUG    - Lease tokens, queue state

Configuration:
    export KOKO_MS_LOG_LEVEL=3  # VERBOSE
    export KOKO_MS_NO_COLOR=1   # Disable colors

    In settings.yaml:
        logging:
          level: 2
          log_dir: logs
          jsonl_file: koko-ms.jsonl

Usage:
    from koko_ms.core.logging import get_logger, info, warn, error

    log = get_logger("koko-ms.mymodule")

    info(log, "batch_started", chunks=12)
    warn(log, "chunk_failed", chunk=4, error="...")
    verbose(log, "chunk_done", chunk=1, seconds=0.42)
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Any, Optional

from .levels import LogLevel, LEVEL_MAP, LEVEL_NAMES, coerce_level
from .colors import Colors, supports_color, get_tag_color
from .context import (
    get_request_id,
    set_request_id,
    get_worker_id,
    set_worker_id,
    get_level,
    set_level,
    get_level_name,
    is_configured,
    set_configured,
    get_log_config,
    set_log_config,
    read_logging_config,
)
from .formatters import JsonlFormatter, ColoredConsoleFormatter


def configure_logging(
    level: Optional[int | str | LogLevel] = None,
    force: bool = False,
    stream: Optional[IO[str]] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (1-4, level name, or LogLevel enum). When omitted
            the settings file and KOKO_MS_LOG_LEVEL decide.
        force: Reconfigure even if already configured.
        stream: Console stream, stderr by default.
    """
    if is_configured() and not force:
        return

    stream = stream if stream is not None else sys.stderr

    log_config = read_logging_config()
    set_log_config(log_config)

    current_level = coerce_level(level if level is not None else log_config.get("level", LogLevel.NORMAL))
    set_level(current_level)

    python_level = LEVEL_MAP.get(current_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG - 10)  # filtered per handler
    root.handlers = []

    console = logging.StreamHandler(stream)
    console.setLevel(python_level)
    console.setFormatter(ColoredConsoleFormatter(use_colors=supports_color(stream)))
    root.addHandler(console)

    log_dir = log_config.get("log_dir")
    if log_dir:
        jsonl_file = log_config.get("jsonl_file", "koko-ms.jsonl")
        max_bytes = int(log_config.get("rotate_max_bytes", 10 * 1024 * 1024))
        backup_count = int(log_config.get("rotate_backup_count", 5))
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            Path(log_dir) / str(jsonl_file),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        file_handler.setLevel(logging.DEBUG - 10)
        file_handler.setFormatter(JsonlFormatter())
        root.addHandler(file_handler)

    set_configured(True)


def _log(
    logger: logging.Logger,
    level: int,
    tag: str,
    msg: str,
    numeric_level: int = 2,
    exc_info: Any = None,
    **fields: Any
) -> None:
    if numeric_level > get_level():
        return

    event = fields.pop("event", None)
    seconds = fields.pop("seconds", None)
    logger.log(
        level,
        msg,
        exc_info=exc_info,
        extra={
            "tag": tag,
            "request_id": get_request_id(),
            "worker_id": get_worker_id(),
            "event": event,
            "seconds": seconds,
            "extra_data": fields or None,
            "numeric_level": numeric_level,
        },
    )


def get_logger(name: str = "koko-ms") -> logging.Logger:
    """Get a logger instance, configuring logging if needed."""
    configure_logging()
    return logging.getLogger(name)


def info(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Log an info message (level 2 = NORMAL)."""
    _log(logger, logging.INFO, "INFO", msg, numeric_level=2, **fields)


def warn(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Log a warning message (level 2 = NORMAL)."""
    _log(logger, logging.WARNING, "WARN", msg, numeric_level=2, **fields)


def error(logger: logging.Logger, msg: str, exc_info: Any = None, **fields: Any) -> None:
    """Log an error message (level 1 = MINIMAL)."""
    _log(logger, logging.ERROR, "ERROR", msg, numeric_level=1, exc_info=exc_info, **fields)


def success(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Log a success message (level 2 = NORMAL)."""
    _log(logger, logging.INFO, "SUCCESS", msg, numeric_level=2, **fields)


def fail(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Log a failure message (level 1 = MINIMAL)."""
    _log(logger, logging.ERROR, "FAIL", msg, numeric_level=1, **fields)


def verbose(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Log a verbose message (level 3 = VERBOSE)."""
    _log(logger, logging.DEBUG, "INFO", msg, numeric_level=3, **fields)


def debug(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Log a debug message (level 4 = DEBUG)."""
    _log(logger, logging.DEBUG, "DEBUG", msg, numeric_level=4, **fields)


def trace(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Log a trace message (level 4 = DEBUG)."""
    _log(logger, logging.DEBUG - 5, "TRACE", msg, numeric_level=4, **fields)


__all__ = [
    "LogLevel",
    "LEVEL_MAP",
    "LEVEL_NAMES",
    "coerce_level",
    "Colors",
    "supports_color",
    "get_tag_color",
    "get_request_id",
    "set_request_id",
    "get_worker_id",
    "set_worker_id",
    "get_level",
    "get_level_name",
    "get_log_config",
    "JsonlFormatter",
    "ColoredConsoleFormatter",
    "configure_logging",
    "get_logger",
    "info",
    "warn",
    "error",
    "success",
    "fail",
    "verbose",
    "debug",
    "trace",
]

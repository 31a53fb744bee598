"""
Logging context and configuration state.

Two context variables tag every log record:

    request_id  - set by the HTTP middleware and the CLI per operation
    worker_id   - set while an inference job runs on a pool instance

Both use ``contextvars`` so they follow asyncio tasks. Thread pool jobs
run inside a copied context (see tts/dispatcher.py), which carries the
request id onto the worker thread.

Environment Variables:
    - KOKO_MS_LOG_LEVEL: Override log level (1-4 or name)
    - KOKO_MS_LOG_DIR: Directory for the JSONL log file
    - KOKO_MS_JSONL_FILE: JSONL filename
    - KOKO_MS_LOG_ROTATE_BYTES: Max log file size
    - KOKO_MS_LOG_ROTATE_BACKUP: Number of backup files
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict, Optional

from .levels import LEVEL_NAMES, LogLevel

_request_id: ContextVar[str] = ContextVar("request_id", default="-")
_worker_id: ContextVar[Optional[int]] = ContextVar("worker_id", default=None)

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Request id of the current context, or "-" outside a request."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    _request_id.set(rid)


def get_worker_id() -> Optional[int]:
    """Pool instance serving the current job, or None."""
    return _worker_id.get()


def set_worker_id(worker_id: Optional[int]) -> None:
    _worker_id.set(worker_id)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve logging options from the settings file and environment.

    Priority (highest first):
        1. KOKO_MS_LOG_* environment variables
        2. ``logging`` section of the settings file named by KOKO_MS_SETTINGS
           (or config/settings.yaml)
        3. Defaults

    A missing or unreadable settings file is not an error here; the
    settings loader reports it when the application actually needs it.
    """
    import yaml

    from koko_ms.core.config import ConfigError, load_settings

    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("KOKO_MS_SETTINGS", "config/settings.yaml")
    try:
        settings = load_settings(settings_path)
        cfg.update(settings.raw.get("logging", {}) or {})
    except (FileNotFoundError, ConfigError, yaml.YAMLError):
        pass

    if os.getenv("KOKO_MS_LOG_LEVEL"):
        cfg["level"] = os.environ["KOKO_MS_LOG_LEVEL"]
    if os.getenv("KOKO_MS_LOG_DIR"):
        cfg["log_dir"] = os.environ["KOKO_MS_LOG_DIR"]
    if os.getenv("KOKO_MS_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["KOKO_MS_JSONL_FILE"]

    rotate_bytes = _env_int("KOKO_MS_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _env_int("KOKO_MS_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg

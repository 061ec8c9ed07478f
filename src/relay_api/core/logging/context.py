"""
Request Context and Configuration State for Logging.

The request id lives in a ContextVar so every log line emitted while a
request is in flight (pipeline stages, provider adapters, the call logger's
secondary channel) carries the same correlation id, including when FastAPI
runs the handler in its worker threadpool.

Environment Variables:
    - RELAY_LOG_LEVEL: Override log level (1-4 or name)
    - RELAY_LOG_DIR: Directory for the JSONL log file
    - RELAY_JSONL_FILE: JSONL filename
    - RELAY_LOG_ROTATE_BYTES: Max log file size before rotation
    - RELAY_LOG_ROTATE_BACKUP: Number of rotated files to keep
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

from .levels import LEVEL_NAMES, LogLevel

# "-" outside of a request
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Return the request id of the current context, or "-"."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """
    Bind a request id to the current context.

    Args:
        rid: Request identifier (12-char uuid prefix in the HTTP layer).
    """
    _request_id.set(rid)


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


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve logging configuration.

    Priority (highest first):
        1. RELAY_LOG_* environment variables
        2. ``logging`` section of the settings file (RELAY_SETTINGS)
        3. Defaults applied by configure_logging()

    Returns:
        Dictionary with keys level, log_dir, jsonl_file,
        rotate_max_bytes and rotate_backup_count (any may be absent).
    """
    from relay_api.core.config import ConfigValidationError, load_settings

    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("RELAY_SETTINGS", "config/settings.yaml")
    try:
        settings = load_settings(settings_path)
        cfg.update(settings.raw.get("logging", {}) or {})
    except (OSError, ConfigValidationError):
        # Unreadable settings file; logging must still come up
        pass

    if os.getenv("RELAY_LOG_LEVEL"):
        cfg["level"] = os.environ["RELAY_LOG_LEVEL"]
    if os.getenv("RELAY_LOG_DIR"):
        cfg["log_dir"] = os.environ["RELAY_LOG_DIR"]
    if os.getenv("RELAY_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["RELAY_JSONL_FILE"]

    rotate_bytes = _env_int("RELAY_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _env_int("RELAY_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg

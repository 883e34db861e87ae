"""
Session context and configuration state for logging.

A ``ContextVar`` carries the current session id so that every log line
emitted while a pipeline session runs (including inside its asyncio
tasks, which copy the context on creation) can be correlated.

Environment Variables:
    - TTS_STREAM_LOG_LEVEL: Override log level (1-4 or name)
    - TTS_STREAM_LOG_DIR: Directory for the JSONL log file
    - TTS_STREAM_JSONL_FILE: JSONL filename
    - TTS_STREAM_LOG_ROTATE_BYTES: Max log file size before rotation
    - TTS_STREAM_LOG_ROTATE_BACKUP: Number of rotated files to keep
    - TTS_STREAM_SETTINGS: Path of the settings file to read
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

# "-" outside of any session
_session_id: ContextVar[str] = ContextVar("session_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_session_id() -> str:
    """Return the session id bound to the current context, or "-"."""
    return _session_id.get()


def set_session_id(sid: str) -> None:
    """Bind a session id to the current context."""
    _session_id.set(sid)


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

    Priority (highest first): environment variables, the ``logging``
    section of the settings file, built-in defaults. A missing or
    unreadable settings file is not an error here; logging must come up
    before configuration problems can be reported.
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("TTS_STREAM_SETTINGS", "config/settings.yaml")
    try:
        from tts_stream.core.config import load_settings
        settings = load_settings(settings_path, required=False)
        cfg.update(settings.raw.get("logging", {}) or {})
    except (OSError, ValueError, yaml.YAMLError):
        pass

    if os.getenv("TTS_STREAM_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_STREAM_LOG_LEVEL"]
    if os.getenv("TTS_STREAM_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_STREAM_LOG_DIR"]
    if os.getenv("TTS_STREAM_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_STREAM_JSONL_FILE"]

    rotate_bytes = _env_int("TTS_STREAM_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _env_int("TTS_STREAM_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg

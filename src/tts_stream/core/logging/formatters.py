"""
Log formatters for console and JSONL output.

    JsonlFormatter: one JSON object per line, for the rotating file log.
    ColoredConsoleFormatter: human-readable terminal lines.

Console example:
    14:30:05 [ INFO  ] (3f9a1c2b) segment_ready index=4 0.842s
    14:30:07 [ WARN  ] (3f9a1c2b) rate_limited wait_s=12.4 credential=...x9Qa

Pipeline fields get threshold colors: ``wait_s``/``remaining_s`` (green
under 1s, yellow under 10s, red above), ``attempt`` (yellow once a retry
is in progress), ``load`` (cyan).
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from . import colors
from .colors import Colors, get_tag_color


def _paint(text: str, color: str) -> str:
    # Read the flag at call time; configure_logging() and tests may change it.
    if not colors.USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


class JsonlFormatter(logging.Formatter):
    """
    Format records as single-line JSON objects.

    Keys: ts, level (1-4), tag, message, session_id, and when present
    event, seconds and extra.
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone().isoformat()

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "session_id": getattr(record, "session_id", "-"),
        }

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Format records as ``HH:MM:SS [ TAG ] (sid) message key=value 0.123s``."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        sid = getattr(record, "session_id", "-")

        parts = [
            _paint(ts, Colors.DIM),
            _paint(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if sid != "-":
            parts.append(_paint(f"({sid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(_paint(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            parts.append(_paint(f"{seconds:.3f}s", _duration_color(seconds)))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for k, v in extra_data.items():
                parts.append(_paint(f"{k}={v}", self._field_color(k, v)))

        return " ".join(parts)

    def _field_color(self, key: str, value: Any) -> str:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return Colors.DIM

        if key in ("wait_s", "remaining_s", "cooldown_s"):
            if value < 1.0:
                return Colors.GREEN
            if value < 10.0:
                return Colors.YELLOW
            return Colors.RED

        if key == "attempt":
            return Colors.DIM if value <= 1 else Colors.YELLOW

        if key == "load":
            return Colors.CYAN

        return Colors.DIM


def _duration_color(seconds: float) -> str:
    if seconds < 0.1:
        return Colors.GREEN
    if seconds < 1.0:
        return Colors.YELLOW
    return Colors.RED

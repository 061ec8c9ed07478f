"""
Log Formatters for JSON and Console Output.

    JsonlFormatter: one JSON object per line for the log file
    ColoredConsoleFormatter: human-readable, ANSI-colored terminal lines

Output Examples:
    JSONL (file):
        {"ts":"2025-03-02T10:15:04+00:00","level":2,"tag":"INFO","message":"cache_hit","request_id":"8f3a2c1d9b0e","extra":{"key":"completion:5a2b"}}

    Console (colored):
        10:15:04 [ INFO  ] (8f3a2c1d9b0e) cache_hit key=completion:5a2b

Colors are disabled when stdout is not a TTY, when NO_COLOR is set, or when
RELAY_NO_COLOR=1.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict


class Colors:
    """ANSI escape codes."""
    RESET = "\033[0m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GRAY = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


_TAG_COLORS = {
    "SUCCESS": Colors.BRIGHT_GREEN,
    "FAIL": Colors.BRIGHT_RED,
    "ERROR": Colors.BRIGHT_RED,
    "WARN": Colors.BRIGHT_YELLOW,
    "WARNING": Colors.BRIGHT_YELLOW,
    "INFO": Colors.BRIGHT_CYAN,
    "DEBUG": Colors.GRAY,
}

# HTTP status fields are colored by class
_STATUS_KEYS = {"status", "response_status"}


def supports_color() -> bool:
    """Return True when ANSI colors should be written to stdout."""
    if os.getenv("RELAY_NO_COLOR", "0") == "1":
        return False
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def get_tag_color(tag: str) -> str:
    return _TAG_COLORS.get(tag.upper(), Colors.WHITE)


class JsonlFormatter(logging.Formatter):
    """
    Format log records as JSON Lines.

    Output keys: ts, level (1-4), tag, message, request_id, and when present
    event, seconds and extra (the keyword fields passed to the log helper).
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone().isoformat()

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
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
    """
    Format log records for the terminal.

    Output Format:
        HH:MM:SS [ TAG   ] (rid) message event=... key=value 0.123s

    Timing is green under 100ms, yellow under 1s and red above. Status
    fields are green for 2xx, yellow for 4xx and red for 5xx.
    """

    def __init__(self, use_colors: bool | None = None) -> None:
        super().__init__()
        self.use_colors = supports_color() if use_colors is None else use_colors

    def _c(self, text: str, color: str) -> str:
        if not self.use_colors:
            return text
        return f"{color}{text}{Colors.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [self._c(ts, Colors.DIM), self._c(f"[{tag:^7}]", get_tag_color(tag))]
        if rid != "-":
            parts.append(self._c(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(self._c(f"event={event}", Colors.BLUE))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for k, v in extra_data.items():
                parts.append(self._c(f"{k}={v}", self._field_color(k, v)))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.1:
                time_color = Colors.GREEN
            elif seconds < 1.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(self._c(f"{seconds:.3f}s", time_color))

        if record.exc_info:
            parts.append("\n" + self.formatException(record.exc_info))

        return " ".join(parts)

    @staticmethod
    def _field_color(key: str, value: Any) -> str:
        if key in _STATUS_KEYS and isinstance(value, int):
            if value < 400:
                return Colors.GREEN
            if value < 500:
                return Colors.YELLOW
            return Colors.RED
        if key == "cache" and value == "hit":
            return Colors.GREEN
        return Colors.DIM

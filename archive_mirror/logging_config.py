"""
Logging Configuration — One stderr handler for the whole process.

Sync attempts run on worker threads and log with ``extra={"mirror": name}``.
The JSON formatter lifts that field (and the thread name) into the entry,
so log shippers can filter on a single mirror.

## Environment Variables

- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- LOG_FORMAT: json, text (default: text)

## Usage

    from archive_mirror.logging_config import setup_logging

    setup_logging()  # once, from the CLI entry point
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Any, Dict, Optional

# Record attributes copied into JSON entries when present
CONTEXT_FIELDS = ("mirror",)

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "werkzeug")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"ts": "...", "level": "...", "logger": "...", "thread": "...", "message": "...", "mirror": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class HumanFormatter(logging.Formatter):
    """
    Compact single-line format, coloured when stderr is a terminal.

    12:34:56 INFO    [pipeline       ] [docs] Sync complete: ...
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: Optional[bool] = None):
        super().__init__()
        self.color = sys.stderr.isatty() if color is None else color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:7}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        source = record.name.rsplit(".", 1)[-1][:15]

        text = f"{stamp} {level} [{source:15}] {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """
    Replace the root handlers with a single configured stream handler.

    Args:
        level: Log level name; defaults to LOG_LEVEL or INFO. Unknown
               names fall back to INFO.
        format_type: ``json`` or ``text``; defaults to LOG_FORMAT or text.
        stream: Destination stream (default: stderr)
    """
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    fmt = (format_type or os.environ.get("LOG_FORMAT") or "text").lower()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else HumanFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # The admin app logs its own requests, werkzeug's access log is noise
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured: level={level_name}, format={fmt}")

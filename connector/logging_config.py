"""Structured JSON logging plus an optional plain-text operational log.

Console output is one JSON object per line so runs launched from schedulers
can be filtered by ``site``/``library``/``outcome``. The operational log is a
human-readable file that an operator can tail during long trims.

Usage::

    from connector.logging_config import configure_logging
    configure_logging(text_log_path="logs/trim.log")
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

# Fields that engine code passes via ``extra={}`` on log calls.
_KNOWN_EXTRA_FIELDS = frozenset(
    {
        "site",
        "library",
        "file_ref",
        "item_id",
        "action",
        "result",
        "attempt",
        "delay_seconds",
        "outcome",
        "mode",
        "processed",
    }
)

_LEVEL_TO_SEVERITY = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARNING",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRITICAL",
}

TEXT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonLineFormatter(logging.Formatter):
    """Emit one JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "severity": _LEVEL_TO_SEVERITY.get(record.levelno, "DEFAULT"),
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
        }

        for field in _KNOWN_EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.levelno >= logging.ERROR:
            payload["stack_trace"] = "".join(
                traceback.format_exception(*record.exc_info)
            )

        return json.dumps(payload, default=str)


def configure_logging(
    text_log_path: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    json_console: bool = True,
) -> None:
    """Install handlers on the root logger.

    Safe to call multiple times; existing handlers are removed first.
    """
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JsonLineFormatter() if json_console else logging.Formatter(TEXT_LOG_FORMAT))
    root.addHandler(console)

    if text_log_path:
        path = Path(text_log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))
        root.addHandler(file_handler)

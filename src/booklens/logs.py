"""Logging helpers: an LLM response level and an in-memory recent-log buffer."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any

__all__ = [
    "LLM",
    "RecentLogBuffer",
    "configure_logging",
    "log_llm_response",
]

LLM = 15
logging.addLevelName(LLM, "LLM")

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


class RecentLogBuffer(logging.Handler):
    """Keeps the most recent log records for diagnostics endpoints or the CLI."""

    def __init__(self, capacity: int = 100, level: int = logging.NOTSET) -> None:
        super().__init__(level=level)
        self._records: deque[dict[str, Any]] = deque(maxlen=capacity)
        self._buffer_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "type": record.levelname,
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "logger": record.name,
                "message": record.getMessage(),
            }
        except Exception:
            self.handleError(record)
            return
        with self._buffer_lock:
            self._records.append(entry)

    def recent(self) -> list[dict[str, Any]]:
        with self._buffer_lock:
            return list(self._records)

    def clear(self) -> None:
        with self._buffer_lock:
            self._records.clear()


def log_llm_response(logger: logging.Logger, source: str, response: str) -> None:
    """Log a raw model response framed by its source label."""

    logger.log(
        LLM,
        "===== LLM RESPONSE (%s) =====\n%s\n================================",
        source,
        response,
    )


def configure_logging(*, verbose: bool = False, capacity: int = 100) -> RecentLogBuffer:
    """Install console logging for the ``booklens`` namespace and return the recent-log buffer."""

    root = logging.getLogger("booklens")
    root.setLevel(LLM if verbose else logging.INFO)

    for handler in list(root.handlers):
        if isinstance(handler, (RecentLogBuffer, logging.StreamHandler)):
            root.removeHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    root.addHandler(console)

    buffer = RecentLogBuffer(capacity=capacity)
    root.addHandler(buffer)
    return buffer

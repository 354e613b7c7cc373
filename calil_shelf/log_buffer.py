"""Keeps the most recent log records in memory for the /api/logs endpoint."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone

from .config import LOG_BUFFER_SIZE


class RingBufferHandler(logging.Handler):
    def __init__(self, capacity: int = LOG_BUFFER_SIZE, level: int = logging.NOTSET):
        super().__init__(level)
        self._records: deque[dict] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname.lower(),
                "logger": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                entry["exception"] = logging.Formatter().formatException(record.exc_info)
        except Exception:
            self.handleError(record)
            return
        self._records.append(entry)

    def entries(self, limit: int | None = None) -> list[dict]:
        records = list(self._records)
        if limit:
            return records[-limit:]
        return records

    def clear(self) -> None:
        self._records.clear()


log_buffer = RingBufferHandler()

"""In-memory ring buffer of recent log entries for the dashboard log viewer."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class BufferedRecord:
    timestamp: str
    level: str
    logger: str
    message: str


class RingBufferHandler(logging.Handler):
    """Logging handler that keeps the last N records."""

    def __init__(self, capacity: int = 500) -> None:
        super().__init__()
        self._buffer: deque[BufferedRecord] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = BufferedRecord(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=self.format(record),
            )
            with self._lock:
                self._buffer.append(entry)
        except Exception:
            self.handleError(record)

    def get_records(self, limit: int = 200, min_level: str | None = None) -> list[dict]:
        """Return recent records, newest first, optionally at or above a level."""
        with self._lock:
            records = list(self._buffer)
        if min_level and min_level.upper() in _LEVELS:
            floor = _LEVELS.index(min_level.upper())
            records = [
                r for r in records
                if r.level in _LEVELS and _LEVELS.index(r.level) >= floor
            ]
        records.reverse()
        return [asdict(r) for r in records[:limit]]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()


log_buffer = RingBufferHandler()

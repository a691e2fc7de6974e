"""Operator notifications (toasts): informational, never blocking."""

from __future__ import annotations

import itertools
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    id: int
    timestamp: float
    level: NotificationLevel
    message: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["level"] = self.level.value
        return data


class Notifier:
    """Bounded ring of the most recent notifications."""

    def __init__(self, capacity: int = 50, clock: Callable[[], float] = time.time) -> None:
        self._items: deque[Notification] = deque(maxlen=capacity)
        self._ids = itertools.count(1)
        self._clock = clock

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> Notification:
        item = Notification(
            id=next(self._ids), timestamp=self._clock(), level=level, message=message,
        )
        self._items.append(item)
        logger.debug("Notification [%s]: %s", level.value, message)
        return item

    def info(self, message: str) -> Notification:
        return self.notify(message, NotificationLevel.INFO)

    def success(self, message: str) -> Notification:
        return self.notify(message, NotificationLevel.SUCCESS)

    def warning(self, message: str) -> Notification:
        return self.notify(message, NotificationLevel.WARNING)

    def error(self, message: str) -> Notification:
        return self.notify(message, NotificationLevel.ERROR)

    def recent(self, limit: int = 20, after_id: int = 0) -> list[dict]:
        """Newest first; ``after_id`` lets a client fetch only unseen items."""
        items = [n for n in self._items if n.id > after_id]
        items.reverse()
        return [n.to_dict() for n in items[:limit]]

    def __len__(self) -> int:
        return len(self._items)

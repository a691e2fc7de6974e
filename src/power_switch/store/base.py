"""Realtime store protocol: the only channel to the field controller."""

from __future__ import annotations

import itertools
import logging
import time
from typing import Any, Callable, Coroutine, Protocol, runtime_checkable

from power_switch.store.paths import is_related

logger = logging.getLogger(__name__)

# Handler receives the full value at the subscribed path (None when empty)
ValueHandler = Callable[[Any], Coroutine[Any, Any, None]]
ConnectionHandler = Callable[[bool], Coroutine[Any, Any, None]]


class StoreError(Exception):
    """Realtime store I/O failed."""


class StoreWriteError(StoreError):
    """A write, merge or push did not reach the store."""


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to stop delivery."""

    def __init__(self, path: str, handler: Callable, cancel: Callable[[], None]) -> None:
        self.path = path
        self.handler = handler
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cancel()


class SubscriptionRegistry:
    """Tracks value subscriptions and connection watchers for a store."""

    def __init__(self) -> None:
        self._subs: list[Subscription] = []
        self._watchers: list[Subscription] = []

    def add(self, path: str, handler: ValueHandler) -> Subscription:
        sub = Subscription(path, handler, cancel=lambda: None)
        sub._cancel = lambda: self._subs.remove(sub)
        self._subs.append(sub)
        return sub

    def add_watcher(self, handler: ConnectionHandler) -> Subscription:
        sub = Subscription(".info/connected", handler, cancel=lambda: None)
        sub._cancel = lambda: self._watchers.remove(sub)
        self._watchers.append(sub)
        return sub

    def affected_by(self, changed_path: str) -> list[Subscription]:
        """Subscriptions whose value may have changed after a write to changed_path."""
        return [s for s in self._subs if is_related(s.path, changed_path)]

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subs)

    @property
    def watchers(self) -> list[Subscription]:
        return list(self._watchers)

    def clear(self) -> None:
        for sub in self._subs + self._watchers:
            sub._active = False
        self._subs.clear()
        self._watchers.clear()


async def deliver(sub: Subscription, value: Any) -> None:
    """Invoke a subscription handler, logging (never raising) its errors."""
    if not sub.active:
        return
    try:
        await sub.handler(value)
    except Exception:
        logger.exception("Store subscription handler error for %s", sub.path)


_push_counter = itertools.count()


def make_push_key() -> str:
    """Time-ordered unique child key for append-only lists."""
    return f"{int(time.time() * 1000):013d}-{next(_push_counter) % 10000:04d}"


@runtime_checkable
class RealtimeStore(Protocol):
    """Protocol for realtime store transports to implement."""

    @property
    def is_connected(self) -> bool:
        ...

    async def connect(self) -> None:
        """Open the connection to the store."""
        ...

    async def disconnect(self) -> None:
        """Close the connection and stop all subscriptions."""
        ...

    def subscribe(self, path: str, handler: ValueHandler) -> Subscription:
        """Deliver the latest value at path, then every later change."""
        ...

    def watch_connection(self, handler: ConnectionHandler) -> Subscription:
        """Deliver the current connectivity state, then every change."""
        ...

    async def get(self, path: str) -> Any:
        """One-shot read."""
        ...

    async def set(self, path: str, value: Any) -> None:
        """Replace the value at path."""
        ...

    async def update(self, path: str, value: dict[str, Any]) -> None:
        """Merge children into the value at path."""
        ...

    async def push(self, path: str, value: Any) -> str:
        """Append value under a new unique child key; returns the key."""
        ...

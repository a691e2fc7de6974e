"""In-process realtime store for development, simulation and tests."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from power_switch.store.base import (
    ConnectionHandler,
    StoreWriteError,
    Subscription,
    SubscriptionRegistry,
    ValueHandler,
    deliver,
    make_push_key,
)
from power_switch.store.tree import get_in, merge_in, set_in

logger = logging.getLogger(__name__)


class MemoryStore:
    """Dict-backed store with the same delivery rules as the cloud backends.

    Changes are delivered by a single worker task in write order, so a
    handler is never re-entered for the same path. Call flush() to wait
    until all queued deliveries have run.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = {}
        if initial:
            set_in(self._data, "", initial)
        self._registry = SubscriptionRegistry()
        self._queue: asyncio.Queue[tuple[Subscription, Any]] | None = None
        self._worker: asyncio.Task | None = None
        self._connected = False
        self.fail_writes = False
        self.writes: list[tuple[str, str, Any]] = []  # (op, path, value) journal

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        await self.set_connected(True)

    async def disconnect(self) -> None:
        await self.set_connected(False)
        self._registry.clear()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            self._queue = None

    async def set_connected(self, connected: bool) -> None:
        """Simulate a connectivity change."""
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("Memory store %s", "connected" if connected else "disconnected")
        for watcher in self._registry.watchers:
            self._enqueue(watcher, connected)

    def subscribe(self, path: str, handler: ValueHandler) -> Subscription:
        sub = self._registry.add(path, handler)
        self._enqueue(sub, get_in(self._data, path))
        return sub

    def watch_connection(self, handler: ConnectionHandler) -> Subscription:
        sub = self._registry.add_watcher(handler)
        self._enqueue(sub, self._connected)
        return sub

    async def get(self, path: str) -> Any:
        return get_in(self._data, path)

    async def set(self, path: str, value: Any) -> None:
        self._check_writable("set", path)
        set_in(self._data, path, value)
        self._record("set", path, value)

    async def update(self, path: str, value: dict[str, Any]) -> None:
        self._check_writable("update", path)
        merge_in(self._data, path, value)
        self._record("update", path, value)

    async def push(self, path: str, value: Any) -> str:
        self._check_writable("push", path)
        key = make_push_key()
        child = f"{path}/{key}"
        set_in(self._data, child, value)
        self._record("push", child, value)
        return key

    async def flush(self) -> None:
        """Wait until every queued change has been delivered."""
        if self._queue is not None:
            await self._queue.join()

    def writes_to(self, path: str) -> list[Any]:
        """Values written to exactly this path, oldest first."""
        return [value for _, p, value in self.writes if p == path]

    def _check_writable(self, op: str, path: str) -> None:
        if self.fail_writes or not self._connected:
            reason = "injected failure" if self.fail_writes else "store disconnected"
            raise StoreWriteError(f"{op} {path} failed: {reason}")

    def _record(self, op: str, path: str, value: Any) -> None:
        self.writes.append((op, path, value))
        for sub in self._registry.affected_by(path):
            self._enqueue(sub, get_in(self._data, sub.path))

    def _enqueue(self, sub: Subscription, value: Any) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._deliver_loop())
        self._queue.put_nowait((sub, value))

    async def _deliver_loop(self) -> None:
        assert self._queue is not None
        while True:
            sub, value = await self._queue.get()
            try:
                await deliver(sub, value)
            finally:
                self._queue.task_done()

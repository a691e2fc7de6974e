"""Ingest listener: the single current_data subscription feeding the cache."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from power_switch.store.base import RealtimeStore, StoreError, Subscription
from power_switch.telemetry.cache import TelemetryCache
from power_switch.telemetry.link import ControllerLink
from power_switch.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[TelemetrySnapshot], Awaitable[Any]]
LinkLostListener = Callable[[str], Awaitable[Any]]


class IngestListener:
    """Applies snapshots to the cache in delivery order.

    An empty value at current_data means the field controller went away:
    the link is marked lost and ``on_link_lost`` listeners run. Any other
    value updates the cache, marks the link seen and runs ``on_snapshot``
    listeners (the auto evaluator among them).
    """

    def __init__(
        self,
        store: RealtimeStore,
        path: str,
        cache: TelemetryCache,
        link: ControllerLink,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._path = path
        self._cache = cache
        self._link = link
        self._clock = clock
        self._subscription: Subscription | None = None
        self._on_snapshot: list[SnapshotListener] = []
        self._on_link_lost: list[LinkLostListener] = []
        self.received_count = 0

    def on_snapshot(self, listener: SnapshotListener) -> None:
        self._on_snapshot.append(listener)

    def on_link_lost(self, listener: LinkLostListener) -> None:
        self._on_link_lost.append(listener)

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self._store.subscribe(self._path, self.handle)
        logger.info("Listening for telemetry on %s", self._path)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def handle(self, value: Any) -> None:
        if not value:
            if self._link.mark_lost("no data at current_data"):
                await self.notify_link_lost("field controller sent no data")
            return

        snapshot = self._cache.update(value)
        self.received_count += 1
        self._link.mark_seen(self._clock())
        logger.debug(
            "Telemetry: solar=%.2fV battery=%.2fV soc=%.1f%%",
            snapshot.solar_voltage, snapshot.battery_voltage, snapshot.battery_soc,
        )
        for listener in self._on_snapshot:
            try:
                await listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed")

    async def refresh(self) -> bool:
        """One-shot read of current_data. Returns True when data was applied."""
        try:
            value = await self._store.get(self._path)
        except StoreError as e:
            logger.warning("Telemetry refresh failed: %s", e)
            return False
        if not value:
            logger.debug("Telemetry refresh: no data")
            return False
        await self.handle(value)
        return True

    async def notify_link_lost(self, reason: str) -> None:
        for listener in self._on_link_lost:
            try:
                await listener(reason)
            except Exception:
                logger.exception("Link-lost listener failed")


class LinkMonitor:
    """Periodic check that flips the link down when snapshots stop arriving."""

    def __init__(
        self,
        link: ControllerLink,
        ingest: IngestListener,
        check_interval_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._link = link
        self._ingest = ingest
        self._interval = check_interval_seconds
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="link-monitor")

    async def stop(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def check(self, now: float | None = None) -> bool:
        """Flip the link down on timeout. Returns True when it just went down."""
        now = self._clock() if now is None else now
        if not self._link.timed_out(now):
            return False
        age = now - self._link.last_seen
        self._link.mark_lost(f"no telemetry for {age:.0f}s")
        await self._ingest.notify_link_lost(f"field controller silent for {age:.0f}s")
        return True

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.check()
            except Exception:
                logger.exception("Link check failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass

"""Solar energy accumulator: integrates V x A into Wh and persists the total."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from power_switch.config.schema import EnergyConfig
from power_switch.control.command import epoch_ms
from power_switch.store.base import RealtimeStore, StoreError
from power_switch.telemetry.cache import TelemetryCache
from power_switch.telemetry.snapshot import coerce_reading

logger = logging.getLogger(__name__)


class EnergyAccumulator:
    """Rectangle-rule integration of solar power between updates.

    Only fresh telemetry is integrated; an interval during which the cache
    is older than ``max_data_age`` contributes nothing.
    """

    def __init__(
        self,
        config: EnergyConfig,
        store: RealtimeStore,
        path: str,
        cache: TelemetryCache,
        max_data_age: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._path = path
        self._cache = cache
        self._max_age = max_data_age
        self._clock = clock
        self.total_wh = 0.0
        self._last_update_at = 0.0
        self._last_saved_at = 0.0
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def load(self) -> float:
        """Restore the saved total. Missing or unreadable totals start at 0."""
        try:
            saved = await self._store.get(f"{self._path}/total_energy_wh")
        except StoreError as e:
            logger.warning("Could not load saved energy total: %s", e)
            saved = None
        self.total_wh = max(coerce_reading(saved), 0.0)
        logger.info("Energy total loaded: %.2f Wh", self.total_wh)
        return self.total_wh

    def update(self, now: float | None = None) -> float:
        """Integrate since the previous update. Returns the Wh added."""
        now = self._clock() if now is None else now
        if self._last_update_at == 0.0:
            self._last_update_at = now
            self._last_saved_at = now
            return 0.0

        hours = max(now - self._last_update_at, 0.0) / 3600
        self._last_update_at = now
        if not self._cache.is_fresh(self._max_age):
            return 0.0

        added = self._cache.current().solar_power_w * hours
        if added > 0:
            self.total_wh += added
        return max(added, 0.0)

    def save_due(self, now: float) -> bool:
        return now - self._last_saved_at >= self._config.save_interval_seconds

    async def save(self, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        snap = self._cache.current()
        record = {
            "total_energy_wh": round(self.total_wh, 4),
            "last_updated": epoch_ms(now),
            "solar_voltage_at_save": snap.solar_voltage,
            "solar_current_at_save": snap.solar_current,
            "calculated_power": round(snap.solar_power_w, 2),
        }
        try:
            await self._store.set(self._path, record)
        except StoreError as e:
            logger.warning("Energy save failed: %s", e)
            return False
        self._last_saved_at = now
        logger.debug("Energy saved: %.2f Wh", self.total_wh)
        return True

    async def tick(self, now: float | None = None) -> None:
        now = self._clock() if now is None else now
        self.update(now)
        if self.save_due(now):
            await self.save(now)

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="energy-accumulator")

    async def stop(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        interval = self._config.update_interval_seconds
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Energy update failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

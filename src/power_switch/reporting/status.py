"""system_status publisher: mode and source as seen by this dashboard."""

from __future__ import annotations

import logging
from typing import Any

from power_switch.control.command import epoch_ms
from power_switch.control.state import PowerMode, PowerSource
from power_switch.store.base import RealtimeStore, StoreError
from power_switch.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)


def status_record(
    mode: PowerMode,
    source: PowerSource,
    now: float,
    snapshot: TelemetrySnapshot | None = None,
) -> dict[str, Any]:
    """Merge payload for system_status. last_switch only accompanies a switch."""
    record: dict[str, Any] = {
        "mode": mode.value,
        "power_source": source.value,
        "last_updated": epoch_ms(now),
        "auto_mode_running": mode == PowerMode.AUTO,
    }
    if snapshot is not None:
        record["last_switch"] = {
            "source": source.value,
            "time": epoch_ms(now),
            "solar_voltage": snapshot.solar_voltage,
            "battery_voltage": snapshot.battery_voltage,
            "battery_soc": snapshot.battery_soc,
        }
    return record


class StatusPublisher:
    """Merges status into the store. Failures are logged, never raised."""

    def __init__(self, store: RealtimeStore, status_path: str) -> None:
        self._store = store
        self._path = status_path
        self.last_published: dict[str, Any] | None = None

    @property
    def path(self) -> str:
        return self._path

    async def publish(
        self,
        mode: PowerMode,
        source: PowerSource,
        now: float,
        snapshot: TelemetrySnapshot | None = None,
    ) -> bool:
        record = status_record(mode, source, now, snapshot)
        try:
            await self._store.update(self._path, record)
        except StoreError as e:
            logger.error("System status update failed: %s", e)
            return False
        self.last_published = record
        logger.debug("System status updated: mode=%s source=%s", mode.value, source.value)
        return True

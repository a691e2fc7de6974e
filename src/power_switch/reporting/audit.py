"""Append-only audit trail for auto-mode decisions and solar-priority blocks."""

from __future__ import annotations

import logging
from typing import Any

from power_switch.control.command import epoch_ms
from power_switch.control.state import OperatingState, PowerSource
from power_switch.store.base import RealtimeStore, StoreError
from power_switch.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)


def decision_entry(
    code: str,
    details: str,
    snapshot: TelemetrySnapshot,
    state: OperatingState,
    target: PowerSource | None,
    controller_reachable: bool,
    now: float,
    current: PowerSource | None = None,
) -> dict[str, Any]:
    current = current or state.active_source
    return {
        "timestamp": epoch_ms(now),
        "decision": code,
        "solarV": snapshot.solar_voltage,
        "batteryV": snapshot.battery_voltage,
        "voltageDiff": round(snapshot.voltage_diff, 3),
        "batterySOC": snapshot.battery_soc,
        "currentSource": current.value,
        "targetSource": target.value if target else current.value,
        "details": details,
        "mode": state.mode.value,
        "esp32Connected": controller_reachable,
        "dataAge": round(max(now - snapshot.captured_at, 0.0), 1) if snapshot.received else None,
    }


def block_entry(
    snapshot: TelemetrySnapshot, reason: str, block_count: int, now: float,
) -> dict[str, Any]:
    return {
        "timestamp": epoch_ms(now),
        "solar_voltage": snapshot.solar_voltage,
        "battery_voltage": snapshot.battery_voltage,
        "battery_soc": snapshot.battery_soc,
        "reason": reason,
        "block_count": block_count,
    }


class AuditLog:
    """Pushes entries under auto_mode_logs and solar_priority_blocks.

    Audit is best effort: a failed push is logged and otherwise ignored.
    """

    def __init__(
        self,
        store: RealtimeStore,
        decisions_path: str,
        blocks_path: str,
        enabled: bool = True,
    ) -> None:
        self._store = store
        self._decisions_path = decisions_path
        self._blocks_path = blocks_path
        self.enabled = enabled

    async def log_decision(
        self,
        code: str,
        details: str,
        snapshot: TelemetrySnapshot,
        state: OperatingState,
        target: PowerSource | None,
        controller_reachable: bool,
        now: float,
        current: PowerSource | None = None,
    ) -> str | None:
        if not self.enabled:
            return None
        entry = decision_entry(
            code, details, snapshot, state, target, controller_reachable, now, current,
        )
        return await self._push(self._decisions_path, entry)

    async def log_block(
        self, snapshot: TelemetrySnapshot, reason: str, block_count: int, now: float,
    ) -> str | None:
        if not self.enabled:
            return None
        return await self._push(self._blocks_path, block_entry(snapshot, reason, block_count, now))

    async def _push(self, path: str, entry: dict[str, Any]) -> str | None:
        try:
            return await self._store.push(path, entry)
        except StoreError as e:
            logger.warning("Audit write to %s failed: %s", path, e)
            return None

"""Command records and the command channel into the realtime store."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from power_switch.control.state import PowerMode, PowerSource, relays_for
from power_switch.store.base import RealtimeStore, StoreError
from power_switch.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)

DEFAULT_OPERATOR = "web_user"


def epoch_ms(now: float) -> int:
    """Wire timestamps are epoch milliseconds."""
    return int(now * 1000)


def power_command(
    source: PowerSource,
    mode: PowerMode,
    now: float,
    snapshot: TelemetrySnapshot,
    reason: str = "",
    operator: str = DEFAULT_OPERATOR,
) -> dict[str, Any]:
    """set_power_source record; relays are derived 1:1 from the source."""
    return {
        "action": "set_power_source",
        "source": source.value,
        "state": "off" if source == PowerSource.OFF else "on",
        "relays": relays_for(source),
        "timestamp": epoch_ms(now),
        "userId": operator,
        "mode": mode.value,
        "reason": reason,
        "command_source": f"dashboard_{mode.value}",
        "sensor_data": snapshot.to_sensor_data(),
    }


def emergency_stop_command(now: float, reason: str, operator: str = DEFAULT_OPERATOR) -> dict[str, Any]:
    return {
        "action": "emergency_stop",
        "relays": relays_for(PowerSource.OFF),
        "reason": reason,
        "timestamp": epoch_ms(now),
        "userId": operator,
        "emergency": True,
        "system_state": "emergency_stopped",
    }


def manual_stop_command(now: float, operator: str = DEFAULT_OPERATOR) -> dict[str, Any]:
    return {
        "action": "manual_stop",
        "relays": relays_for(PowerSource.OFF),
        "reason": "operator all-off",
        "timestamp": epoch_ms(now),
        "userId": operator,
        "emergency": False,
    }


def reset_command(
    mode: PowerMode, source: PowerSource, now: float, operator: str = DEFAULT_OPERATOR,
) -> dict[str, Any]:
    """reset_system record; asks the field controller to re-enable its sensors."""
    return {
        "action": "reset_system",
        "mode": mode.value,
        "power_source": source.value,
        "timestamp": epoch_ms(now),
        "userId": operator,
        "system_state": "resetting",
        "emergency_reset": True,
        "sensor_data_request": True,
        "command": "ENABLE_SENSORS",
    }


@dataclass
class CommandResult:
    """Outcome of one command write."""

    success: bool
    latency_ms: int
    message: str = ""


class CommandChannel:
    """Write side into the store's commands path (last value wins).

    Best effort, at most once: a failed write is reported, never retried.
    """

    def __init__(self, store: RealtimeStore, commands_path: str) -> None:
        self._store = store
        self._path = commands_path

    @property
    def path(self) -> str:
        return self._path

    async def send(self, record: dict[str, Any], merge: bool = False) -> CommandResult:
        """Write a command record. ``merge`` patches instead of replacing."""
        start = time.monotonic()
        action = record.get("action", "?")
        try:
            if merge:
                await self._store.update(self._path, record)
            else:
                await self._store.set(self._path, record)
        except StoreError as e:
            latency = int((time.monotonic() - start) * 1000)
            logger.error("Command %s failed after %dms: %s", action, latency, e)
            return CommandResult(success=False, latency_ms=latency, message=str(e))

        latency = int((time.monotonic() - start) * 1000)
        logger.info("Command %s sent (%dms)", action, latency)
        return CommandResult(success=True, latency_ms=latency)

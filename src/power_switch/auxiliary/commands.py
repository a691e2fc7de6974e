"""Auxiliary actuators on the field controller: panel brush, pump, cleaning, camera servo.

These share the commands path with power switching but never touch the
operating state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from power_switch.alerts.notifier import Notifier
from power_switch.control.command import DEFAULT_OPERATOR, CommandChannel, CommandResult, epoch_ms
from power_switch.control.state import OperatingState

logger = logging.getLogger(__name__)

BRUSH_COMMANDS = ("auto_mode", "manual_mode", "forward", "reverse", "stop")
CLEANING_ACTIONS = ("start", "stop")
SERVO_DIRECTIONS = ("left", "right", "up", "down", "center")


@dataclass
class BrushState:
    mode: str = "auto"  # auto, manual
    status: str = "stopped"  # stopped, forward, reverse


class AuxiliaryController:
    def __init__(
        self,
        channel: CommandChannel,
        state: OperatingState,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._channel = channel
        self._state = state
        self._notifier = notifier
        self._clock = clock
        self.brush = BrushState()
        self.pump_on = False

    async def brush_control(self, command: str) -> CommandResult:
        if command not in BRUSH_COMMANDS:
            raise ValueError(f"Unknown brush command: {command}")
        if command in ("forward", "reverse") and self.brush.mode != "manual":
            raise ValueError("Brush direction requires brush manual mode")

        if command == "auto_mode":
            self.brush.mode = "auto"
        elif command == "manual_mode":
            self.brush.mode = "manual"
        elif command == "stop":
            self.brush.status = "stopped"
        else:
            self.brush.status = command

        record = self._record("brush_control", {
            "command": command,
            "mode": self.brush.mode,
            "brush_status": self.brush.status,
        })
        return await self._send(record, f"Brush: {command}")

    async def pump_control(self, on: bool) -> CommandResult:
        record = self._record("pump_control", {"state": "on" if on else "off"})
        result = await self._send(record, f"Pump {'on' if on else 'off'}", merge=True)
        if result.success:
            self.pump_on = on
        return result

    async def cleaning_control(
        self, action: str, duration: int = 30, interval: int = 6,
    ) -> CommandResult:
        """Automatic panel cleaning: run for ``duration`` s every ``interval`` h."""
        if action not in CLEANING_ACTIONS:
            raise ValueError(f"Unknown cleaning action: {action}")
        if duration <= 0 or interval <= 0:
            raise ValueError("Cleaning duration and interval must be positive")
        record = self._record("cleaning_control", {
            "mode": action,
            "duration": int(duration),
            "interval": int(interval),
        })
        return await self._send(record, f"Cleaning {action}", merge=True)

    async def control_servo(self, direction: str, angle: int = 5) -> CommandResult:
        if direction not in SERVO_DIRECTIONS:
            raise ValueError(f"Unknown servo direction: {direction}")
        if not 0 < angle <= 180:
            raise ValueError("Servo angle must be in (0, 180]")
        record = self._record("control_servo", {"direction": direction, "angle": int(angle)})
        return await self._send(record, f"Camera {direction} {angle}deg")

    def _record(self, action: str, fields: dict[str, Any]) -> dict[str, Any]:
        return {
            "action": action,
            **fields,
            "timestamp": epoch_ms(self._clock()),
            "userId": DEFAULT_OPERATOR,
            "system_mode": self._state.mode.value,
        }

    async def _send(self, record: dict[str, Any], label: str, merge: bool = False) -> CommandResult:
        result = await self._channel.send(record, merge=merge)
        if self._notifier is not None:
            if result.success:
                self._notifier.info(label)
            else:
                self._notifier.error(f"{label} failed: {result.message}")
        return result

"""Mode controller: routes operator intents across auto, manual and stop.

Transitions:
- manual <-> auto freely
- any -> stop on emergency
- stop -> manual | auto only through reset()
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from power_switch.alerts.notifier import Notifier
from power_switch.config.schema import AutoModeConfig
from power_switch.control.command import (
    CommandChannel,
    CommandResult,
    emergency_stop_command,
    manual_stop_command,
    reset_command,
)
from power_switch.control.decision import SwitchDecision
from power_switch.control.executor import ExecutionResult, SwitchExecutor
from power_switch.control.loop import AutoEvaluator
from power_switch.control.state import OperatingState, PowerMode, PowerSource
from power_switch.reporting.status import StatusPublisher
from power_switch.telemetry.cache import TelemetryCache

logger = logging.getLogger(__name__)

Refresher = Callable[[], Awaitable[Any]]


class ModeError(Exception):
    """Operator intent not allowed in the current mode."""


class ModeController:
    """Owns ``mode``. Writes ``active_source`` only on stop, all-off and reset."""

    def __init__(
        self,
        config: AutoModeConfig,
        state: OperatingState,
        cache: TelemetryCache,
        executor: SwitchExecutor,
        evaluator: AutoEvaluator,
        channel: CommandChannel,
        status: StatusPublisher | None = None,
        notifier: Notifier | None = None,
        refresh: Refresher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._state = state
        self._cache = cache
        self._executor = executor
        self._evaluator = evaluator
        self._channel = channel
        self._status = status
        self._notifier = notifier
        self._refresh = refresh
        self._clock = clock
        self._refresh_task: asyncio.Task | None = None

    @property
    def state(self) -> OperatingState:
        return self._state

    async def set_mode(self, mode: PowerMode) -> None:
        """Dispatch a plain mode intent (stop goes through emergency_stop)."""
        if mode == PowerMode.AUTO:
            await self.enter_auto()
        elif mode == PowerMode.MANUAL:
            await self.enter_manual()
        else:
            await self.emergency_stop()

    async def enter_auto(self, publish: bool = True) -> None:
        if self._state.is_stopped:
            raise ModeError("Emergency stop active: reset required")
        if not self._cache.has_data:
            # No telemetry yet: the decision engine starts from grid
            self._state.active_source = PowerSource.GRID
        was_auto = self._state.is_auto
        self._state.mode = PowerMode.AUTO
        self._evaluator.arm()
        self._schedule_refresh()
        if not was_auto:
            logger.info("Auto mode enabled (source: %s)", self._state.active_source.value)
            if self._notifier is not None:
                self._notifier.info("Auto mode enabled")
        if publish:
            await self._publish()

    async def enter_manual(self, publish: bool = True) -> None:
        if self._state.is_stopped:
            raise ModeError("Emergency stop active: reset required")
        await self._evaluator.disarm()
        was_manual = self._state.mode == PowerMode.MANUAL
        self._state.mode = PowerMode.MANUAL
        if not was_manual:
            logger.info("Manual mode enabled (source: %s)", self._state.active_source.value)
            if self._notifier is not None:
                self._notifier.info("Manual mode enabled")
        if publish:
            await self._publish()

    async def select_source(self, source: PowerSource) -> ExecutionResult | CommandResult:
        """Operator source choice. Only in manual mode."""
        if self._state.is_stopped:
            raise ModeError("Emergency stop active: reset required")
        if self._state.is_auto:
            raise ModeError("Manual source selection requires manual mode")
        if source == PowerSource.OFF:
            return await self.all_off()
        decision = SwitchDecision.switch(source, "manual selection", origin="manual")
        return await self._executor.execute(decision, self._clock())

    async def all_off(self) -> CommandResult:
        """Open every relay while staying in manual mode."""
        if self._state.is_stopped:
            raise ModeError("Emergency stop active: reset required")
        now = self._clock()
        await self._evaluator.disarm()
        self._state.mode = PowerMode.MANUAL
        self._state.active_source = PowerSource.OFF
        self._state.switch_in_flight = False
        self._state.source_confirmed = False
        self._state.last_switch_at = now
        self._state.last_switch_reason = "operator all-off"
        logger.info("Manual all-off")
        result = await self._channel.send(manual_stop_command(now))
        self._report(result, "All sources off", "All-off command failed")
        await self._publish()
        return result

    async def emergency_stop(self, reason: str = "operator emergency stop") -> CommandResult:
        """Enter stop: all relays open, evaluator disarmed."""
        now = self._clock()
        self._enter_stop()
        logger.warning("Emergency stop: %s", reason)
        await self._evaluator.disarm()
        result = await self._channel.send(emergency_stop_command(now, reason))
        self._report(result, "Emergency stop activated", "Emergency stop command failed")
        await self._publish()
        return result

    async def reset(
        self, mode: PowerMode = PowerMode.MANUAL, source: PowerSource = PowerSource.GRID,
    ) -> CommandResult:
        """Leave stop (or restart) into mode/source after re-arming sensors."""
        if mode == PowerMode.STOP:
            raise ModeError("Cannot reset into stop mode")
        now = self._clock()
        await self._evaluator.disarm()
        self._cancel_refresh()

        result = await self._channel.send(reset_command(mode, source, now))
        if not result.success:
            self._report(result, "", "Reset command failed")
            return result
        logger.info("System reset to %s/%s", mode.value, source.value)

        self._state.mode = PowerMode.MANUAL
        self._state.active_source = PowerSource.OFF
        self._state.switch_in_flight = False
        self._state.settle_deadline = 0.0
        self._state.last_switch_at = 0.0

        await self.refresh_now()
        if source != PowerSource.OFF:
            await self._executor.execute(
                SwitchDecision.switch(source, "reset", origin="manual"), self._clock(),
            )
        if mode == PowerMode.AUTO:
            await self.enter_auto()
        else:
            await self._publish()
        if self._notifier is not None:
            self._notifier.success(f"System reset: {mode.value} mode")
        return result

    async def refresh_now(self) -> None:
        if self._refresh is None:
            return
        try:
            await self._refresh()
        except Exception:
            logger.exception("Telemetry refresh failed")

    async def apply_remote_status(self, status: Any) -> None:
        """Adopt mode/power_source written to system_status by another instance."""
        if not isinstance(status, dict) or self._is_own_or_older(status):
            return
        mode = _parse(PowerMode, status.get("mode"))
        if mode is not None and mode != self._state.mode:
            logger.info("Mode changed remotely: %s -> %s", self._state.mode.value, mode.value)
            if mode == PowerMode.STOP:
                self._enter_stop()
                await self._evaluator.disarm()
            elif mode == PowerMode.AUTO:
                self._state.mode = PowerMode.MANUAL
                await self.enter_auto(publish=False)
            else:
                self._state.mode = PowerMode.MANUAL
                await self._evaluator.disarm()

        # Source last so it overrides the auto-entry grid baseline
        source = _parse(PowerSource, status.get("power_source"))
        if source is not None and not self._state.switch_in_flight:
            if source != self._state.active_source:
                logger.info(
                    "Power source changed remotely: %s -> %s",
                    self._state.active_source.value, source.value,
                )
                self._state.active_source = source
            self._state.source_confirmed = True

    async def apply_remote_command(self, record: Any, since_ms: int) -> None:
        """React to commands written elsewhere after ``since_ms``."""
        if not isinstance(record, dict):
            return
        timestamp = record.get("timestamp")
        if not isinstance(timestamp, (int, float)) or timestamp < since_ms:
            return
        action = record.get("action")
        if action == "emergency_stop" and not self._state.is_stopped:
            logger.warning("Emergency stop received from store")
            self._enter_stop()
            await self._evaluator.disarm()
            if self._notifier is not None:
                self._notifier.error("Emergency stop received")
        elif action == "reset_system":
            self._schedule_refresh()

    async def shutdown(self) -> None:
        self._cancel_refresh()
        await self._evaluator.disarm()

    def _is_own_or_older(self, status: dict) -> bool:
        """Echo of our own publish, or a record older than it."""
        published = self._status.last_published if self._status is not None else None
        if not published:
            return False
        updated = status.get("last_updated")
        if not isinstance(updated, (int, float)):
            return False
        return updated <= published["last_updated"]

    def _enter_stop(self) -> None:
        self._cancel_refresh()
        self._state.mode = PowerMode.STOP
        self._state.active_source = PowerSource.OFF
        self._state.switch_in_flight = False
        self._state.settle_deadline = 0.0
        self._state.source_confirmed = False

    def _schedule_refresh(self) -> None:
        if self._refresh is None:
            return
        self._cancel_refresh()
        self._refresh_task = asyncio.create_task(self._delayed_refresh(), name="telemetry-refresh")

    async def _delayed_refresh(self) -> None:
        await asyncio.sleep(self._config.refresh_delay_seconds)
        await self.refresh_now()

    def _cancel_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _publish(self) -> None:
        if self._status is not None:
            await self._status.publish(self._state.mode, self._state.active_source, self._clock())

    def _report(self, result: CommandResult, ok: str, failed: str) -> None:
        if self._notifier is None:
            return
        if result.success:
            self._notifier.success(ok)
        else:
            self._notifier.error(f"{failed}: {result.message}")


def _parse(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None

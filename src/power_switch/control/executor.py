"""Switch executor: turns a SwitchDecision into exactly one command write.

Checks, in order:
1. No-op and stop mode
2. Minimum inter-switch interval (auto decisions only)
3. Target already active, or a previous switch still settling
4. Solar-priority guard for solar -> grid
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from power_switch.alerts.notifier import Notifier
from power_switch.config.schema import AutoModeConfig, ThresholdsConfig
from power_switch.control.command import (
    CommandChannel,
    CommandResult,
    emergency_stop_command,
    power_command,
)
from power_switch.control.decision import SwitchDecision
from power_switch.control.state import OperatingState, PowerSource
from power_switch.reporting.audit import AuditLog
from power_switch.reporting.status import StatusPublisher
from power_switch.telemetry.cache import TelemetryCache
from power_switch.telemetry.link import ControllerLink
from power_switch.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    EXECUTED = "executed"
    NOOP = "noop"
    STOPPED = "emergency stop active"
    TOO_SOON = "too soon"
    ALREADY_ACTIVE = "already active"
    PENDING = "switch pending"
    BLOCKED = "solar priority"


@dataclass
class ExecutionResult:
    outcome: Outcome
    decision: SwitchDecision
    command: CommandResult | None = None

    @property
    def executed(self) -> bool:
        return self.outcome == Outcome.EXECUTED

    @property
    def delivered(self) -> bool:
        return self.command is not None and self.command.success


def solar_still_usable(
    snapshot: TelemetrySnapshot, thresholds: ThresholdsConfig, controller_reachable: bool,
) -> bool:
    """Guard applied at execution time against a stale solar -> grid decision."""
    return (
        snapshot.solar_voltage >= thresholds.solar_min_for_operation
        and controller_reachable
        and snapshot.battery_soc > thresholds.critical_soc
    )


class SwitchExecutor:
    """Owns ``active_source``, ``last_switch_at`` and the settle window."""

    def __init__(
        self,
        thresholds: ThresholdsConfig,
        auto_config: AutoModeConfig,
        state: OperatingState,
        cache: TelemetryCache,
        link: ControllerLink,
        channel: CommandChannel,
        status: StatusPublisher | None = None,
        audit: AuditLog | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._thresholds = thresholds
        self._auto = auto_config
        self._state = state
        self._cache = cache
        self._link = link
        self._channel = channel
        self._status = status
        self._audit = audit
        self._notifier = notifier
        self._clock = clock

    @property
    def state(self) -> OperatingState:
        return self._state

    def release_if_settled(self, now: float | None = None) -> bool:
        """Clear ``switch_in_flight`` once the settle deadline has passed.

        Returns True while a switch is still settling.
        """
        if not self._state.switch_in_flight:
            return False
        now = self._clock() if now is None else now
        if now >= self._state.settle_deadline:
            self._state.switch_in_flight = False
            logger.debug("Switch settled on %s", self._state.active_source.value)
            return False
        return True

    async def execute(self, decision: SwitchDecision, now: float | None = None) -> ExecutionResult:
        now = self._clock() if now is None else now
        self.release_if_settled(now)
        state = self._state

        if decision.is_noop:
            return ExecutionResult(Outcome.NOOP, decision)
        target = decision.target

        if state.is_stopped:
            return self._reject(Outcome.STOPPED, decision)

        if decision.origin == "auto":
            elapsed = now - state.last_switch_at
            if elapsed < self._thresholds.min_switch_interval_seconds:
                logger.debug(
                    "Switch to %s suppressed: %.1fs since last switch (< %.0fs)",
                    target.value, elapsed, self._thresholds.min_switch_interval_seconds,
                )
                return ExecutionResult(Outcome.TOO_SOON, decision)

        if target == state.active_source:
            return self._reject(Outcome.ALREADY_ACTIVE, decision)

        if state.switch_in_flight:
            return self._reject(Outcome.PENDING, decision)

        snapshot = self._cache.current()
        reachable = self._link.is_reachable(now)

        if (
            decision.origin == "auto"
            and state.active_source == PowerSource.SOLAR
            and target == PowerSource.GRID
            and solar_still_usable(snapshot, self._thresholds, reachable)
        ):
            await self._block(decision, snapshot, reachable, now)
            return ExecutionResult(Outcome.BLOCKED, decision)

        return await self._switch(decision, snapshot, reachable, now)

    async def _switch(
        self,
        decision: SwitchDecision,
        snapshot: TelemetrySnapshot,
        reachable: bool,
        now: float,
    ) -> ExecutionResult:
        state = self._state
        target = decision.target
        previous = state.active_source

        state.switch_in_flight = True
        state.settle_deadline = now + self._auto.settle_delay_seconds
        state.active_source = target
        state.source_confirmed = False
        state.last_switch_at = now
        state.last_switch_reason = decision.reason

        logger.info(
            "Switching %s -> %s (%s, %s)",
            previous.value, target.value, decision.origin, decision.reason,
        )

        record = power_command(target, state.mode, now, snapshot, reason=decision.reason)
        result = await self._channel.send(record)

        if state.is_stopped:
            # Stop arrived while the write was in flight; leave the relays open
            logger.warning("Emergency stop during switch to %s, reasserting stop", target.value)
            if result.success:
                await self._channel.send(
                    emergency_stop_command(self._clock(), f"stop during switch to {target.value}")
                )
            return ExecutionResult(Outcome.STOPPED, decision, result)

        if result.success:
            if self._status is not None:
                await self._status.publish(state.mode, target, now, snapshot)
            if self._notifier is not None:
                self._notifier.success(f"Switched to {target.value}: {decision.reason}")
        else:
            # No rollback: the intent stays recorded and unconfirmed
            logger.error("Switch command to %s not delivered: %s", target.value, result.message)
            if self._notifier is not None:
                self._notifier.error(f"Failed to switch to {target.value}: {result.message}")

        if self._audit is not None and decision.origin == "auto":
            await self._audit.log_decision(
                decision.code, decision.reason, snapshot, state, target, reachable, now,
                current=previous,
            )

        return ExecutionResult(Outcome.EXECUTED, decision, result)

    async def _block(
        self, decision: SwitchDecision, snapshot: TelemetrySnapshot, reachable: bool, now: float,
    ) -> None:
        state = self._state
        state.solar_priority_blocks += 1
        state.last_block_at = now
        logger.warning(
            "Solar priority: blocked switch to grid (solar=%.2fV soc=%.1f%%, block #%d): %s",
            snapshot.solar_voltage, snapshot.battery_soc,
            state.solar_priority_blocks, decision.reason,
        )
        if self._audit is not None:
            await self._audit.log_decision(
                "BLOCK_SWITCH_TO_GRID", decision.reason, snapshot, state, PowerSource.GRID,
                reachable, now,
            )
            await self._audit.log_block(snapshot, decision.reason, state.solar_priority_blocks, now)
        if self._notifier is not None:
            self._notifier.warning(
                f"Solar priority kept solar active ({snapshot.solar_voltage:.1f}V)"
            )

    def _reject(self, outcome: Outcome, decision: SwitchDecision) -> ExecutionResult:
        logger.debug(
            "Switch to %s rejected: %s",
            decision.target.value if decision.target else "-", outcome.value,
        )
        return ExecutionResult(outcome, decision)

"""Auto-mode evaluator: periodic timer plus telemetry-triggered evaluations."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from power_switch.config.schema import AutoModeConfig
from power_switch.control.decision import DecisionEngine, SwitchDecision
from power_switch.control.executor import ExecutionResult, SwitchExecutor
from power_switch.control.state import OperatingState
from power_switch.reporting.audit import AuditLog
from power_switch.telemetry.cache import TelemetryCache
from power_switch.telemetry.link import ControllerLink

logger = logging.getLogger(__name__)


@dataclass
class EvaluatorState:
    """Snapshot of the evaluator state."""

    armed: bool = False
    evaluation_count: int = 0
    last_evaluated_at: float = 0.0
    last_trigger: str = ""
    last_decision: SwitchDecision | None = None
    last_result: ExecutionResult | None = None


class AutoEvaluator:
    """Runs the decision engine while auto mode is armed.

    Two paths feed it: ``on_telemetry`` (each fresh snapshot) and a periodic
    timer. Telemetry-triggered evaluations are throttled to one per
    ``event_throttle_seconds``; the timer skips a tick when a telemetry
    evaluation already ran inside that window.
    """

    def __init__(
        self,
        config: AutoModeConfig,
        engine: DecisionEngine,
        executor: SwitchExecutor,
        state: OperatingState,
        cache: TelemetryCache,
        link: ControllerLink,
        audit: AuditLog | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._engine = engine
        self._executor = executor
        self._state = state
        self._cache = cache
        self._link = link
        self._audit = audit
        self._clock = clock
        self._status = EvaluatorState()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._last_stay_code = ""

    @property
    def status(self) -> EvaluatorState:
        return self._status

    @property
    def armed(self) -> bool:
        return self._status.armed

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        """Start evaluating. Idempotent."""
        if self._status.armed and self.running:
            return
        self._status.armed = True
        self._last_stay_code = ""
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="auto-evaluator")
        logger.info(
            "Auto evaluator armed (interval: %.1fs)", self._config.evaluation_interval_seconds,
        )

    async def disarm(self) -> None:
        """Stop evaluating. Leaves the active source unchanged."""
        was_armed = self._status.armed
        self._status.armed = False
        self._stop_event.set()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if was_armed:
            logger.info("Auto evaluator disarmed")

    async def on_telemetry(self) -> ExecutionResult | None:
        """Evaluation triggered by a fresh snapshot."""
        return await self.evaluate_once(trigger="telemetry")

    async def evaluate_once(
        self, trigger: str = "timer", now: float | None = None,
    ) -> ExecutionResult | None:
        """One decision/execution step. Returns None when skipped or no-op."""
        if not self._status.armed or not self._state.is_auto:
            return None
        now = self._clock() if now is None else now

        since_last = now - self._status.last_evaluated_at
        window = self._config.event_throttle_seconds
        if trigger == "telemetry" and since_last < window:
            return None
        if trigger == "timer" and self._status.last_trigger == "telemetry" and since_last < window:
            return None

        self._status.evaluation_count += 1
        self._status.last_evaluated_at = now
        self._status.last_trigger = trigger
        self._executor.release_if_settled(now)

        decision = self._engine.evaluate(now)
        self._status.last_decision = decision

        if decision.is_noop:
            await self._audit_stay(decision, now)
            return None

        self._last_stay_code = ""
        result = await self._executor.execute(decision, now)
        self._status.last_result = result
        return result

    async def _audit_stay(self, decision: SwitchDecision, now: float) -> None:
        # Only solar stays are audited, once per run of identical stays
        if self._audit is None or decision.code != "STAY_ON_SOLAR":
            self._last_stay_code = decision.code
            return
        if decision.code == self._last_stay_code:
            return
        self._last_stay_code = decision.code
        await self._audit.log_decision(
            decision.code,
            decision.reason,
            self._cache.current(),
            self._state,
            None,
            self._link.is_reachable(now),
            now,
        )

    async def _run(self) -> None:
        interval = self._config.evaluation_interval_seconds
        try:
            while not self._stop_event.is_set():
                try:
                    await self.evaluate_once(trigger="timer")
                except Exception:
                    logger.exception("Auto evaluation failed")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.debug("Auto evaluator loop exited after %d evaluations",
                         self._status.evaluation_count)

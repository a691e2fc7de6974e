"""Auto-mode decision engine: which source should serve the load.

The current active source is the state. Within a state, conditions are
checked in a fixed order and the first match wins, giving the priority:

1. Safety: stale data, critical battery
2. Solar first: stay on or move to solar whenever it is viable
3. Battery fallback
4. Grid: last resort

Hysteresis only widens the band for leaving solar toward battery. A reading
of 0 V means the sensor is absent; it makes ``voltage_diff`` deeply negative,
so an absent source never looks better than a populated one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from power_switch.config.schema import ThresholdsConfig
from power_switch.control.state import OperatingState, PowerMode, PowerSource
from power_switch.telemetry.cache import TelemetryCache
from power_switch.telemetry.link import ControllerLink
from power_switch.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwitchDecision:
    """Output of one evaluation. ``target`` None means stay (no-op)."""

    target: PowerSource | None = None
    reason: str = ""
    code: str = ""
    origin: str = "auto"  # auto, manual

    @property
    def is_noop(self) -> bool:
        return self.target is None

    @classmethod
    def switch(cls, target: PowerSource, reason: str, origin: str = "auto") -> SwitchDecision:
        return cls(
            target=target,
            reason=reason,
            code=f"SWITCH_TO_{target.value.upper()}",
            origin=origin,
        )

    @classmethod
    def stay(cls, code: str = "", reason: str = "") -> SwitchDecision:
        return cls(target=None, reason=reason, code=code)


NO_OP = SwitchDecision()


def decide(
    snapshot: TelemetrySnapshot,
    active_source: PowerSource,
    thresholds: ThresholdsConfig,
    now: float,
    controller_reachable: bool,
) -> SwitchDecision:
    """Pure state-machine step. Never raises."""
    age = now - snapshot.captured_at
    if age > thresholds.data_timeout_seconds:
        if active_source == PowerSource.GRID:
            return SwitchDecision.stay("STAY_ON_GRID", "data timeout, already on grid")
        detail = f"last telemetry {age:.1f}s ago" if snapshot.received else "no telemetry received"
        return SwitchDecision.switch(PowerSource.GRID, f"data timeout ({detail})")

    if active_source == PowerSource.SOLAR:
        return _from_solar(snapshot, thresholds, controller_reachable)
    if active_source == PowerSource.BATTERY:
        return _from_battery(snapshot, thresholds)
    # GRID, or OFF transiently after a reset: evaluate as grid
    return _from_grid(snapshot, thresholds)


def should_stay_on_solar(
    snapshot: TelemetrySnapshot,
    thresholds: ThresholdsConfig,
    controller_reachable: bool,
) -> bool:
    """Solar-priority guard: solar is still usable, so do not leave it."""
    return (
        snapshot.solar_voltage >= thresholds.solar_min_for_operation
        and controller_reachable
        and snapshot.voltage_diff > -thresholds.hysteresis
        and snapshot.battery_soc > thresholds.critical_soc
    )


def _battery_usable(snapshot: TelemetrySnapshot, thresholds: ThresholdsConfig) -> bool:
    return (
        snapshot.battery_voltage >= thresholds.battery_min_voltage
        and snapshot.battery_soc > thresholds.critical_soc
    )


def _from_grid(snapshot: TelemetrySnapshot, t: ThresholdsConfig) -> SwitchDecision:
    diff = snapshot.voltage_diff
    if snapshot.solar_voltage >= t.min_solar_for_switch and diff >= t.grid_to_solar_margin:
        return SwitchDecision.switch(
            PowerSource.SOLAR,
            f"solar good: {diff:.2f}V above battery (margin {t.grid_to_solar_margin:.2f}V)",
        )
    if _battery_usable(snapshot, t):
        return SwitchDecision.switch(
            PowerSource.BATTERY,
            f"battery good: {snapshot.battery_voltage:.2f}V, {snapshot.battery_soc:.1f}%",
        )
    return SwitchDecision.stay("STAY_ON_GRID", "solar/battery conditions not met")


def _from_solar(
    snapshot: TelemetrySnapshot, t: ThresholdsConfig, controller_reachable: bool,
) -> SwitchDecision:
    if should_stay_on_solar(snapshot, t, controller_reachable):
        return SwitchDecision.stay("STAY_ON_SOLAR", "solar priority active")

    diff = snapshot.voltage_diff
    if snapshot.solar_voltage < t.solar_to_grid_threshold:
        return SwitchDecision.switch(
            PowerSource.GRID,
            f"solar too low: {snapshot.solar_voltage:.2f}V < {t.solar_to_grid_threshold:.2f}V",
        )
    if diff < -t.hysteresis and _battery_usable(snapshot, t):
        return SwitchDecision.switch(
            PowerSource.BATTERY,
            f"battery exceeds solar by {-diff:.2f}V (hysteresis {t.hysteresis:.2f}V)",
        )
    if not controller_reachable:
        return SwitchDecision.switch(PowerSource.GRID, "controller unreachable")
    if snapshot.battery_soc <= t.critical_soc:
        return SwitchDecision.switch(
            PowerSource.GRID, f"battery critical: {snapshot.battery_soc:.1f}%",
        )
    return SwitchDecision.stay("STAY_ON_SOLAR", "solar conditions good")


def _from_battery(snapshot: TelemetrySnapshot, t: ThresholdsConfig) -> SwitchDecision:
    diff = snapshot.voltage_diff
    if snapshot.solar_voltage >= t.min_solar_for_switch and diff >= t.solar_battery_margin:
        return SwitchDecision.switch(
            PowerSource.SOLAR,
            f"solar better than battery by {diff:.2f}V (margin {t.solar_battery_margin:.2f}V)",
        )
    if (
        snapshot.battery_voltage < t.battery_to_grid_threshold
        or snapshot.battery_soc <= t.critical_soc
    ):
        return SwitchDecision.switch(
            PowerSource.GRID,
            f"battery low: {snapshot.battery_voltage:.2f}V, {snapshot.battery_soc:.1f}%",
        )
    return SwitchDecision.stay("STAY_ON_BATTERY", "battery conditions OK")


class DecisionEngine:
    """Evaluates the cache and operating state into a SwitchDecision.

    Read-only with respect to the operating state; acting on the decision
    is the SwitchExecutor's job.
    """

    def __init__(
        self,
        thresholds: ThresholdsConfig,
        cache: TelemetryCache,
        state: OperatingState,
        link: ControllerLink,
    ) -> None:
        self._thresholds = thresholds
        self._cache = cache
        self._state = state
        self._link = link

    @property
    def thresholds(self) -> ThresholdsConfig:
        return self._thresholds

    def evaluate(self, now: float) -> SwitchDecision:
        if self._state.mode != PowerMode.AUTO:
            return NO_OP

        snapshot = self._cache.current()
        decision = decide(
            snapshot,
            self._state.active_source,
            self._thresholds,
            now,
            self._link.is_reachable(now),
        )
        logger.debug(
            "Auto evaluation: source=%s solar=%.2fV battery=%.2fV soc=%.1f%% -> %s (%s)",
            self._state.active_source.value,
            snapshot.solar_voltage,
            snapshot.battery_voltage,
            snapshot.battery_soc,
            decision.target.value if decision.target else "stay",
            decision.reason,
        )
        return decision

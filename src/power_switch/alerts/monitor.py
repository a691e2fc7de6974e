"""Operator alerts derived from telemetry, link state and mode."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from power_switch.alerts.notifier import Notifier, NotificationLevel
from power_switch.config.schema import AlertsConfig, ThresholdsConfig
from power_switch.control.state import OperatingState, PowerSource
from power_switch.telemetry.cache import TelemetryCache
from power_switch.telemetry.link import ControllerLink

logger = logging.getLogger(__name__)

# Priorities that also raise a notification
_NOTIFY_PRIORITIES = frozenset({"critical", "high"})


@dataclass
class Alert:
    key: str  # one entry per key; a repeat refreshes it in place
    level: str  # info, warning, error
    priority: str  # low, medium, high, critical
    message: str
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "level": self.level,
            "priority": self.priority,
            "message": self.message,
            "timestamp": self.timestamp,
        }


class AlertMonitor:
    """Bounded, de-duplicated alert list, newest first."""

    def __init__(
        self,
        thresholds: ThresholdsConfig,
        config: AlertsConfig,
        cache: TelemetryCache,
        link: ControllerLink,
        state: OperatingState,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._thresholds = thresholds
        self._config = config
        self._cache = cache
        self._link = link
        self._state = state
        self._notifier = notifier
        self._clock = clock
        self._alerts: list[Alert] = []
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def alerts(self) -> list[Alert]:
        return list(self._alerts)

    def recent(self) -> list[dict]:
        return [a.to_dict() for a in self._alerts]

    def clear(self) -> None:
        self._alerts.clear()

    def add(self, key: str, level: str, priority: str, message: str) -> Alert:
        now = self._clock()
        for alert in self._alerts:
            if alert.key == key:
                alert.message = message
                alert.timestamp = now
                return alert

        alert = Alert(key=key, level=level, priority=priority, message=message, timestamp=now)
        self._alerts.insert(0, alert)
        del self._alerts[self._config.max_alerts:]
        logger.info("Alert [%s/%s]: %s", priority, key, message)
        if priority in _NOTIFY_PRIORITIES and self._notifier is not None:
            self._notifier.notify(message, _level_for(level))
        return alert

    def check_snapshot(self, now: float | None = None) -> list[Alert]:
        """Alerts evaluated on every telemetry arrival."""
        now = self._clock() if now is None else now
        t = self._thresholds
        snap = self._cache.current()
        raised: list[Alert] = []

        if 0 < snap.solar_voltage < t.solar_min_voltage:
            raised.append(self.add(
                "solar_low", "warning", "medium", f"Solar voltage low: {snap.solar_voltage:.2f}V",
            ))
        if 0 < snap.battery_voltage < t.battery_min_voltage:
            raised.append(self.add(
                "battery_low", "warning", "high", f"Battery voltage low: {snap.battery_voltage:.2f}V",
            ))
        if 0 < snap.battery_soc <= t.critical_soc:
            raised.append(self.add(
                "battery_critical", "error", "critical", f"Battery critical: {snap.battery_soc:.1f}%",
            ))
        if self._state.is_auto and not self._link.is_reachable(now):
            raised.append(self.add(
                "controller_disconnected", "error", "high", "Field controller disconnected",
            ))
        if self._cache.age() > t.data_timeout_seconds / 2:
            raised.append(self.add(
                "data_delayed", "warning", "medium", "Telemetry updates delayed",
            ))
        return raised

    def check_system(self, now: float | None = None) -> list[Alert]:
        """Periodic checks independent of telemetry arrival."""
        now = self._clock() if now is None else now
        raised = self.check_snapshot(now)
        snap = self._cache.current()
        if (
            self._state.is_auto
            and self._state.active_source == PowerSource.GRID
            and snap.solar_voltage > self._thresholds.min_solar_for_switch
        ):
            raised.append(self.add(
                "solar_idle", "info", "low",
                f"Solar good ({snap.solar_voltage:.2f}V) but running on grid",
            ))
        return raised

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="alert-monitor")

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
        interval = self._config.data_check_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                self.check_system()
            except Exception:
                logger.exception("Alert check failed")


def _level_for(level: str) -> NotificationLevel:
    try:
        return NotificationLevel(level)
    except ValueError:
        return NotificationLevel.INFO

"""Dashboard session: one operating state and its collaborators, wired once."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable

from power_switch.alerts.monitor import AlertMonitor
from power_switch.alerts.notifier import Notifier
from power_switch.auxiliary.commands import AuxiliaryController
from power_switch.config.schema import AppConfig
from power_switch.control.command import CommandChannel, epoch_ms
from power_switch.control.decision import DecisionEngine, SwitchDecision
from power_switch.control.executor import SwitchExecutor
from power_switch.control.loop import AutoEvaluator
from power_switch.control.mode import ModeController
from power_switch.control.remote import RemoteSync
from power_switch.control.state import OperatingState, PowerSource
from power_switch.energy.accumulator import EnergyAccumulator
from power_switch.logging.structured import bind_session
from power_switch.reporting.audit import AuditLog
from power_switch.reporting.status import StatusPublisher
from power_switch.store.base import RealtimeStore, Subscription
from power_switch.store.paths import build_paths
from power_switch.telemetry.cache import TelemetryCache
from power_switch.telemetry.ingest import IngestListener, LinkMonitor
from power_switch.telemetry.link import ControllerLink
from power_switch.telemetry.snapshot import TelemetrySnapshot

logger = logging.getLogger(__name__)


class DashboardSession:
    """Owns everything that used to be page-global state.

    Nothing here is a module-level singleton: tests and multiple dashboards
    can each build their own session over their own store.
    """

    def __init__(
        self,
        config: AppConfig,
        store: RealtimeStore,
        clock: Callable[[], float] = time.time,
        session_id: str | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.clock = clock
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.paths = build_paths(config.store.root)
        self.started_at = 0.0
        self.store_connected = store.is_connected

        self.state = OperatingState()
        self.cache = TelemetryCache(clock=clock)
        self.link = ControllerLink(timeout_seconds=config.auto.controller_timeout_seconds)
        self.notifier = Notifier(capacity=config.alerts.max_notifications, clock=clock)

        self.channel = CommandChannel(store, self.paths["commands"])
        self.status_publisher = StatusPublisher(store, self.paths["system_status"])
        self.audit = AuditLog(
            store,
            self.paths["auto_mode_logs"],
            self.paths["solar_priority_blocks"],
            enabled=config.auto.audit_enabled,
        )

        self.engine = DecisionEngine(config.thresholds, self.cache, self.state, self.link)
        self.executor = SwitchExecutor(
            config.thresholds, config.auto, self.state, self.cache, self.link, self.channel,
            status=self.status_publisher, audit=self.audit, notifier=self.notifier, clock=clock,
        )
        self.evaluator = AutoEvaluator(
            config.auto, self.engine, self.executor, self.state, self.cache, self.link,
            audit=self.audit, clock=clock,
        )

        self.ingest = IngestListener(store, self.paths["current_data"], self.cache, self.link, clock=clock)
        self.link_monitor = LinkMonitor(
            self.link, self.ingest,
            check_interval_seconds=config.alerts.controller_check_interval_seconds, clock=clock,
        )
        self.mode = ModeController(
            config.auto, self.state, self.cache, self.executor, self.evaluator, self.channel,
            status=self.status_publisher, notifier=self.notifier, refresh=self.ingest.refresh,
            clock=clock,
        )
        self.remote = RemoteSync(
            store, self.paths["system_status"], self.paths["commands"], self.mode, clock=clock,
        )
        self.alerts = AlertMonitor(
            config.thresholds, config.alerts, self.cache, self.link, self.state,
            notifier=self.notifier, clock=clock,
        )
        self.energy = EnergyAccumulator(
            config.energy, store, self.paths["energy_data"], self.cache,
            max_data_age=config.thresholds.data_timeout_seconds, clock=clock,
        )
        self.auxiliary = AuxiliaryController(self.channel, self.state, notifier=self.notifier, clock=clock)

        self.ingest.on_snapshot(self._on_snapshot)
        self.ingest.on_link_lost(self._on_link_lost)
        self._connection_watch: Subscription | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        bind_session(session_id=self.session_id)
        self.started_at = self.clock()
        logger.info("Dashboard session %s starting (root: %s)", self.session_id, self.config.store.root)

        await self.energy.load()
        self._connection_watch = self.store.watch_connection(self._on_connection)
        self.ingest.start()
        self.remote.start()
        self.link_monitor.start()
        self.alerts.start()
        self.energy.start()
        self._running = True

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.ingest.stop()
        self.remote.stop()
        if self._connection_watch is not None:
            self._connection_watch.unsubscribe()
            self._connection_watch = None
        await self.mode.shutdown()
        await self.link_monitor.stop()
        await self.alerts.stop()
        await self.energy.stop()
        await self.energy.save()
        logger.info("Dashboard session %s stopped", self.session_id)

    async def _on_snapshot(self, snapshot: TelemetrySnapshot) -> None:
        self.alerts.check_snapshot()
        await self.evaluator.on_telemetry()

    async def _on_link_lost(self, reason: str) -> None:
        self.notifier.warning(f"Field controller unreachable: {reason}")
        if not self.state.is_auto:
            return
        self.alerts.add("controller_disconnected", "error", "high", "Field controller disconnected")
        await self.executor.execute(
            SwitchDecision.switch(PowerSource.GRID, f"controller unreachable ({reason})"),
        )

    async def _on_connection(self, connected: bool) -> None:
        if connected == self.store_connected:
            return
        self.store_connected = connected
        if connected:
            logger.info("Realtime store connected")
            self.notifier.success("Connected to realtime store")
        else:
            logger.warning("Realtime store disconnected")
            self.notifier.error("Realtime store connection lost")

    def status(self) -> dict[str, Any]:
        """Status payload for the API and the event stream."""
        now = self.clock()
        state = self.state
        snapshot = self.cache.current()
        age = self.cache.age()
        return {
            "session_id": self.session_id,
            "mode": state.mode.value,
            "active_source": state.active_source.value,
            "source_confirmed": state.source_confirmed,
            "switch_in_flight": self.executor.release_if_settled(now),
            "last_switch": {
                "at": epoch_ms(state.last_switch_at) if state.last_switch_at else None,
                "reason": state.last_switch_reason,
            },
            "solar_priority_blocks": state.solar_priority_blocks,
            "auto_armed": self.evaluator.armed,
            "telemetry": {
                **snapshot.to_sensor_data(),
                "received": snapshot.received,
                "age_seconds": round(age, 1) if snapshot.received else None,
            },
            "controller_reachable": self.link.is_reachable(now),
            "store_connected": self.store_connected,
            "energy_wh": round(self.energy.total_wh, 2),
            "alerts": len(self.alerts.alerts),
        }

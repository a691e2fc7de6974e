"""Tests for the auto evaluator: triggers, throttling, stay auditing, disarm."""

from __future__ import annotations

import pytest

from conftest import FakeClock, settle, sunny
from power_switch.control.state import PowerMode, PowerSource
from power_switch.session import DashboardSession
from power_switch.store.memory import MemoryStore

COMMANDS = "system/commands"
LOGS = "system/auto_mode_logs"


async def _armed_on(session: DashboardSession, source: PowerSource, raw: dict | None = None) -> None:
    if raw is not None:
        await session.ingest.handle(raw)
    session.state.active_source = source
    await session.mode.enter_auto()
    await settle()


class TestTriggers:
    @pytest.mark.asyncio
    async def test_first_tick_runs_on_arm(self, session: DashboardSession) -> None:
        await _armed_on(session, PowerSource.GRID)
        status = session.evaluator.status
        assert status.evaluation_count == 1
        assert status.last_trigger == "timer"

    @pytest.mark.asyncio
    async def test_telemetry_triggers_switch(
        self, session: DashboardSession, store: MemoryStore, clock: FakeClock,
    ) -> None:
        await _armed_on(session, PowerSource.GRID)
        clock.advance(1)
        await session.ingest.handle(sunny())
        assert session.state.active_source == PowerSource.SOLAR
        assert [r["source"] for r in store.writes_to(COMMANDS)] == ["solar"]
        assert session.evaluator.status.last_trigger == "telemetry"

    @pytest.mark.asyncio
    async def test_telemetry_burst_is_throttled(
        self, session: DashboardSession, clock: FakeClock,
    ) -> None:
        await _armed_on(session, PowerSource.GRID)
        clock.advance(1)
        await session.ingest.handle(sunny(solar_voltage=12.0, battery_voltage=11.0, battery_soc=10))
        count = session.evaluator.status.evaluation_count
        for _ in range(5):
            clock.advance(0.1)
            await session.ingest.handle(sunny())
        assert session.evaluator.status.evaluation_count == count
        assert session.state.active_source == PowerSource.GRID

    @pytest.mark.asyncio
    async def test_timer_skips_right_after_telemetry(
        self, session: DashboardSession, clock: FakeClock,
    ) -> None:
        await _armed_on(session, PowerSource.GRID)
        clock.advance(1)
        await session.ingest.handle(sunny(solar_voltage=12.0, battery_voltage=11.0, battery_soc=10))
        count = session.evaluator.status.evaluation_count
        clock.advance(0.5)
        assert await session.evaluator.evaluate_once(trigger="timer") is None
        assert session.evaluator.status.evaluation_count == count
        clock.advance(1)
        await session.evaluator.evaluate_once(trigger="timer")
        assert session.evaluator.status.evaluation_count == count + 1

    @pytest.mark.asyncio
    async def test_manual_mode_never_evaluates(self, session: DashboardSession) -> None:
        assert await session.evaluator.evaluate_once() is None
        assert session.evaluator.status.evaluation_count == 0


class TestStayAudit:
    @pytest.mark.asyncio
    async def test_solar_stay_audited_once_per_run(
        self, session: DashboardSession, store: MemoryStore, clock: FakeClock,
    ) -> None:
        await _armed_on(session, PowerSource.SOLAR, raw=sunny())
        for _ in range(3):
            clock.advance(2)
            await session.evaluator.evaluate_once()
        logs = await store.get(LOGS)
        assert [entry["decision"] for entry in logs.values()] == ["STAY_ON_SOLAR"]
        assert store.writes_to(COMMANDS) == []

    @pytest.mark.asyncio
    async def test_other_stays_not_audited(
        self, session: DashboardSession, store: MemoryStore, clock: FakeClock,
    ) -> None:
        raw = sunny(solar_voltage=12.0, battery_voltage=11.0, battery_soc=10)
        await _armed_on(session, PowerSource.GRID, raw=raw)
        clock.advance(2)
        await session.evaluator.evaluate_once()
        assert await store.get(LOGS) is None


class TestDataTimeout:
    @pytest.mark.asyncio
    async def test_stale_telemetry_falls_back_to_grid(
        self, session: DashboardSession, store: MemoryStore, clock: FakeClock,
    ) -> None:
        await _armed_on(session, PowerSource.SOLAR, raw=sunny())
        clock.advance(61)
        result = await session.evaluator.evaluate_once()
        assert result is not None and result.executed
        assert session.state.active_source == PowerSource.GRID
        assert "data timeout" in store.writes_to(COMMANDS)[-1]["reason"]


class TestDisarm:
    @pytest.mark.asyncio
    async def test_disarm_stops_loop_and_keeps_source(self, session: DashboardSession) -> None:
        await _armed_on(session, PowerSource.BATTERY, raw=sunny(solar_voltage=12.0, battery_voltage=12.5))
        assert session.evaluator.running
        await session.mode.enter_manual()
        assert not session.evaluator.running
        assert session.state.mode == PowerMode.MANUAL
        assert session.state.active_source == PowerSource.BATTERY
        assert await session.evaluator.evaluate_once() is None

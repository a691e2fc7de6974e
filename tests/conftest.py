"""Shared test fixtures for Power Switch."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from power_switch.config.manager import ConfigManager
from power_switch.config.schema import AppConfig
from power_switch.store.memory import MemoryStore

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def sunny(**overrides) -> dict:
    """Raw current_data payload: good solar, healthy battery."""
    data = {
        "solar_voltage": 14.0,
        "solar_current": 3.0,
        "battery_voltage": 12.0,
        "battery_current": 1.0,
        "battery_soc": 60.0,
        "load_current": 2.0,
    }
    data.update(overrides)
    return data


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> AppConfig:
    """Provide a default test configuration."""
    return AppConfig()


@pytest.fixture
def config_manager(tmp_path: Path) -> ConfigManager:
    """Provide a config manager with test paths."""
    defaults = tmp_path / "config.defaults.yaml"
    defaults.write_text("store:\n  backend: memory\n")
    user = tmp_path / "config.yaml"
    mgr = ConfigManager(defaults_path=defaults, user_path=user)
    mgr.load()
    return mgr


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[MemoryStore, None]:
    """Provide a connected in-memory store."""
    s = MemoryStore()
    await s.connect()
    yield s
    await s.disconnect()


@pytest.fixture
def session_config() -> AppConfig:
    """Config whose periodic tasks never fire during a test; tests drive time."""
    return AppConfig(
        auto={"evaluation_interval_seconds": 3600, "refresh_delay_seconds": 0},
        alerts={"controller_check_interval_seconds": 3600, "data_check_interval_seconds": 3600},
        energy={"update_interval_seconds": 3600, "save_interval_seconds": 3600},
    )


@pytest_asyncio.fixture
async def session(session_config: AppConfig, store: MemoryStore, clock: FakeClock):
    """A dashboard session over the memory store (not started)."""
    from power_switch.session import DashboardSession

    s = DashboardSession(session_config, store, clock=clock, session_id="test")
    yield s
    if s.running:
        await s.stop()
    else:
        await s.mode.shutdown()
    await store.flush()


async def settle() -> None:
    """Let scheduled tasks (evaluator tick, refresh) run."""
    for _ in range(10):
        await asyncio.sleep(0)

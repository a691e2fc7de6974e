"""Tests for Application lifecycle wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from power_switch.config.manager import ConfigManager
from power_switch.config.schema import AppConfig
from power_switch.main import Application
from power_switch.store.memory import MemoryStore


@pytest.fixture
def config():
    return AppConfig(
        auto={"evaluation_interval_seconds": 3600},
        alerts={"controller_check_interval_seconds": 3600, "data_check_interval_seconds": 3600},
        energy={"update_interval_seconds": 3600, "save_interval_seconds": 3600},
    )


@pytest.fixture
def config_manager(tmp_path: Path):
    defaults = tmp_path / "config.defaults.yaml"
    defaults.write_text("store:\n  backend: memory\n")
    user = tmp_path / "config.yaml"
    mgr = ConfigManager(defaults_path=defaults, user_path=user)
    mgr.load()
    return mgr


class TestApplicationConstruction:
    def test_create_application(self, config, config_manager) -> None:
        app = Application(config, config_manager)
        assert app.config is config
        assert app.config_manager is config_manager
        assert app._running is False

    def test_initial_state(self, config) -> None:
        app = Application(config)
        assert app.session is None
        assert app._server is None


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_start_session_connects_store(self, config) -> None:
        store = MemoryStore()
        app = Application(config, store=store)
        session = await app.start_session()
        try:
            assert store.is_connected
            assert session.running
            assert app.session is session
            assert session.store_connected
        finally:
            await app.stop()
        assert not session.running
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_default_store_from_config(self, config) -> None:
        app = Application(config)
        session = await app.start_session()
        try:
            assert isinstance(session.store, MemoryStore)
        finally:
            await app.stop()

    @pytest.mark.asyncio
    async def test_stop_persists_energy(self, config) -> None:
        store = MemoryStore()
        app = Application(config, store=store)
        session = await app.start_session()
        session.energy.total_wh = 5.0
        await app.stop()
        assert store.writes_to("system/energy_data")[-1]["total_energy_wh"] == 5.0

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, config) -> None:
        app = Application(config, store=MemoryStore())
        await app.start_session()
        await app.stop()
        await app.stop()
        assert app._running is False

    @pytest.mark.asyncio
    async def test_stop_tells_server_to_exit(self, config) -> None:
        class FakeServer:
            should_exit = False

        app = Application(config, store=MemoryStore())
        await app.start_session()
        server = FakeServer()
        app._server = server
        await app.stop()
        assert server.should_exit is True
        assert app._server is None

"""Tests for telemetry snapshot parsing, cache, controller link and ingest."""

from __future__ import annotations

import math
from unittest.mock import AsyncMock

import pytest

from conftest import T0, FakeClock, sunny
from power_switch.store.memory import MemoryStore
from power_switch.telemetry.cache import TelemetryCache
from power_switch.telemetry.ingest import IngestListener, LinkMonitor
from power_switch.telemetry.link import ControllerLink
from power_switch.telemetry.snapshot import (
    SENSOR_FIELDS,
    TelemetrySnapshot,
    coerce_reading,
    parse_snapshot,
)


class TestSnapshot:
    def test_parse_full_payload(self) -> None:
        snap = parse_snapshot(sunny(), captured_at=T0)
        assert snap.solar_voltage == 14.0
        assert snap.battery_soc == 60.0
        assert snap.captured_at == T0
        assert snap.voltage_diff == pytest.approx(2.0)
        assert snap.solar_power_w == pytest.approx(42.0)

    def test_missing_and_malformed_fields_become_zero(self) -> None:
        snap = parse_snapshot(
            {"solar_voltage": "13.2", "battery_voltage": "abc", "battery_soc": None,
             "load_current": True, "solar_current": float("nan")},
            captured_at=T0,
        )
        assert snap.solar_voltage == 13.2
        assert snap.battery_voltage == 0.0
        assert snap.battery_soc == 0.0
        assert snap.load_current == 0.0
        assert snap.solar_current == 0.0
        assert snap.battery_current == 0.0

    def test_non_mapping_payload(self) -> None:
        snap = parse_snapshot([1, 2, 3], captured_at=T0)
        assert snap == TelemetrySnapshot(captured_at=T0)

    def test_coerce_reading(self) -> None:
        assert coerce_reading(5) == 5.0
        assert coerce_reading("1e3") == 1000.0
        assert coerce_reading(float("inf")) == 0.0
        assert coerce_reading(False) == 0.0
        assert coerce_reading({}) == 0.0

    def test_absent_solar_makes_diff_negative(self) -> None:
        snap = TelemetrySnapshot(solar_voltage=0.0, battery_voltage=12.6)
        assert snap.voltage_diff == pytest.approx(-12.6)

    def test_sensor_data_copy(self) -> None:
        data = parse_snapshot(sunny(), captured_at=T0).to_sensor_data()
        assert data["voltage_diff"] == 2.0
        assert "captured_at" not in data

    def test_sensor_data_uses_wire_names(self) -> None:
        data = parse_snapshot(sunny(), captured_at=T0).to_sensor_data()
        assert list(data) == [*SENSOR_FIELDS, "voltage_diff"]
        assert {name: data[name] for name in SENSOR_FIELDS} == sunny()


class TestTelemetryCache:
    def test_empty_cache(self) -> None:
        cache = TelemetryCache(clock=FakeClock())
        assert not cache.has_data
        assert cache.current().captured_at == 0
        assert math.isinf(cache.age())
        assert not cache.is_fresh(60)

    def test_update_stamps_receipt_time(self) -> None:
        clock = FakeClock()
        cache = TelemetryCache(clock=clock)
        cache.update(sunny())
        clock.advance(59)
        assert cache.is_fresh(60)
        clock.advance(1)
        assert cache.is_fresh(60)
        clock.advance(0.001)
        assert not cache.is_fresh(60)

    def test_update_replaces_wholesale(self) -> None:
        cache = TelemetryCache(clock=FakeClock())
        cache.update(sunny())
        cache.update({"battery_voltage": 12.5})
        assert cache.current().solar_voltage == 0.0
        assert cache.current().battery_voltage == 12.5

    def test_never_raises(self) -> None:
        cache = TelemetryCache(clock=FakeClock())
        snap = cache.update("garbage")
        assert snap.solar_voltage == 0.0
        assert cache.has_data


class TestControllerLink:
    def test_reachable_within_timeout(self) -> None:
        link = ControllerLink(timeout_seconds=30)
        assert link.mark_seen(T0) is True
        assert link.mark_seen(T0 + 1) is False
        assert link.is_reachable(T0 + 30)
        assert not link.is_reachable(T0 + 31)
        assert link.timed_out(T0 + 31)

    def test_mark_lost(self) -> None:
        link = ControllerLink()
        link.mark_seen(T0)
        assert link.mark_lost("gone") is True
        assert link.mark_lost("still gone") is False
        assert not link.is_reachable(T0)


class TestIngestListener:
    @pytest.mark.asyncio
    async def test_subscription_updates_cache_in_order(self, store: MemoryStore) -> None:
        clock = FakeClock()
        cache = TelemetryCache(clock=clock)
        link = ControllerLink()
        ingest = IngestListener(store, "system/current_data", cache, link, clock=clock)
        listener = AsyncMock()
        ingest.on_snapshot(listener)
        ingest.start()

        await store.set("system/current_data", sunny(solar_voltage=13.1))
        await store.set("system/current_data", sunny(solar_voltage=13.2))
        await store.flush()

        assert cache.current().solar_voltage == 13.2
        assert ingest.received_count == 2
        assert listener.await_count == 2
        assert link.is_reachable(clock())
        ingest.stop()

    @pytest.mark.asyncio
    async def test_empty_data_marks_link_lost(self, store: MemoryStore) -> None:
        clock = FakeClock()
        link = ControllerLink()
        ingest = IngestListener(store, "system/current_data", TelemetryCache(clock=clock), link, clock=clock)
        lost = AsyncMock()
        ingest.on_link_lost(lost)
        ingest.start()

        await store.set("system/current_data", sunny())
        await store.flush()
        await store.set("system/current_data", None)
        await store.flush()

        assert not link.reachable
        lost.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_listener_error_does_not_stop_ingest(self, store: MemoryStore) -> None:
        cache = TelemetryCache(clock=FakeClock())
        ingest = IngestListener(store, "system/current_data", cache, ControllerLink())
        ingest.on_snapshot(AsyncMock(side_effect=RuntimeError("boom")))
        await ingest.handle(sunny())
        assert cache.has_data

    @pytest.mark.asyncio
    async def test_refresh_reads_once(self, store: MemoryStore) -> None:
        cache = TelemetryCache(clock=FakeClock())
        ingest = IngestListener(store, "system/current_data", cache, ControllerLink())
        assert await ingest.refresh() is False
        await store.set("system/current_data", sunny())
        assert await ingest.refresh() is True
        assert cache.current().solar_voltage == 14.0

    @pytest.mark.asyncio
    async def test_refresh_on_store_error(self) -> None:
        from power_switch.store.base import StoreError

        store = AsyncMock()
        store.get = AsyncMock(side_effect=StoreError("offline"))
        ingest = IngestListener(store, "system/current_data", TelemetryCache(), ControllerLink())
        assert await ingest.refresh() is False


class TestLinkMonitor:
    @pytest.mark.asyncio
    async def test_timeout_flips_link_down(self, store: MemoryStore) -> None:
        clock = FakeClock()
        link = ControllerLink(timeout_seconds=30)
        ingest = IngestListener(store, "system/current_data", TelemetryCache(clock=clock), link, clock=clock)
        lost = AsyncMock()
        ingest.on_link_lost(lost)
        monitor = LinkMonitor(link, ingest, clock=clock)

        await ingest.handle(sunny())
        clock.advance(29)
        assert await monitor.check() is False
        clock.advance(1)
        assert await monitor.check() is True
        assert not link.reachable
        lost.assert_awaited_once()
        assert await monitor.check() is False

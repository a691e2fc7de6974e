"""Tests for the Firebase REST/streaming transport against a mocked HTTP layer."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from power_switch.config.schema import FirebaseConfig
from power_switch.store.base import StoreError, StoreWriteError
from power_switch.store.firebase import FirebaseStore

BASE = "https://demo-rtdb.firebaseio.com"


class FakeDatabase:
    """Records requests and answers like the RTDB REST API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None
        self.offline = False
        self.stream_body = ""

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": "denied"})
        if request.headers.get("accept") == "text/event-stream":
            return httpx.Response(
                200,
                content=self.stream_body.encode(),
                headers={"content-type": "text/event-stream"},
            )
        if request.method == "POST":
            return httpx.Response(200, json={"name": "-Nabc123"})
        if request.method == "GET":
            return httpx.Response(200, json={"solar_voltage": 13.2})
        return httpx.Response(200, json=json.loads(request.content or b"null"))


@pytest.fixture
def db() -> FakeDatabase:
    return FakeDatabase()


@pytest_asyncio.fixture
async def firebase(db: FakeDatabase):
    client = httpx.AsyncClient(transport=httpx.MockTransport(db.handler))
    store = FirebaseStore(
        FirebaseConfig(database_url=BASE + "/", auth_token="secret", reconnect_delay_seconds=60),
        client=client,
    )
    await store.connect()
    yield store
    await store.disconnect()
    await client.aclose()


class TestRest:
    def test_requires_database_url(self) -> None:
        with pytest.raises(ValueError):
            FirebaseStore(FirebaseConfig())

    @pytest.mark.asyncio
    async def test_connect_probes_root(self, firebase: FirebaseStore, db: FakeDatabase) -> None:
        assert firebase.is_connected
        probe = db.requests[0]
        assert probe.url.path == "/.json"
        assert probe.url.params["shallow"] == "true"
        assert probe.url.params["auth"] == "secret"

    @pytest.mark.asyncio
    async def test_set_is_put(self, firebase: FirebaseStore, db: FakeDatabase) -> None:
        await firebase.set("system/commands", {"action": "manual_stop"})
        request = db.requests[-1]
        assert request.method == "PUT"
        assert request.url.path == "/system/commands.json"
        assert json.loads(request.content) == {"action": "manual_stop"}

    @pytest.mark.asyncio
    async def test_update_is_patch(self, firebase: FirebaseStore, db: FakeDatabase) -> None:
        await firebase.update("system/system_status", {"mode": "auto"})
        assert db.requests[-1].method == "PATCH"

    @pytest.mark.asyncio
    async def test_push_returns_generated_key(self, firebase: FirebaseStore, db: FakeDatabase) -> None:
        key = await firebase.push("system/auto_mode_logs", {"decision": "STAY_ON_SOLAR"})
        assert key == "-Nabc123"
        assert db.requests[-1].method == "POST"

    @pytest.mark.asyncio
    async def test_get(self, firebase: FirebaseStore) -> None:
        assert await firebase.get("system/current_data") == {"solar_voltage": 13.2}

    @pytest.mark.asyncio
    async def test_http_error_keeps_link_up(self, firebase: FirebaseStore, db: FakeDatabase) -> None:
        db.fail_with = 401
        with pytest.raises(StoreWriteError, match="HTTP 401"):
            await firebase.set("system/commands", {})
        assert firebase.is_connected

    @pytest.mark.asyncio
    async def test_network_error_marks_disconnected(
        self, firebase: FirebaseStore, db: FakeDatabase,
    ) -> None:
        states: list[bool] = []

        async def watcher(connected: bool) -> None:
            states.append(connected)

        firebase.watch_connection(watcher)
        await asyncio.sleep(0)
        db.offline = True
        with pytest.raises(StoreError):
            await firebase.get("system/current_data")
        assert not firebase.is_connected
        assert states == [True, False]


class TestStreaming:
    @pytest.mark.asyncio
    async def test_put_and_patch_events_delivered_as_full_value(
        self, firebase: FirebaseStore, db: FakeDatabase,
    ) -> None:
        db.stream_body = (
            "event: put\n"
            'data: {"path": "/", "data": {"solar_voltage": 13.0, "battery_soc": 70}}\n'
            "\n"
            "event: keep-alive\n"
            "data: null\n"
            "\n"
            "event: patch\n"
            'data: {"path": "/", "data": {"battery_soc": 68}}\n'
            "\n"
            "event: put\n"
            'data: {"path": "/solar_voltage", "data": 12.4}\n'
            "\n"
        )
        seen: list = []
        done = asyncio.Event()

        async def handler(value) -> None:
            seen.append(value)
            if len(seen) == 3:
                done.set()

        sub = firebase.subscribe("system/current_data", handler)
        await asyncio.wait_for(done.wait(), timeout=2)
        sub.unsubscribe()

        assert seen == [
            {"solar_voltage": 13.0, "battery_soc": 70},
            {"solar_voltage": 13.0, "battery_soc": 68},
            {"solar_voltage": 12.4, "battery_soc": 68},
        ]
        stream_request = db.requests[-1]
        assert stream_request.url.path == "/system/current_data.json"

    @pytest.mark.asyncio
    async def test_null_put_delivers_none(self, firebase: FirebaseStore, db: FakeDatabase) -> None:
        db.stream_body = 'event: put\ndata: {"path": "/", "data": null}\n\n'
        seen: list = []
        done = asyncio.Event()

        async def handler(value) -> None:
            seen.append(value)
            done.set()

        sub = firebase.subscribe("system/current_data", handler)
        await asyncio.wait_for(done.wait(), timeout=2)
        sub.unsubscribe()
        assert seen == [None]

    @pytest.mark.asyncio
    async def test_malformed_events_skipped(self, firebase: FirebaseStore, db: FakeDatabase) -> None:
        db.stream_body = (
            "event: put\n"
            "data: {not json\n"
            "\n"
            "event: put\n"
            'data: {"data": {"solar_voltage": 1.0}}\n'
            "\n"
            "event: patch\n"
            'data: {"path": "/", "data": 5}\n'
            "\n"
            "event: put\n"
            'data: {"path": "/", "data": {"solar_voltage": 13.2}}\n'
            "\n"
        )
        seen: list = []
        done = asyncio.Event()

        async def handler(value) -> None:
            seen.append(value)
            done.set()

        sub = firebase.subscribe("system/current_data", handler)
        await asyncio.wait_for(done.wait(), timeout=2)
        sub.unsubscribe()
        assert seen[0] == {"solar_voltage": 13.2}

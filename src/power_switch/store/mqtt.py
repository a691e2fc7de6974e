"""MQTT transport: store paths mapped onto retained topics (aiomqtt)."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

import aiomqtt

from power_switch.config.schema import MQTTStoreConfig
from power_switch.store.base import (
    ConnectionHandler,
    StoreWriteError,
    Subscription,
    SubscriptionRegistry,
    ValueHandler,
    deliver,
    make_push_key,
)
from power_switch.store.paths import join_path, split_path
from power_switch.store.tree import get_in, merge_in, set_in

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 5.0


class MqttStore:
    """Realtime store on an MQTT broker.

    Every path is a topic under ``{topic_prefix}/``; values are JSON and
    published retained so late subscribers get the last value, which gives
    the same last-value-wins semantics as the cloud database. The whole
    prefix is subscribed once and mirrored locally; get() reads the mirror.
    """

    def __init__(self, config: MQTTStoreConfig) -> None:
        self._config = config
        self._prefix = config.topic_prefix.strip("/")
        self._client: aiomqtt.Client | None = None
        self._listener: asyncio.Task | None = None
        self._registry = SubscriptionRegistry()
        self._mirror: dict[str, Any] = {}
        self._connected = False
        self._ready = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Start the connection/listener task and wait briefly for the first connect."""
        if self._listener is None or self._listener.done():
            self._listener = asyncio.get_running_loop().create_task(self._run())
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._ready.wait(), timeout=5.0)
        if not self._connected:
            logger.warning(
                "MQTT store not yet connected to %s:%d, retrying in background",
                self._config.broker_host, self._config.broker_port,
            )

    async def disconnect(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        self._registry.clear()
        self._connected = False
        self._client = None

    def subscribe(self, path: str, handler: ValueHandler) -> Subscription:
        sub = self._registry.add(path, handler)
        asyncio.get_running_loop().create_task(deliver(sub, get_in(self._mirror, path)))
        return sub

    def watch_connection(self, handler: ConnectionHandler) -> Subscription:
        sub = self._registry.add_watcher(handler)
        asyncio.get_running_loop().create_task(deliver(sub, self._connected))
        return sub

    async def get(self, path: str) -> Any:
        return get_in(self._mirror, path)

    async def set(self, path: str, value: Any) -> None:
        await self._publish(path, value, retain=True)

    async def update(self, path: str, value: dict[str, Any]) -> None:
        current = get_in(self._mirror, path)
        merged: dict[str, Any] = {"v": current if isinstance(current, dict) else {}}
        merge_in(merged, "v", value)
        await self._publish(path, merged["v"], retain=True)

    async def push(self, path: str, value: Any) -> str:
        key = make_push_key()
        # Log entries are not retained: they are an event stream, not state
        await self._publish(join_path(path, key), value, retain=False)
        return key

    # ── Internals ─────────────────────────────────────────

    def _topic(self, path: str) -> str:
        return f"{self._prefix}/{join_path(path)}"

    def _path(self, topic: str) -> str | None:
        segments = split_path(topic)
        prefix = split_path(self._prefix)
        if segments[: len(prefix)] != prefix:
            return None
        return "/".join(segments[len(prefix):])

    async def _publish(self, path: str, value: Any, retain: bool) -> None:
        if not self._connected or self._client is None:
            raise StoreWriteError(f"publish {path} failed: MQTT not connected")
        try:
            await self._client.publish(self._topic(path), json.dumps(value), qos=1, retain=retain)
        except aiomqtt.MqttError as e:
            raise StoreWriteError(f"publish {path} failed: {e}") from e
        await self._apply(path, value)

    async def _apply(self, path: str, value: Any) -> None:
        set_in(self._mirror, path, value)
        for sub in self._registry.affected_by(path):
            await deliver(sub, get_in(self._mirror, sub.path))

    async def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        for watcher in self._registry.watchers:
            await deliver(watcher, connected)

    async def _run(self) -> None:
        """Connect, mirror the prefix, and reconnect after broker errors."""
        while True:
            try:
                async with aiomqtt.Client(
                    hostname=self._config.broker_host,
                    port=self._config.broker_port,
                    username=self._config.username or None,
                    password=self._config.password or None,
                ) as client:
                    self._client = client
                    await client.subscribe(f"{self._prefix}/#", qos=1)
                    await self._set_connected(True)
                    self._ready.set()
                    logger.info(
                        "MQTT store connected to %s:%d",
                        self._config.broker_host, self._config.broker_port,
                    )
                    async for message in client.messages:
                        await self._on_message(str(message.topic), message.payload)
            except aiomqtt.MqttError as e:
                logger.error("MQTT store connection error: %s", e)
            finally:
                self._client = None
                await self._set_connected(False)
            self._ready.set()
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    async def _on_message(self, topic: str, payload: Any) -> None:
        path = self._path(topic)
        if path is None:
            return
        raw = payload.decode() if isinstance(payload, (bytes, bytearray)) else str(payload)
        if not raw:
            value = None  # Empty retained payload clears the topic
        else:
            try:
                value = json.loads(raw)
            except ValueError:
                logger.debug("Ignoring non-JSON payload on %s", topic)
                return
        if get_in(self._mirror, path) == value:
            return  # Echo of our own publish
        await self._apply(path, value)

"""Firebase Realtime Database transport over the REST streaming API (httpx)."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

import httpx

from power_switch.config.schema import FirebaseConfig
from power_switch.store.base import (
    ConnectionHandler,
    StoreError,
    StoreWriteError,
    Subscription,
    SubscriptionRegistry,
    ValueHandler,
    deliver,
)
from power_switch.store.paths import join_path
from power_switch.store.tree import get_in, merge_in, set_in

logger = logging.getLogger(__name__)


class FirebaseStore:
    """Realtime store backed by Firebase RTDB.

    Reads and writes are plain REST calls (GET/PUT/PATCH/POST on
    ``{database_url}/{path}.json``). Each subscription holds one
    ``text/event-stream`` request; ``put``/``patch`` events are applied to a
    per-subscription mirror and the whole mirrored value is delivered.
    Connectivity is derived from request and stream outcomes.
    """

    def __init__(
        self,
        config: FirebaseConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.database_url:
            raise ValueError("store.firebase.database_url is required for the firebase backend")
        self._config = config
        self._base_url = config.database_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._registry = SubscriptionRegistry()
        self._streams: dict[int, asyncio.Task] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the HTTP client and probe the database root."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_seconds)
        try:
            resp = await self._client.get(self._url(""), params=self._params(shallow=True))
            resp.raise_for_status()
            await self._set_connected(True)
            logger.info("Firebase connected: %s", self._base_url)
        except httpx.HTTPError as e:
            logger.error("Firebase connect failed: %s", e)
            await self._set_connected(False)

    async def disconnect(self) -> None:
        for task in list(self._streams.values()):
            task.cancel()
        for task in list(self._streams.values()):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._streams.clear()
        self._registry.clear()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._connected = False

    def subscribe(self, path: str, handler: ValueHandler) -> Subscription:
        sub = self._registry.add(path, handler)
        task = asyncio.get_running_loop().create_task(self._stream_loop(sub))
        self._streams[id(sub)] = task
        cancel_registry = sub._cancel

        def _cancel() -> None:
            cancel_registry()
            stream = self._streams.pop(id(sub), None)
            if stream is not None:
                stream.cancel()

        sub._cancel = _cancel
        return sub

    def watch_connection(self, handler: ConnectionHandler) -> Subscription:
        sub = self._registry.add_watcher(handler)
        asyncio.get_running_loop().create_task(deliver(sub, self._connected))
        return sub

    async def get(self, path: str) -> Any:
        resp = await self._request("GET", path, StoreError)
        return resp.json()

    async def set(self, path: str, value: Any) -> None:
        await self._request("PUT", path, StoreWriteError, json=value)

    async def update(self, path: str, value: dict[str, Any]) -> None:
        await self._request("PATCH", path, StoreWriteError, json=value)

    async def push(self, path: str, value: Any) -> str:
        resp = await self._request("POST", path, StoreWriteError, json=value)
        return str(resp.json().get("name", ""))

    # ── Internals ─────────────────────────────────────────

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{join_path(path)}.json"

    def _params(self, **extra: Any) -> dict[str, str]:
        params = {k: "true" if v is True else str(v) for k, v in extra.items()}
        if self._config.auth_token:
            params["auth"] = self._config.auth_token
        return params

    async def _request(
        self, method: str, path: str, error: type[StoreError], json: Any = None,
    ) -> httpx.Response:
        if self._client is None:
            raise error(f"{method} {path} failed: store not connected")
        try:
            resp = await self._client.request(
                method, self._url(path), params=self._params(), json=json,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            # The server answered, so the link itself is up
            raise error(f"{method} {path} failed: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            await self._set_connected(False)
            raise error(f"{method} {path} failed: {e}") from e
        await self._set_connected(True)
        return resp

    async def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        if not connected:
            logger.warning("Firebase connection lost")
        for watcher in self._registry.watchers:
            await deliver(watcher, connected)

    async def _stream_loop(self, sub: Subscription) -> None:
        """Keep one event stream open for a subscription, reconnecting on error."""
        delay = self._config.reconnect_delay_seconds
        while sub.active:
            try:
                await self._stream_once(sub)
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, StoreError) as e:
                logger.warning("Firebase stream for %s dropped: %s", sub.path, e)
                await self._set_connected(False)
            if sub.active:
                await asyncio.sleep(delay)

    async def _stream_once(self, sub: Subscription) -> None:
        if self._client is None:
            raise StoreError("store not connected")
        mirror: dict[str, Any] = {}
        async with self._client.stream(
            "GET",
            self._url(sub.path),
            params=self._params(),
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self._config.timeout_seconds, read=None),
        ) as resp:
            resp.raise_for_status()
            await self._set_connected(True)
            async for event, data in _iter_events(resp):
                if event in ("put", "patch"):
                    try:
                        payload = json.loads(data)
                        target = join_path("value", payload["path"])
                        value = payload["data"]
                        if event == "patch" and not isinstance(value, dict):
                            raise TypeError(f"patch data is {type(value).__name__}")
                    except (ValueError, KeyError, TypeError, AttributeError) as e:
                        logger.warning("Skipping malformed %s event on %s: %r", event, sub.path, e)
                        continue
                    if event == "put":
                        set_in(mirror, target, value)
                    else:
                        merge_in(mirror, target, value)
                    await deliver(sub, get_in(mirror, "value"))
                elif event == "cancel":
                    raise StoreError(f"stream cancelled by server: {data}")
                elif event == "auth_revoked":
                    raise StoreError("stream auth revoked")
                # keep-alive: nothing to do


async def _iter_events(resp: httpx.Response) -> AsyncIterator[tuple[str, str]]:
    """Parse a text/event-stream body into (event, data) pairs."""
    event = ""
    data_lines: list[str] = []
    async for line in resp.aiter_lines():
        if not line:
            if event or data_lines:
                yield event, "\n".join(data_lines)
            event, data_lines = "", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
    if event or data_lines:
        yield event, "\n".join(data_lines)

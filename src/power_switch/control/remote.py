"""Remote sync: adopt mode changes and emergency stops written by other dashboards."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from power_switch.control.command import epoch_ms
from power_switch.control.mode import ModeController
from power_switch.store.base import RealtimeStore, Subscription

logger = logging.getLogger(__name__)


class RemoteSync:
    """Subscribes to system_status and commands on behalf of the mode controller.

    Only command records written after start() are acted upon, so the
    last-value replay of an old emergency_stop does not stop a new session.
    """

    def __init__(
        self,
        store: RealtimeStore,
        status_path: str,
        commands_path: str,
        mode: ModeController,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._status_path = status_path
        self._commands_path = commands_path
        self._mode = mode
        self._clock = clock
        self._since_ms = 0
        self._subscriptions: list[Subscription] = []

    def start(self) -> None:
        if self._subscriptions:
            return
        self._since_ms = epoch_ms(self._clock())
        self._subscriptions = [
            self._store.subscribe(self._status_path, self.on_status),
            self._store.subscribe(self._commands_path, self.on_command),
        ]
        logger.debug("Remote sync listening on %s and %s", self._status_path, self._commands_path)

    def stop(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    async def on_status(self, value: Any) -> None:
        if value:
            await self._mode.apply_remote_status(value)

    async def on_command(self, value: Any) -> None:
        if value:
            await self._mode.apply_remote_command(value, self._since_ms)

"""Realtime store transports."""

from __future__ import annotations

from power_switch.config.schema import StoreConfig
from power_switch.store.base import RealtimeStore, StoreError, StoreWriteError, Subscription
from power_switch.store.memory import MemoryStore

__all__ = [
    "MemoryStore",
    "RealtimeStore",
    "StoreError",
    "StoreWriteError",
    "Subscription",
    "create_store",
]


def create_store(config: StoreConfig) -> RealtimeStore:
    """Build the configured store transport (not yet connected)."""
    backend = config.backend.lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "firebase":
        from power_switch.store.firebase import FirebaseStore

        return FirebaseStore(config.firebase)
    if backend == "mqtt":
        from power_switch.store.mqtt import MqttStore

        return MqttStore(config.mqtt)
    raise ValueError(f"Unknown store backend: {config.backend}")

"""Field controller simulator: publish synthetic snapshots to the realtime store.

Reads the store settings from config.defaults.yaml / config.yaml, writes a
snapshot to current_data every ``--interval`` seconds and logs each command
record the dashboard writes. Useful for exercising auto mode locally.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import random
import time
from pathlib import Path

from power_switch.config.manager import ConfigManager
from power_switch.logging.structured import setup_logging
from power_switch.store import RealtimeStore, StoreError, create_store
from power_switch.store.paths import build_paths

logger = logging.getLogger("simulate_controller")

# (solar peak V, solar noise V, battery V, battery SOC)
PROFILES: dict[str, tuple[float, float, float, float]] = {
    "sunny": (14.6, 0.2, 12.4, 70.0),
    "cloudy": (13.0, 1.2, 12.3, 55.0),
    "night": (0.0, 0.0, 12.1, 45.0),
    "weak-battery": (12.8, 0.4, 11.2, 18.0),
}


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description=__doc__)
    p.add_argument("--config", type=Path, default=Path("config.yaml"), help="User config file")
    p.add_argument("--profile", choices=sorted(PROFILES), default="sunny")
    p.add_argument("--interval", type=float, default=2.0, help="Seconds between snapshots")
    p.add_argument("--period", type=float, default=120.0, help="Seconds per simulated solar cycle")
    p.add_argument("--count", type=int, default=0, help="Snapshots to send (0 = forever)")
    p.add_argument("--seed", type=int, default=None)
    return p.parse_args()


def make_snapshot(profile: str, t: float, period: float, rng: random.Random) -> dict[str, float]:
    peak, noise, battery_v, soc = PROFILES[profile]
    # Half-sine over the period: one simulated day
    phase = max(math.sin(math.pi * ((t % period) / period)), 0.0)
    solar_v = max(peak * (0.7 + 0.3 * phase) + rng.uniform(-noise, noise), 0.0) if peak else 0.0
    solar_i = round(4.0 * phase, 2) if solar_v else 0.0
    return {
        "solar_voltage": round(solar_v, 2),
        "solar_current": solar_i,
        "battery_voltage": round(battery_v + rng.uniform(-0.05, 0.05), 2),
        "battery_current": round(rng.uniform(-1.5, 1.5), 2),
        "battery_soc": round(soc, 1),
        "load_current": round(rng.uniform(0.5, 2.0), 2),
        "timestamp": int(time.time() * 1000),
    }


async def log_command(value) -> None:
    if isinstance(value, dict):
        logger.info(
            "Command received: action=%s source=%s relays=%s",
            value.get("action"), value.get("source"), value.get("relays"),
        )


async def run(args: argparse.Namespace, store: RealtimeStore, paths: dict[str, str]) -> None:
    rng = random.Random(args.seed)
    sub = store.subscribe(paths["commands"], log_command)
    start = time.monotonic()
    sent = 0
    try:
        while args.count == 0 or sent < args.count:
            snapshot = make_snapshot(args.profile, time.monotonic() - start, args.period, rng)
            try:
                await store.set(paths["current_data"], snapshot)
                sent += 1
                logger.info(
                    "Snapshot %d: solar=%.2fV battery=%.2fV soc=%.1f%%",
                    sent, snapshot["solar_voltage"], snapshot["battery_voltage"],
                    snapshot["battery_soc"],
                )
            except StoreError as e:
                logger.warning("Snapshot write failed: %s", e)
            await asyncio.sleep(args.interval)
    finally:
        sub.unsubscribe()


async def main_async(args: argparse.Namespace) -> None:
    config = ConfigManager(Path("config.defaults.yaml"), args.config).load()
    store = create_store(config.store)
    await store.connect()
    try:
        await run(args, store, build_paths(config.store.root))
    finally:
        await store.disconnect()


def main() -> None:
    setup_logging(level="INFO", fmt="console")
    asyncio.run(main_async(parse_args()))


if __name__ == "__main__":
    main()

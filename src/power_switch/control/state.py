"""Operating state shared by the mode controller, executor and decision engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PowerMode(str, Enum):
    """Top-level operating modes."""

    AUTO = "auto"
    MANUAL = "manual"
    STOP = "stop"


class PowerSource(str, Enum):
    """Mutually exclusive supply paths to the load."""

    SOLAR = "solar"
    BATTERY = "battery"
    GRID = "grid"
    OFF = "off"


# Relay wiring on the field controller: one relay per source
RELAY_FOR_SOURCE: dict[PowerSource, str] = {
    PowerSource.SOLAR: "relay1",
    PowerSource.BATTERY: "relay2",
    PowerSource.GRID: "relay3",
}


def relays_for(source: PowerSource) -> dict[str, bool]:
    """At most one relay closed; OFF opens all three."""
    return {relay: src == source for src, relay in RELAY_FOR_SOURCE.items()}


@dataclass
class OperatingState:
    """Mutable per-session operating state.

    Field ownership: ``mode`` belongs to the ModeController; ``active_source``,
    ``last_switch_at``, ``switch_in_flight``, ``settle_deadline`` and
    ``source_confirmed`` belong to the SwitchExecutor (the ModeController
    writes them only on stop, all-off and reset). The decision engine reads.
    """

    mode: PowerMode = PowerMode.MANUAL
    active_source: PowerSource = PowerSource.GRID
    last_switch_at: float = 0.0
    switch_in_flight: bool = False
    settle_deadline: float = 0.0
    # Intent recorded, not yet confirmed: False after an optimistic switch
    # until a system_status echo reports the same source.
    source_confirmed: bool = True
    solar_priority_blocks: int = 0
    last_block_at: float = 0.0
    last_switch_reason: str = ""

    @property
    def is_auto(self) -> bool:
        return self.mode == PowerMode.AUTO

    @property
    def is_stopped(self) -> bool:
        return self.mode == PowerMode.STOP

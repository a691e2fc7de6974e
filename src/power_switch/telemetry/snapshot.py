"""Telemetry snapshot model for field controller sensor readings."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Mapping

# Reading names, identical on the current_data path and the snapshot
SENSOR_FIELDS = (
    "solar_voltage",
    "solar_current",
    "battery_voltage",
    "battery_current",
    "battery_soc",
    "load_current",
)


@dataclass(frozen=True)
class TelemetrySnapshot:
    """One sensor snapshot. 0 means the sensor is absent or faulted."""

    solar_voltage: float = 0.0
    solar_current: float = 0.0
    battery_voltage: float = 0.0
    battery_current: float = 0.0
    battery_soc: float = 0.0  # 0-100
    load_current: float = 0.0
    captured_at: float = 0.0  # Receipt time (epoch seconds), 0 = never received

    @property
    def voltage_diff(self) -> float:
        """Solar minus battery voltage. Deeply negative when solar is absent."""
        return self.solar_voltage - self.battery_voltage

    @property
    def solar_power_w(self) -> float:
        return self.solar_voltage * self.solar_current

    @property
    def received(self) -> bool:
        return self.captured_at > 0

    def to_sensor_data(self) -> dict[str, Any]:
        """Audit copy attached to command records and logs."""
        data = {name: getattr(self, name) for name in SENSOR_FIELDS}
        data["voltage_diff"] = round(self.voltage_diff, 2)
        return data

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def coerce_reading(value: Any) -> float:
    """Parse a loosely-typed reading; anything unusable becomes 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_snapshot(raw: Any, captured_at: float) -> TelemetrySnapshot:
    """Build a snapshot from a raw store payload, substituting 0 for bad fields."""
    source: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
    values = {name: coerce_reading(source.get(name)) for name in SENSOR_FIELDS}
    return TelemetrySnapshot(captured_at=captured_at, **values)

"""Latest-value telemetry cache shared by ingest and the decision engine."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable

from power_switch.telemetry.snapshot import TelemetrySnapshot, parse_snapshot

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class TelemetryCache:
    """Holds the last snapshot. Written only by the ingest listener.

    Never raises: malformed input is stored as a zero snapshot.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._snapshot = TelemetrySnapshot()

    def update(self, raw: Any) -> TelemetrySnapshot:
        """Parse raw into a snapshot stamped with the receipt time and store it."""
        snapshot = parse_snapshot(raw, captured_at=self._clock())
        self._snapshot = snapshot
        return snapshot

    def current(self) -> TelemetrySnapshot:
        return self._snapshot

    def age(self) -> float:
        """Seconds since the last update, inf if nothing was ever received."""
        if not self._snapshot.received:
            return math.inf
        return self._clock() - self._snapshot.captured_at

    def is_fresh(self, max_age: float) -> bool:
        return self.age() <= max_age

    @property
    def has_data(self) -> bool:
        return self._snapshot.received

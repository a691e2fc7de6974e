"""Field controller reachability, inferred from snapshot arrivals."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ControllerLink:
    """The field controller counts as reachable while snapshots keep arriving.

    ``reachable`` is latched by the ingest listener (on data / on an empty
    snapshot) and by the link monitor; ``is_reachable`` additionally
    requires the last snapshot to be within ``timeout_seconds``.
    """

    timeout_seconds: float = 30.0
    reachable: bool = False
    last_seen: float = 0.0

    def mark_seen(self, now: float) -> bool:
        """Record a snapshot arrival. Returns True if the link came back up."""
        came_up = not self.reachable
        self.reachable = True
        self.last_seen = now
        if came_up:
            logger.info("Field controller reachable")
        return came_up

    def mark_lost(self, reason: str) -> bool:
        """Returns True if the link was up before."""
        was_up = self.reachable
        self.reachable = False
        if was_up:
            logger.warning("Field controller unreachable: %s", reason)
        return was_up

    def is_reachable(self, now: float) -> bool:
        return self.reachable and (now - self.last_seen) < self.timeout_seconds

    def timed_out(self, now: float) -> bool:
        """Latched up but silent for longer than the timeout."""
        return self.reachable and (now - self.last_seen) >= self.timeout_seconds

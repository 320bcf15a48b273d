"""How long a worker waits after each tick, by outcome."""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum


class Outcome(str, Enum):
    WORKED = "worked"   # produced/submitted something
    GATED  = "gated"    # not bound / not enabled / not verified
    IDLE   = "idle"     # authorized but nothing to do
    ERROR  = "error"    # network failure or unexpected exception


@dataclass(frozen=True)
class BackoffPolicy:
    work_interval:  float = 1.0
    gated_interval: float = 10.0
    idle_interval:  float = 5.0
    error_base:     float = 5.0
    error_max:      float = 60.0

    def delay(self, outcome: Outcome, consecutive_errors: int = 0) -> float:
        """Errors double from error_base up to error_max."""
        if outcome is Outcome.WORKED:
            return self.work_interval
        if outcome is Outcome.GATED:
            return self.gated_interval
        if outcome is Outcome.IDLE:
            return self.idle_interval
        exponent = max(0, consecutive_errors - 1)
        return min(self.error_max, self.error_base * (2 ** min(exponent, 16)))

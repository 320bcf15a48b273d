"""
Proof-of-Work Engine
====================

Searches for a nonce whose SHA-256 digest meets a fractional difficulty.

Difficulty d = n + f (n integer, 0 <= f < 1):
  - the first n hex characters of the digest must be '0'
  - if f > 0, the hex digit at position n must be below
    max(1, floor(16 * (1 - f))), so the accepted share of that digit's
    16 values shrinks as f grows

Difficulty 0.5 therefore accepts leading digits 0-7, and 5.5 requires five
zeros followed by a digit <= 7. The search is pure CPU work: no I/O, no
timeout. It only stops early if a cancel event is given and gets set.
"""

from __future__ import annotations
import hashlib
import math
import threading
import time
from dataclasses import dataclass
from typing import Optional

HEX_DIGITS = 64           # SHA-256 hex digest length
CANCEL_CHECK_EVERY = 4096  # nonces between cancel-event polls


class SearchCancelled(Exception):
    """The cancel event was set before a solution was found."""


@dataclass(frozen=True)
class PowSolution:
    nonce:      int
    hash:       str
    elapsed_ms: int


def split_difficulty(difficulty: float) -> tuple[int, float]:
    """
    Split into (zero-prefix length, fractional remainder).
    Raises ValueError for negative, non-finite or unreachable difficulties.
    """
    if difficulty is None or not math.isfinite(difficulty) or difficulty < 0:
        raise ValueError(f"difficulty must be a finite number >= 0, got {difficulty!r}")
    zeros = int(math.floor(difficulty))
    fraction = difficulty - zeros
    needed = zeros + (1 if fraction > 0 else 0)
    if needed > HEX_DIGITS:
        raise ValueError(f"difficulty {difficulty} needs more than {HEX_DIGITS} hex digits")
    return zeros, fraction


def fraction_bound(fraction: float) -> int:
    """floor(16 * (1 - f)): the boundary for the digit after the zero prefix."""
    return int(math.floor(16 * (1 - fraction)))


def meets_difficulty(digest: str, difficulty: float) -> bool:
    zeros, fraction = split_difficulty(difficulty)
    return _meets(digest, zeros, fraction)


def _meets(digest: str, zeros: int, fraction: float) -> bool:
    if not digest.startswith("0" * zeros):
        return False
    if fraction <= 0:
        return True
    if len(digest) <= zeros:
        return False
    return int(digest[zeros], 16) < max(1, fraction_bound(fraction))


def make_seed_prefix(host_id: str, device_id: str, now_ms: Optional[int] = None) -> str:
    """HOST-DEVICE-<ms timestamp>; a fresh timestamp keeps searches from overlapping."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{host_id}-{device_id}-{now_ms}"


def search(
    difficulty:  float,
    seed_prefix: str,
    cancel:      Optional[threading.Event] = None,
) -> PowSolution:
    """
    Return the first nonce (counting up from 0) whose
    sha256(f"{seed_prefix}-{nonce}") meets the difficulty.
    """
    zeros, fraction = split_difficulty(difficulty)
    started = time.monotonic()

    nonce = 0
    while True:
        digest = hashlib.sha256(f"{seed_prefix}-{nonce}".encode()).hexdigest()
        if _meets(digest, zeros, fraction):
            elapsed_ms = int((time.monotonic() - started) * 1000)
            return PowSolution(nonce=nonce, hash=digest, elapsed_ms=elapsed_ms)
        nonce += 1
        if cancel is not None and nonce % CANCEL_CHECK_EVERY == 0 and cancel.is_set():
            raise SearchCancelled(f"search cancelled after {nonce} nonces")

"""
Mining Worker
=============

One tick = one pass of: bind → gate check → PoW search → share submit.

While a share burst is running, the gate is only re-checked with a small
per-tick probability (recheck_probability). So after the coordinator
disables this host, the worker may submit a few more shares before it
notices. A failed share submission ends the burst and forces a full check
on the next tick.

Only the claimed difficulty is sent with a share. The nonce and hash are
logged at DEBUG and then dropped.
"""

from __future__ import annotations
import logging
import random
import threading
from typing import Callable, Optional

from .backoff import BackoffPolicy, Outcome
from .config import AgentConfig
from .coordinator import CoordinatorClient
from .gate import Gate
from .proof_of_work import PowSolution, make_seed_prefix, search as pow_search

log = logging.getLogger(__name__)


class MiningWorker:
    name = "miner"

    def __init__(
        self,
        config: AgentConfig,
        client: CoordinatorClient,
        gate:   Gate,
        policy: BackoffPolicy,
        rng:    Optional[Callable[[], float]] = None,
        cancel: Optional[threading.Event] = None,
        search: Callable[..., PowSolution] = pow_search,
    ):
        self.config = config
        self.client = client
        self.gate   = gate
        self.policy = policy
        self.rng    = rng or random.random
        self.cancel = cancel
        self.search = search

        self.in_burst           = False
        self.consecutive_errors = 0
        self.shares_submitted   = 0

    # ─── Gate ─────────────────────────────────────────────────────────────────

    def _needs_check(self) -> bool:
        if not self.in_burst:
            return True
        return self.rng() < self.config.recheck_probability

    def _authorize(self) -> Optional[Outcome]:
        """Bind and read the gate. Returns None when mining may proceed."""
        self.gate.bind()
        if not self.gate.bound:
            return Outcome.ERROR if self.gate.errored else Outcome.GATED

        self.gate.refresh()
        if not self.gate.may_work(require_verified=self.config.require_gpu_verified):
            return Outcome.ERROR if self.gate.errored else Outcome.GATED
        return None

    # ─── Tick ─────────────────────────────────────────────────────────────────

    def _finish(self, outcome: Outcome) -> float:
        if outcome is Outcome.ERROR:
            self.consecutive_errors += 1
        else:
            self.consecutive_errors = 0
        return self.policy.delay(outcome, self.consecutive_errors)

    def record_error(self) -> float:
        """Called by the loop runner when tick() raised."""
        self.in_burst = False
        return self._finish(Outcome.ERROR)

    def tick(self) -> float:
        """Run one iteration and return how long to wait before the next."""
        if self._needs_check():
            denied = self._authorize()
            if denied is not None:
                if self.in_burst:
                    log.info(f"[miner] burst ended after gate check: {self.gate.state.value}")
                self.in_burst = False
                return self._finish(denied)
            if not self.in_burst:
                log.info(f"[miner] authorized — mining at difficulty={self.config.difficulty}")
            self.in_burst = True

        identity = self.config.identity
        seed = make_seed_prefix(identity.host_id, identity.device_id)
        solution = self.search(self.config.difficulty, seed, cancel=self.cancel)
        log.debug(
            f"[miner] solved nonce={solution.nonce} hash={solution.hash} "
            f"elapsed_ms={solution.elapsed_ms}"
        )

        result = self.client.submit_share(self.config.difficulty)
        if not result.ok:
            log.error(f"[miner] share failed: {result.describe()}")
            self.in_burst = False
            return self._finish(Outcome.ERROR)

        self.shares_submitted += 1
        total = result.value.total
        log.info(
            f"[miner] share ok diff={self.config.difficulty} "
            f"elapsed_ms={solution.elapsed_ms} total={total if total is not None else '?'}"
        )
        return self._finish(Outcome.WORKED)

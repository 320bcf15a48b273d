"""
Gate State Machine
==================

Tracks whether this agent may work right now, from the coordinator's point
of view.

    UNBOUND → BOUND_DISABLED → BOUND_ENABLED_UNVERIFIED → BOUND_ENABLED_VERIFIED
                          ↖ any failure ↘ ERROR_BACKOFF

Every check re-derives the state from one coordinator reply; nothing is
sticky. A bind that fails or says bound=false drops back to UNBOUND. A state
reply with enabled=false drops to BOUND_DISABLED. Each worker loop owns its
own Gate, so the two loops never share authorization state.
"""

from __future__ import annotations
import logging
from enum import Enum
from typing import Optional

from .coordinator import BindResult, CallResult, CoordinatorClient, StateSnapshot

log = logging.getLogger(__name__)


class GateState(str, Enum):
    UNBOUND                  = "UNBOUND"
    BOUND_DISABLED           = "BOUND_DISABLED"
    BOUND_ENABLED_UNVERIFIED = "BOUND_ENABLED_UNVERIFIED"
    BOUND_ENABLED_VERIFIED   = "BOUND_ENABLED_VERIFIED"
    ERROR_BACKOFF            = "ERROR_BACKOFF"


ENABLED_STATES = {GateState.BOUND_ENABLED_UNVERIFIED, GateState.BOUND_ENABLED_VERIFIED}


class Gate:
    def __init__(self, client: CoordinatorClient, gpu_model: Optional[str] = None, name: str = "gate"):
        self.client    = client
        self.gpu_model = gpu_model
        self.name      = name

        self.state: GateState = GateState.UNBOUND
        self.bound: bool = False
        self._bind_fresh = False
        self.snapshot: Optional[StateSnapshot] = None
        self.last_error: Optional[str] = None

    # ─── Transitions ──────────────────────────────────────────────────────────

    def _move(self, new_state: GateState, detail: str = "") -> None:
        if new_state is not self.state:
            suffix = f" ({detail})" if detail else ""
            level = logging.WARNING if new_state is GateState.ERROR_BACKOFF else logging.INFO
            log.log(level, f"[{self.name}] {self.state.value} → {new_state.value}{suffix}")
        self.state = new_state

    def _fail(self, result: CallResult, call: str) -> None:
        self.last_error = f"{call}: {result.describe()}"
        self._move(GateState.ERROR_BACKOFF, self.last_error)

    def bind(self) -> GateState:
        """Bind (idempotent). Not bound afterwards means: don't read the gate."""
        result = self.client.bind(self.gpu_model)
        self._bind_fresh = False
        if not result.ok:
            self.bound = False
            self.snapshot = None
            self._fail(result, "bind")
            return self.state

        reply: BindResult = result.value
        self.last_error = None
        if not reply.bound:
            self.bound = False
            self.snapshot = None
            self._move(GateState.UNBOUND, "coordinator reports bound=false")
            return self.state

        self.bound = True
        self._bind_fresh = True
        if self.state in (GateState.UNBOUND, GateState.ERROR_BACKOFF):
            self._move(GateState.BOUND_DISABLED, "bound")
        return self.state

    def refresh(self) -> GateState:
        """Query the coordinator's enabled/verified flags for this host."""
        result = self.client.query_state()
        if not result.ok:
            self._bind_fresh = False
            self.snapshot = None
            self._fail(result, "state")
            return self.state

        self.last_error = None
        self.observe(result.value)
        return self.state

    def observe(self, snapshot: StateSnapshot) -> GateState:
        """
        Apply one state reply. Binding comes from a bind() made just before
        this reply, or else from the reply itself: naming our wallet, or
        saying we are enabled, implies the coordinator holds a binding.
        """
        self.snapshot = snapshot
        self.bound = self._bind_fresh or bool(snapshot.wallet or snapshot.enabled)
        self._bind_fresh = False

        if not self.bound:
            self._move(GateState.UNBOUND, "no binding")
        elif not snapshot.enabled:
            self._move(GateState.BOUND_DISABLED, "enabled=false")
        elif snapshot.gpu_verified:
            self._move(GateState.BOUND_ENABLED_VERIFIED, f"gpu={snapshot.gpu_reported_model or '?'}")
        else:
            self._move(GateState.BOUND_ENABLED_UNVERIFIED, f"gpu={snapshot.gpu_reported_model or '?'}")
        return self.state

    # ─── Predicates ───────────────────────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return self.state in ENABLED_STATES

    @property
    def gpu_verified(self) -> bool:
        return self.state is GateState.BOUND_ENABLED_VERIFIED

    @property
    def errored(self) -> bool:
        return self.state is GateState.ERROR_BACKOFF

    def may_work(self, require_verified: bool = False) -> bool:
        if not self.bound or not self.enabled:
            return False
        return self.gpu_verified or not require_verified

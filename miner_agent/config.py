"""
Agent Configuration
===================

Everything the agent needs to know about itself, read once at startup and
frozen for the lifetime of the process.

Precedence (lowest → highest):
  1. JSON file at ~/.miner-agent/agent.json (or $MINER_AGENT_CONFIG)
  2. Environment variables (WALLET, HOST_ID, COORD, ...)
  3. Command-line flags passed in by the supervisor

Components receive an AgentConfig; none of them read os.environ directly.
"""

from __future__ import annotations
import json
import logging
import math
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .proof_of_work import split_difficulty

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".miner-agent" / "agent.json"

DEFAULT_HOST_ID     = "HOST-LOCAL"
DEFAULT_COORD_URL   = "http://localhost:8787"
DEFAULT_INFER_URL   = "http://localhost:11434"
DEFAULT_DIFFICULTY  = 4.0
DEFAULT_MODEL_MAP   = "llama=llama3"
DEFAULT_MODEL       = "mistral"

_TRUE  = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised when a required setting is missing. Fatal at startup."""


# ─── Config file ──────────────────────────────────────────────────────────────

def load_config(path: Path) -> dict:
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            log.warning(f"Ignoring unreadable config file {path}: {e}")
            return {}
        if isinstance(data, dict):
            return data
        log.warning(f"Ignoring config file {path}: top level is not an object")
    return {}


# ─── Value parsing ────────────────────────────────────────────────────────────

def _parse_float(key: str, raw, default: float, minimum: float = 0.0, positive: bool = False) -> float:
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        log.warning(f"{key}={raw!r} is not a number — using default {default}")
        return default
    if not math.isfinite(value) or value < minimum or (positive and value <= 0):
        log.warning(f"{key}={raw!r} is out of range — using default {default}")
        return default
    return value


def _parse_difficulty(raw) -> float:
    value = _parse_float("DIFFICULTY", raw, DEFAULT_DIFFICULTY)
    try:
        split_difficulty(value)
    except ValueError as e:
        log.warning(f"DIFFICULTY={raw!r}: {e} — using default {DEFAULT_DIFFICULTY}")
        return DEFAULT_DIFFICULTY
    return value


def _parse_bool(key: str, raw, default: bool) -> bool:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    log.warning(f"{key}={raw!r} is not a boolean — using default {default}")
    return default


def parse_model_map(raw: str) -> tuple[tuple[str, str], ...]:
    """
    Parse "keyword=model,keyword=model" into ordered (keyword, model) rules.
    Malformed entries are skipped.
    """
    rules = []
    for chunk in (raw or "").split(","):
        keyword, sep, model = chunk.partition("=")
        keyword, model = keyword.strip().lower(), model.strip()
        if not sep or not keyword or not model:
            if chunk.strip():
                log.warning(f"Ignoring malformed model map entry {chunk.strip()!r}")
            continue
        rules.append((keyword, model))
    return tuple(rules)


# ─── Identity + Config ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Identity:
    wallet:    str
    host_id:   str
    device_id: str


@dataclass(frozen=True)
class AgentConfig:
    identity:             Identity
    coord_url:            str   = DEFAULT_COORD_URL
    infer_url:            str   = DEFAULT_INFER_URL
    difficulty:           float = DEFAULT_DIFFICULTY
    gpu_model_override:   Optional[str] = None
    detect_gpu:           bool  = True
    require_gpu_verified: bool  = True
    model_map:            tuple = field(default_factory=lambda: parse_model_map(DEFAULT_MODEL_MAP))
    default_model:        str   = DEFAULT_MODEL
    http_timeout:         float = 10.0
    infer_timeout:        float = 120.0
    share_interval:       float = 1.0
    gated_interval:       float = 10.0
    idle_interval:        float = 5.0
    backoff_base:         float = 5.0
    max_backoff:          float = 60.0
    recheck_probability:  float = 0.1

    @classmethod
    def from_sources(
        cls,
        env:       Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, object]] = None,
        file_path: Optional[Path] = None,
    ) -> "AgentConfig":
        """
        Merge file, environment and overrides into a frozen config.
        Raises ConfigError if no wallet is configured.
        """
        env = os.environ if env is None else env
        if file_path is None:
            file_path = Path(env.get("MINER_AGENT_CONFIG") or DEFAULT_CONFIG_PATH)

        merged: dict = {}
        merged.update(load_config(file_path))
        merged.update({k: v for k, v in env.items() if v != ""})
        merged.update({k: v for k, v in (overrides or {}).items() if v is not None})

        wallet = str(merged.get("WALLET") or "").strip()
        if not wallet:
            raise ConfigError("WALLET is required (set it in the environment or pass --wallet)")

        identity = Identity(
            wallet    = wallet,
            host_id   = str(merged.get("HOST_ID") or DEFAULT_HOST_ID).strip(),
            device_id = str(merged.get("DEVICE_ID") or socket.gethostname()).strip(),
        )

        probability = _parse_float("RECHECK_PROBABILITY", merged.get("RECHECK_PROBABILITY"), 0.1)
        if probability > 1.0:
            log.warning(f"RECHECK_PROBABILITY={probability} is above 1 — clamping")
            probability = 1.0

        backoff_base = _parse_float("BACKOFF_BASE", merged.get("BACKOFF_BASE"), 5.0)
        max_backoff  = _parse_float("MAX_BACKOFF", merged.get("MAX_BACKOFF"), 60.0)

        return cls(
            identity             = identity,
            coord_url            = str(merged.get("COORD") or DEFAULT_COORD_URL).rstrip("/"),
            infer_url            = str(merged.get("INFER_URL") or DEFAULT_INFER_URL).rstrip("/"),
            difficulty           = _parse_difficulty(merged.get("DIFFICULTY")),
            gpu_model_override   = str(merged.get("GPU_MODEL") or "").strip() or None,
            detect_gpu           = _parse_bool("SMI", merged.get("SMI"), True),
            require_gpu_verified = _parse_bool("REQUIRE_GPU_VERIFIED", merged.get("REQUIRE_GPU_VERIFIED"), True),
            model_map            = parse_model_map(str(merged.get("INFER_MODEL_MAP", DEFAULT_MODEL_MAP))),
            default_model        = str(merged.get("INFER_DEFAULT_MODEL") or DEFAULT_MODEL).strip(),
            http_timeout         = _parse_float("HTTP_TIMEOUT", merged.get("HTTP_TIMEOUT"), 10.0, positive=True),
            infer_timeout        = _parse_float("INFER_TIMEOUT", merged.get("INFER_TIMEOUT"), 120.0, positive=True),
            share_interval       = _parse_float("SHARE_INTERVAL", merged.get("SHARE_INTERVAL"), 1.0),
            gated_interval       = _parse_float("GATED_INTERVAL", merged.get("GATED_INTERVAL"), 10.0),
            idle_interval        = _parse_float("IDLE_INTERVAL", merged.get("IDLE_INTERVAL"), 5.0),
            backoff_base         = backoff_base,
            max_backoff          = max(max_backoff, backoff_base),
            recheck_probability  = probability,
        )

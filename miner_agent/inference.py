"""
Inference Backend Client
========================

Calls a local generation endpoint (Ollama-compatible /api/generate) and
returns the generated text. Any failure is raised as InferenceError so the
job worker can turn it into a job-level error report.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import requests

log = logging.getLogger(__name__)


class InferenceError(Exception):
    """The backend did not produce text for a job."""


@dataclass(frozen=True)
class ModelMap:
    """
    Maps a job's logical model id to a backend model name.
    Rules are (keyword, backend_model) checked in order as case-insensitive
    substrings; no match falls back to `default`.
    """
    rules:   tuple
    default: str

    def resolve(self, model_id: Optional[str]) -> str:
        needle = (model_id or "").lower()
        for keyword, backend_model in self.rules:
            if keyword in needle:
                return backend_model
        return self.default


class InferenceClient:
    def __init__(
        self,
        base_url:  str,
        model_map: ModelMap,
        timeout:   float = 120.0,
        session:   Optional[requests.Session] = None,
    ):
        self.base_url  = base_url.rstrip("/")
        self.model_map = model_map
        self.timeout   = timeout
        self.session   = session or requests.Session()

    def generate(self, model_id: str, prompt: str) -> str:
        backend_model = self.model_map.resolve(model_id)
        log.debug(f"[infer] model_id={model_id!r} → backend_model={backend_model}")

        try:
            resp = self.session.post(
                f"{self.base_url}/api/generate",
                json    = {"model": backend_model, "prompt": prompt, "stream": False},
                timeout = self.timeout,
            )
        except requests.RequestException as e:
            raise InferenceError(f"backend unreachable: {e}") from e

        if not resp.ok:
            raise InferenceError(f"backend returned {resp.status_code}: {(resp.text or '')[:200]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise InferenceError("backend returned a non-JSON body") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise InferenceError("backend reply has no 'response' text")
        return text

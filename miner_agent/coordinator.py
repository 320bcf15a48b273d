"""
Coordinator Client
==================

Thin typed wrapper around the coordinator's HTTP API.

  POST /bind               bind this device to host + wallet
  GET  /state?hostId=      enabled / GPU-verified flags for the host
  POST /share              report one share at a claimed difficulty
  POST /jobs/next          claim the next inference job (may be empty)
  POST /jobs/{id}/result   report the outcome of a claimed job

No retries here. Every call returns a CallResult; network and protocol
failures become a FailureReason instead of an exception, and the worker
loops decide what to do about them.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from urllib.parse import quote

import requests

from .config import Identity

log = logging.getLogger(__name__)


# ─── Results ──────────────────────────────────────────────────────────────────

class FailureReason(str, Enum):
    TIMEOUT     = "timeout"
    TRANSPORT   = "transport"
    HTTP_STATUS = "http_status"
    MALFORMED   = "malformed"
    REJECTED    = "rejected"      # 2xx but the body said ok=false


@dataclass(frozen=True)
class CallResult:
    ok:          bool
    value:       Any = None
    reason:      Optional[FailureReason] = None
    error:       Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def success(cls, value: Any = None, status_code: Optional[int] = None) -> "CallResult":
        return cls(ok=True, value=value, status_code=status_code)

    @classmethod
    def failure(
        cls,
        reason:      FailureReason,
        error:       str,
        status_code: Optional[int] = None,
    ) -> "CallResult":
        return cls(ok=False, reason=reason, error=error, status_code=status_code)

    def describe(self) -> str:
        if self.ok:
            return "ok"
        status = f" status={self.status_code}" if self.status_code is not None else ""
        return f"{self.reason.value}{status}: {self.error}"


@dataclass(frozen=True)
class BindResult:
    bound: bool


@dataclass(frozen=True)
class StateSnapshot:
    host_id:            str
    enabled:            bool
    wallet:             Optional[str] = None
    gpu_reported_model: Optional[str] = None
    gpu_verified:       bool = False


@dataclass(frozen=True)
class ShareReceipt:
    total: Optional[float] = None


@dataclass
class Job:
    id:       str
    model_id: str
    prompt:   str
    wallet:   Optional[str] = None
    status:   Optional[str] = None
    result:   Optional[str] = None
    error:    Optional[str] = None
    extra:    dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, raw: dict) -> "Job":
        job_id = raw.get("id") or raw.get("jobId")
        if not job_id:
            raise ValueError(f"job payload missing id: {raw!r}")
        return cls(
            id       = str(job_id),
            model_id = str(raw.get("modelId") or raw.get("model") or ""),
            prompt   = str(raw.get("prompt") or ""),
            wallet   = raw.get("wallet"),
            status   = raw.get("status"),
            result   = raw.get("result"),
            error    = raw.get("error"),
            extra    = raw,
        )


def _flag(body: dict, key: str, required: bool = False) -> bool:
    """A strict JSON boolean. A missing optional flag reads as false."""
    value = body.get(key)
    if value is None and not required:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' must be a JSON boolean, got {value!r}")
    return value


# ─── Client ───────────────────────────────────────────────────────────────────

class CoordinatorClient:
    def __init__(
        self,
        base_url: str,
        identity: Identity,
        timeout:  float = 10.0,
        session:  Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self.timeout  = timeout
        self.session  = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs) -> CallResult:
        """
        Perform one HTTP call and return its decoded JSON object body.
        Never raises for network or protocol problems.
        """
        try:
            resp = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            return CallResult.failure(FailureReason.TIMEOUT, str(e) or "request timed out")
        except requests.RequestException as e:
            return CallResult.failure(FailureReason.TRANSPORT, str(e))

        body: Any = None
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = None

        if not resp.ok:
            detail = body.get("error") if isinstance(body, dict) else None
            return CallResult.failure(
                FailureReason.HTTP_STATUS,
                detail or (resp.text or "")[:200] or resp.reason or "request failed",
                status_code=resp.status_code,
            )

        if body is None:
            body = {}
        if not isinstance(body, dict):
            return CallResult.failure(
                FailureReason.MALFORMED,
                f"expected a JSON object, got {type(body).__name__}",
                status_code=resp.status_code,
            )
        if body.get("ok") is False:
            return CallResult.failure(
                FailureReason.REJECTED,
                str(body.get("error") or "coordinator rejected the request"),
                status_code=resp.status_code,
            )
        return CallResult.success(body, status_code=resp.status_code)

    # ─── Operations ───────────────────────────────────────────────────────────

    def bind(self, gpu_model: Optional[str] = None) -> CallResult:
        payload = {
            "hostId":   self.identity.host_id,
            "deviceId": self.identity.device_id,
            "wallet":   self.identity.wallet,
        }
        if gpu_model:
            payload["gpuModel"] = gpu_model

        result = self._request("POST", "/bind", json=payload)
        if not result.ok:
            return result
        try:
            bound = _flag(result.value, "bound")
        except ValueError as e:
            return CallResult.failure(FailureReason.MALFORMED, str(e), result.status_code)
        return CallResult.success(BindResult(bound=bound), result.status_code)

    def query_state(self) -> CallResult:
        result = self._request("GET", "/state", params={"hostId": self.identity.host_id})
        if not result.ok:
            return result

        body = result.value
        try:
            enabled  = _flag(body, "enabled", required=True)
            verified = _flag(body, "gpuVerified")
        except ValueError as e:
            return CallResult.failure(FailureReason.MALFORMED, str(e), result.status_code)
        return CallResult.success(
            StateSnapshot(
                host_id            = str(body.get("hostId") or self.identity.host_id),
                enabled            = enabled,
                wallet             = body.get("wallet"),
                gpu_reported_model = body.get("gpuReportedModel"),
                gpu_verified       = verified,
            ),
            result.status_code,
        )

    def submit_share(self, difficulty: float) -> CallResult:
        result = self._request("POST", "/share", json={
            "wallet":     self.identity.wallet,
            "hostId":     self.identity.host_id,
            "deviceId":   self.identity.device_id,
            "difficulty": difficulty,
        })
        if not result.ok:
            return result
        return CallResult.success(ShareReceipt(total=result.value.get("total")), result.status_code)

    def claim_next_job(self) -> CallResult:
        """Success with value None means the queue had nothing for us."""
        result = self._request("POST", "/jobs/next", json={
            "hostId":   self.identity.host_id,
            "deviceId": self.identity.device_id,
        })
        if not result.ok:
            return result

        raw = result.value.get("job")
        if not raw:
            return CallResult.success(None, result.status_code)
        if not isinstance(raw, dict):
            return CallResult.failure(FailureReason.MALFORMED, "job is not an object", result.status_code)
        try:
            job = Job.from_payload(raw)
        except ValueError as e:
            return CallResult.failure(FailureReason.MALFORMED, str(e), result.status_code)
        return CallResult.success(job, result.status_code)

    def submit_job_result(self, job_id: str, result: str, error: Optional[str] = None) -> CallResult:
        payload = {"result": result}
        if error:
            payload["error"] = error
        return self._request("POST", f"/jobs/{quote(str(job_id), safe='')}/result", json=payload)

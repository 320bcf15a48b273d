"""
Inference Job Worker
====================

One tick = gate check → claim → run → report.

Guarantees:
  - Nothing is claimed unless the coordinator says this host is enabled
  - An empty claim is normal and just means "wait and ask again"
  - Every claimed job gets exactly one result-or-error submission, even if
    the backend blows up or the gate closes while the job is running
  - The result submission is never retried, so a job can't be reported twice
"""

from __future__ import annotations
import logging
import time

from .backoff import BackoffPolicy, Outcome
from .coordinator import CoordinatorClient, Job
from .gate import Gate
from .inference import InferenceClient, InferenceError

log = logging.getLogger(__name__)

FALLBACK_RESULT = "[inference failed]"


class JobWorker:
    name = "jobs"

    def __init__(
        self,
        client:  CoordinatorClient,
        backend: InferenceClient,
        gate:    Gate,
        policy:  BackoffPolicy,
    ):
        self.client  = client
        self.backend = backend
        self.gate    = gate
        self.policy  = policy

        self.consecutive_errors = 0
        self.jobs_completed     = 0
        self.jobs_failed        = 0

    def _finish(self, outcome: Outcome) -> float:
        if outcome is Outcome.ERROR:
            self.consecutive_errors += 1
        else:
            self.consecutive_errors = 0
        return self.policy.delay(outcome, self.consecutive_errors)

    def record_error(self) -> float:
        """Called by the loop runner when tick() raised."""
        return self._finish(Outcome.ERROR)

    def tick(self) -> float:
        """Run one iteration and return how long to wait before the next."""
        self.gate.refresh()
        if not self.gate.may_work():
            return self._finish(Outcome.ERROR if self.gate.errored else Outcome.GATED)

        claim = self.client.claim_next_job()
        if not claim.ok:
            log.warning(f"[jobs] claim failed: {claim.describe()}")
            return self._finish(Outcome.ERROR)
        if claim.value is None:
            log.debug("[jobs] no job available")
            return self._finish(Outcome.IDLE)

        return self._finish(self.run_job(claim.value))

    def run_job(self, job: Job) -> Outcome:
        log.info(f"[jobs] claimed job={job.id} model={job.model_id!r}")
        started = time.monotonic()

        error = None
        try:
            text = self.backend.generate(job.model_id, job.prompt)
        except InferenceError as e:
            error = str(e) or "inference failed"
        except Exception as e:
            log.exception(f"[jobs] unexpected backend error for job={job.id}")
            error = f"{type(e).__name__}: {e}"

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if error is not None:
            self.jobs_failed += 1
            log.error(f"[jobs] job={job.id} failed after {elapsed_ms}ms: {error}")
            sent = self.client.submit_job_result(job.id, FALLBACK_RESULT, error=error)
        else:
            self.jobs_completed += 1
            log.info(f"[jobs] job={job.id} done in {elapsed_ms}ms ({len(text)} chars)")
            sent = self.client.submit_job_result(job.id, text)

        if not sent.ok:
            log.error(f"[jobs] result submit failed for job={job.id}: {sent.describe()}")
            return Outcome.ERROR
        return Outcome.WORKED

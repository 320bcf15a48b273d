from unittest.mock import MagicMock

import pytest

from miner_agent.backoff import BackoffPolicy
from miner_agent.coordinator import CallResult, FailureReason, Job, StateSnapshot
from miner_agent.gate import Gate
from miner_agent.inference import InferenceError
from miner_agent.job_worker import FALLBACK_RESULT, JobWorker

POLICY = BackoffPolicy(work_interval=0, gated_interval=10, idle_interval=5, error_base=2, error_max=8)

JOB = Job(id="job-7", model_id="llama-3-8b-instruct", prompt="Say hi")


def snapshot(enabled=True):
    return CallResult.success(StateSnapshot(host_id="HOST-1", enabled=enabled, wallet="0xWALLET"))


@pytest.fixture
def client():
    c = MagicMock()
    c.query_state.return_value = snapshot()
    c.claim_next_job.return_value = CallResult.success(JOB)
    c.submit_job_result.return_value = CallResult.success({}, 200)
    return c


@pytest.fixture
def backend():
    b = MagicMock()
    b.generate.return_value = "hi!"
    return b


@pytest.fixture
def worker(client, backend):
    return JobWorker(client, backend, Gate(client), POLICY)


def test_runs_job_and_submits_result(worker, client, backend):
    assert worker.tick() == 0
    backend.generate.assert_called_once_with("llama-3-8b-instruct", "Say hi")
    client.submit_job_result.assert_called_once_with("job-7", "hi!")
    assert worker.jobs_completed == 1


def test_disabled_never_claims(worker, client, backend):
    client.query_state.return_value = snapshot(enabled=False)
    assert worker.tick() == 10
    client.claim_next_job.assert_not_called()
    backend.generate.assert_not_called()


def test_state_failure_never_claims(worker, client):
    client.query_state.return_value = CallResult.failure(FailureReason.TIMEOUT, "slow")
    assert worker.tick() == 2
    client.claim_next_job.assert_not_called()


def test_gpu_verification_not_required_for_jobs(worker, client):
    # snapshot() reports gpu_verified=False
    worker.tick()
    client.claim_next_job.assert_called_once()


def test_empty_claim_waits_without_error(worker, client, backend):
    client.claim_next_job.return_value = CallResult.success(None)
    assert worker.tick() == 5
    assert worker.consecutive_errors == 0
    backend.generate.assert_not_called()
    client.submit_job_result.assert_not_called()


def test_claim_failure_backs_off(worker, client):
    client.claim_next_job.return_value = CallResult.failure(FailureReason.HTTP_STATUS, "nope", 502)
    assert worker.tick() == 2
    assert worker.tick() == 4
    client.submit_job_result.assert_not_called()


def test_backend_error_still_reports_job(worker, client, backend):
    backend.generate.side_effect = InferenceError("backend returned 500: model not loaded")
    worker.tick()

    client.submit_job_result.assert_called_once()
    args, kwargs = client.submit_job_result.call_args
    assert args == ("job-7", FALLBACK_RESULT)
    assert FALLBACK_RESULT
    assert "model not loaded" in kwargs["error"]
    assert worker.jobs_failed == 1


def test_unexpected_backend_exception_still_reports_job(worker, client, backend):
    backend.generate.side_effect = KeyError("boom")
    assert worker.tick() == 0

    client.submit_job_result.assert_called_once()
    args, kwargs = client.submit_job_result.call_args
    assert args[0] == "job-7"
    assert kwargs["error"].startswith("KeyError")


def test_result_submission_failure_is_not_retried(worker, client):
    client.submit_job_result.return_value = CallResult.failure(FailureReason.TRANSPORT, "refused")
    assert worker.tick() == 2
    assert client.submit_job_result.call_count == 1


def test_each_claimed_job_reported_exactly_once(client, backend):
    jobs = [Job(id=f"job-{i}", model_id="m", prompt="p") for i in range(3)]
    client.claim_next_job.side_effect = [CallResult.success(j) for j in jobs] + [CallResult.success(None)]
    backend.generate.side_effect = ["a", InferenceError("x"), "c"]
    worker = JobWorker(client, backend, Gate(client), POLICY)

    for _ in range(4):
        worker.tick()

    reported = [c.args[0] for c in client.submit_job_result.call_args_list]
    assert reported == ["job-0", "job-1", "job-2"]

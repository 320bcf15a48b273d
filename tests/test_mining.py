from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from miner_agent.backoff import BackoffPolicy
from miner_agent.coordinator import BindResult, CallResult, FailureReason, ShareReceipt, StateSnapshot
from miner_agent.gate import Gate
from miner_agent.mining import MiningWorker
from miner_agent.proof_of_work import PowSolution

POLICY = BackoffPolicy(work_interval=1, gated_interval=10, idle_interval=5, error_base=2, error_max=8)

BOUND = CallResult.success(BindResult(bound=True))
NOT_BOUND = CallResult.success(BindResult(bound=False))
DOWN = CallResult.failure(FailureReason.TRANSPORT, "connection refused")


def snapshot(enabled=True, verified=True):
    return CallResult.success(StateSnapshot(host_id="HOST-1", enabled=enabled, wallet="0xWALLET",
                                            gpu_verified=verified))


@pytest.fixture
def client():
    c = MagicMock()
    c.bind.return_value = BOUND
    c.query_state.return_value = snapshot()
    c.submit_share.return_value = CallResult.success(ShareReceipt(total=10))
    return c


@pytest.fixture
def search():
    return MagicMock(return_value=PowSolution(nonce=3, hash="0" * 64, elapsed_ms=5))


def make_worker(config, client, search, rng=lambda: 0.99):
    return MiningWorker(config, client, Gate(client), POLICY, rng=rng, search=search)


def test_authorized_tick_mines_and_submits(config, client, search):
    worker = make_worker(config, client, search)
    assert worker.tick() == 1

    client.bind.assert_called_once()
    client.query_state.assert_called_once()
    client.submit_share.assert_called_once_with(0.5)
    args, kwargs = search.call_args
    assert args[0] == 0.5
    assert args[1].startswith("HOST-1-rig-a-")
    assert worker.shares_submitted == 1


def test_not_bound_never_submits_and_waits(config, client, search):
    client.bind.return_value = NOT_BOUND
    worker = make_worker(config, client, search)

    assert worker.tick() == 10
    client.query_state.assert_not_called()
    search.assert_not_called()
    client.submit_share.assert_not_called()


def test_disabled_never_submits(config, client, search):
    client.query_state.return_value = snapshot(enabled=False)
    worker = make_worker(config, client, search)

    assert worker.tick() == 10
    search.assert_not_called()
    client.submit_share.assert_not_called()


def test_unverified_gpu_blocks_mining(config, client, search):
    client.query_state.return_value = snapshot(enabled=True, verified=False)
    worker = make_worker(config, client, search)

    assert worker.tick() == 10
    client.submit_share.assert_not_called()


def test_unverified_gpu_allowed_when_not_required(config, client, search):
    client.query_state.return_value = snapshot(enabled=True, verified=False)
    worker = make_worker(replace(config, require_gpu_verified=False), client, search)

    assert worker.tick() == 1
    client.submit_share.assert_called_once()


def test_network_errors_back_off_exponentially(config, client, search):
    client.bind.return_value = DOWN
    worker = make_worker(config, client, search)

    assert [worker.tick() for _ in range(4)] == [2, 4, 8, 8]
    client.submit_share.assert_not_called()

    client.bind.return_value = BOUND
    assert worker.tick() == 1
    assert worker.consecutive_errors == 0


def test_burst_skips_gate_checks_unless_recheck_fires(config, client, search):
    rolls = iter([0.5, 0.5, 0.05])
    worker = make_worker(config, client, search, rng=lambda: next(rolls))

    for _ in range(4):
        worker.tick()

    # first tick + the one roll under 0.1
    assert client.bind.call_count == 2
    assert client.query_state.call_count == 2
    assert client.submit_share.call_count == 4


def test_recheck_ends_burst_when_disabled(config, client, search):
    worker = make_worker(config, client, search, rng=lambda: 0.0)
    worker.tick()

    client.query_state.return_value = snapshot(enabled=False)
    assert worker.tick() == 10
    assert not worker.in_burst
    assert client.submit_share.call_count == 1


def test_share_failure_is_not_fatal_and_forces_recheck(config, client, search):
    client.submit_share.return_value = CallResult.failure(FailureReason.HTTP_STATUS, "bad", 500)
    worker = make_worker(config, client, search)

    assert worker.tick() == 2
    assert not worker.in_burst

    client.submit_share.return_value = CallResult.success(ShareReceipt(total=None))
    assert worker.tick() == 1
    assert client.bind.call_count == 2


def test_record_error_resets_burst(config, client, search):
    worker = make_worker(config, client, search)
    worker.tick()
    assert worker.in_burst
    assert worker.record_error() == 2
    assert not worker.in_burst


def test_solution_sent_is_only_difficulty(config, client):
    worker = MiningWorker(config, client, Gate(client), POLICY)
    worker.tick()
    args, kwargs = client.submit_share.call_args
    assert args == (0.5,) and kwargs == {}

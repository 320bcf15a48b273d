"""
Miner Agent — Main Daemon
=========================

The entry point for the worker-side daemon.

Startup sequence:
  1. Load config (wallet, host/device ids, coordinator + backend URLs)
  2. Detect the local GPU model (or take the GPU_MODEL override)
  3. Start the mining loop and the inference job loop in their own threads
  4. Join both threads; exit when both have stopped

Each loop calls its worker's tick(), then waits for the delay tick()
returned. The wait goes through a shared stop event, so SIGTERM/SIGINT wake
both loops immediately.

Safe shutdown:
  SIGTERM → stop event set → current remote call / job finishes → loops exit
"""

from __future__ import annotations
import argparse
import logging
import signal
import sys
import threading
from typing import Optional

from .backoff import BackoffPolicy
from .config import AgentConfig, ConfigError
from .coordinator import CoordinatorClient
from .gate import Gate
from .gpu_discovery import detect_gpu_model
from .inference import InferenceClient, ModelMap
from .job_worker import JobWorker
from .mining import MiningWorker
from .proof_of_work import SearchCancelled

log = logging.getLogger("miner.agent")


# ─── Logging ──────────────────────────────────────────────────────────────────

def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level  = getattr(logging, level.upper(), logging.INFO),
        format = "[%(asctime)s] %(levelname)s %(name)s — %(message)s",
        datefmt= "%Y-%m-%dT%H:%M:%S",
    )


def _log_thread_exception(args):
    log.error(
        f"[agent] unhandled exception in thread {args.thread.name if args.thread else '?'}",
        exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
    )


# ─── Loop runner ──────────────────────────────────────────────────────────────

def run_worker(worker, stop: threading.Event):
    """
    Drive worker.tick() until stop is set. Anything tick() raises is logged
    and turned into an error backoff; it never ends the loop.
    """
    log.info(f"[{worker.name}] loop started")
    while not stop.is_set():
        try:
            delay = worker.tick()
        except SearchCancelled:
            break
        except Exception:
            log.exception(f"[{worker.name}] iteration failed — backing off")
            delay = worker.record_error()
        stop.wait(delay)
    log.info(f"[{worker.name}] loop stopped")


# ─── Worker Agent ─────────────────────────────────────────────────────────────

class WorkerAgent:
    def __init__(self, config: AgentConfig, gpu_model: Optional[str] = None):
        self.config    = config
        self.gpu_model = gpu_model
        self._stop     = threading.Event()
        self._threads: list[threading.Thread] = []

        policy_kwargs = dict(
            gated_interval = config.gated_interval,
            idle_interval  = config.idle_interval,
            error_base     = config.backoff_base,
            error_max      = config.max_backoff,
        )

        # Separate clients and gates per loop: the loops share nothing but config.
        mining_client = CoordinatorClient(config.coord_url, config.identity, timeout=config.http_timeout)
        self.miner = MiningWorker(
            config = config,
            client = mining_client,
            gate   = Gate(mining_client, gpu_model=gpu_model, name="gate:miner"),
            policy = BackoffPolicy(work_interval=config.share_interval, **policy_kwargs),
            cancel = self._stop,
        )

        jobs_client = CoordinatorClient(config.coord_url, config.identity, timeout=config.http_timeout)
        self.jobs = JobWorker(
            client  = jobs_client,
            backend = InferenceClient(
                config.infer_url,
                ModelMap(rules=config.model_map, default=config.default_model),
                timeout = config.infer_timeout,
            ),
            gate    = Gate(jobs_client, gpu_model=gpu_model, name="gate:jobs"),
            policy  = BackoffPolicy(work_interval=0.0, **policy_kwargs),
        )

    def start(self):
        for worker in (self.miner, self.jobs):
            t = threading.Thread(
                target = run_worker,
                args   = (worker, self._stop),
                name   = f"loop-{worker.name}",
                daemon = True,
            )
            self._threads.append(t)
            t.start()

    def join(self, timeout: Optional[float] = None):
        for t in self._threads:
            t.join(timeout)

    def run(self):
        identity = self.config.identity
        log.info(
            f"Miner agent starting — wallet={identity.wallet} host={identity.host_id} "
            f"device={identity.device_id}"
        )
        log.info(f"Coordinator: {self.config.coord_url}")
        log.info(f"Inference:   {self.config.infer_url}")
        log.info(f"Difficulty:  {self.config.difficulty}  GPU: {self.gpu_model or 'none detected'}")

        self.start()
        # Wake periodically so signal handlers run on the main thread.
        while any(t.is_alive() for t in self._threads):
            self.join(timeout=1.0)
        log.info("Both loops stopped. Agent exited cleanly.")

    def stop(self):
        if not self._stop.is_set():
            log.info("Shutting down — finishing current work…")
        self._stop.set()


# ─── Entry Point ──────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Share-miner and inference worker agent")
    parser.add_argument("--wallet",     help="Wallet credential (env: WALLET)")
    parser.add_argument("--host-id",    help="Host identifier (env: HOST_ID)")
    parser.add_argument("--device-id",  help="Device identifier (env: DEVICE_ID)")
    parser.add_argument("--coord",      help="Coordinator base URL (env: COORD)")
    parser.add_argument("--infer-url",  help="Inference backend base URL (env: INFER_URL)")
    parser.add_argument("--difficulty", type=float, help="Mining difficulty, a real number >= 0 (env: DIFFICULTY)")
    parser.add_argument("--gpu-model",  help="Override the detected GPU model (env: GPU_MODEL)")
    parser.add_argument("--log-level",  default="INFO", help="Logging level (default: INFO)")
    return parser


def main(argv: Optional[list[str]] = None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    threading.excepthook = _log_thread_exception

    try:
        config = AgentConfig.from_sources(overrides={
            "WALLET":     args.wallet,
            "HOST_ID":    args.host_id,
            "DEVICE_ID":  args.device_id,
            "COORD":      args.coord,
            "INFER_URL":  args.infer_url,
            "DIFFICULTY": args.difficulty,
            "GPU_MODEL":  args.gpu_model,
        })
    except ConfigError as e:
        log.error(f"ERROR: {e}")
        sys.exit(1)

    gpu_model = detect_gpu_model(config.gpu_model_override, enabled=config.detect_gpu)
    agent = WorkerAgent(config, gpu_model=gpu_model)

    signal.signal(signal.SIGTERM, lambda s, f: agent.stop())
    signal.signal(signal.SIGINT,  lambda s, f: agent.stop())

    agent.run()


if __name__ == "__main__":
    main()

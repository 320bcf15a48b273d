"""
GPU Discovery
=============

Works out the GPU model string this agent reports to the coordinator on bind.

Order of preference:
  1. Manual override (GPU_MODEL)
  2. pynvml (nvidia-smi bindings)
  3. Parsing `nvidia-smi --query-gpu=name`
  4. None — the coordinator treats the host as unverified

The coordinator decides whether the reported model is verified; nothing here
claims verification.
"""

from __future__ import annotations
import logging
import subprocess
from typing import Optional

log = logging.getLogger(__name__)


# ─── Discovery ─────────────────────────────────────────────────────────────────

def detect_gpu_model(override: Optional[str] = None, enabled: bool = True) -> Optional[str]:
    """
    Return the model string of the first local GPU, or None if there isn't one.
    """
    if override:
        log.info(f"Using GPU model override: {override}")
        return override

    if not enabled:
        log.info("GPU detection disabled (SMI=false)")
        return None

    try:
        return _detect_via_pynvml()
    except Exception as e:
        log.warning(f"pynvml detection failed: {e} — trying nvidia-smi fallback")

    try:
        return _detect_via_nvidiasmi()
    except Exception as e:
        log.warning(f"nvidia-smi fallback failed: {e} — reporting no GPU")

    return None


def _detect_via_pynvml() -> str:
    import pynvml  # type: ignore
    pynvml.nvmlInit()
    try:
        if pynvml.nvmlDeviceGetCount() < 1:
            raise RuntimeError("no NVIDIA devices")
        handle = pynvml.nvmlDeviceGetHandleByIndex(0)
        name   = pynvml.nvmlDeviceGetName(handle)
    finally:
        pynvml.nvmlShutdown()

    if isinstance(name, bytes):
        name = name.decode()
    log.info(f"pynvml: detected {name}")
    return name


def _detect_via_nvidiasmi() -> str:
    result = subprocess.run(
        ["nvidia-smi", "--query-gpu=name", "--format=csv,noheader"],
        capture_output=True, text=True, timeout=10,
    )
    if result.returncode != 0:
        raise RuntimeError(f"nvidia-smi exit {result.returncode}: {result.stderr.strip()}")

    names = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    if not names:
        raise RuntimeError("nvidia-smi listed no GPUs")

    log.info(f"nvidia-smi: detected {names[0]}")
    return names[0]

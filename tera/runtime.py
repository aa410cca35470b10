"""Runtime environment checks and device selection for tera."""

from __future__ import annotations

import functools

import torch


@functools.lru_cache(maxsize=1)
def is_cuda_available() -> bool:
    """Check if CUDA is available."""
    return torch.cuda.is_available()


@functools.lru_cache(maxsize=1)
def is_mps_available() -> bool:
    """Check if the Apple Metal backend is available."""
    backend = getattr(torch.backends, "mps", None)
    if backend is None:
        return False
    return bool(backend.is_available())


def select_device(cpu: bool = False) -> str:
    """Pick the device to load the model on.

    Prefers CUDA, then Metal, then CPU. `cpu=True` forces the CPU.
    """
    if cpu:
        return "cpu"
    if is_cuda_available():
        return "cuda"
    if is_mps_available():
        return "mps"
    return "cpu"


def dtype_from_string(dtype: str) -> torch.dtype:
    dt = dtype.strip().lower()
    if dt in {"fp16", "float16", "half"}:
        return torch.float16
    if dt in {"bf16", "bfloat16"}:
        return torch.bfloat16
    if dt in {"fp32", "float32"}:
        return torch.float32
    raise ValueError(f"Unknown dtype: {dtype!r}")

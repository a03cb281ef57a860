"""RMS normalisation on the CPU."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

_EPS = np.float32(1e-5)


def cpu_rmsnorm(
    x: Sequence[float] | np.ndarray,
    w: Sequence[float] | np.ndarray,
    seq_len: int,
    dim: int,
) -> np.ndarray:
    """Return ``x * w / sqrt(mean(x**2) + eps)`` per row of a row-major ``[seq_len, dim]`` input.

    The result is a flat float32 array of ``seq_len * dim`` values.
    """
    xs = np.asarray(x, dtype=np.float32).ravel()
    ws = np.asarray(w, dtype=np.float32).ravel()
    if xs.size < seq_len * dim:
        raise ValueError(f"input holds {xs.size} values, need {seq_len * dim}")
    if ws.size < dim:
        raise ValueError(f"weight holds {ws.size} values, need {dim}")
    rows = xs[: seq_len * dim].reshape(seq_len, dim)
    ss = np.sum(rows * rows, axis=1, dtype=np.float32) / np.float32(dim)
    inv_rms = np.float32(1.0) / np.sqrt(ss + _EPS)
    out = rows * inv_rms[:, None] * ws[:dim]
    return out.astype(np.float32).ravel()
"""Reusable work buffers and small element-wise vector kernels."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def _zeros(n: int) -> np.ndarray:
    return np.zeros(n, dtype=np.float32)


class ScratchBuffers:
    """Pre-sized float32 buffers reused across decoding steps."""

    def __init__(
        self,
        dim: int,
        hidden_dim: int,
        inner_size: int,
        n_heads: int,
        n_kv_heads: int,
        head_dim: int,
        key_dim: int,
        value_dim: int,
        vocab_size: int,
        max_seq_len: int,
        q_full_dim: int,
        kv_dim: int,
    ) -> None:
        chunk = inner_size // 3
        heads = n_heads * head_dim

        self.hidden = _zeros(dim)
        self.work = _zeros(dim)

        self.qkvz = _zeros(inner_size)
        self.conv_out = _zeros(inner_size)
        self.q = _zeros(chunk)
        self.k = _zeros(chunk)
        self.v = _zeros(chunk)
        self.output_heads = _zeros(chunk)
        self.gate_out = _zeros(dim)
        self.normed = _zeros(chunk)
        self.beta_raw = _zeros(n_heads)
        self.alpha_raw = _zeros(n_heads)
        self.beta = _zeros(n_heads)
        self.decay = _zeros(n_heads)
        self.sk = _zeros(value_dim)
        self.delta = _zeros(value_dim)

        self.q_full = _zeros(q_full_dim)
        self.kv_k = _zeros(kv_dim)
        self.kv_v = _zeros(kv_dim)
        self.q_only = _zeros(heads)
        self.gate = _zeros(heads)
        self.attn_out = _zeros(heads)
        self.scores = _zeros(max_seq_len)

        self.ffn_h1 = _zeros(hidden_dim)
        self.ffn_h3 = _zeros(hidden_dim)
        self.ffn_out = _zeros(dim)

        self.xnorm = _zeros(dim)
        self.ffn_in = _zeros(dim)
        self.final_out = _zeros(dim)
        self.logits = _zeros(vocab_size)


def _silu(x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return x / (np.float32(1.0) + np.exp(-x))


def _require_array(y: np.ndarray, name: str) -> None:
    if not isinstance(y, np.ndarray):
        raise TypeError(f"{name} must be a numpy array to be updated in place")


def vec_mul_accumulate(
    y: np.ndarray, a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray
) -> np.ndarray:
    """``y += a * b`` over the shortest common length; updates ``y`` in place and returns it."""
    _require_array(y, "y")
    av = np.asarray(a, dtype=y.dtype).ravel()
    bv = np.asarray(b, dtype=y.dtype).ravel()
    n = min(y.size, av.size, bv.size)
    y[:n] += av[:n] * bv[:n]
    return y


def vec_scale(y: np.ndarray, scale: float) -> np.ndarray:
    """Multiply ``y`` by ``scale`` in place and return it."""
    _require_array(y, "y")
    y *= y.dtype.type(scale)
    return y


def vec_silu_inplace(x: np.ndarray) -> np.ndarray:
    """Apply SiLU, ``x / (1 + exp(-x))``, to ``x`` in place and return it."""
    _require_array(x, "x")
    x[...] = _silu(x)
    return x


def vec_silu_mul_inplace(a: np.ndarray, b: Sequence[float] | np.ndarray) -> np.ndarray:
    """Set ``a = silu(a) * b`` over the common length, in place, and return ``a``."""
    _require_array(a, "a")
    bv = np.asarray(b, dtype=a.dtype).ravel()
    n = min(a.size, bv.size)
    a[:n] = _silu(a[:n]) * bv[:n]
    return a
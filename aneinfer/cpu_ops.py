"""CPU kernels used around the accelerator: transpose, RoPE, causal attention, matmul."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

_Array = Sequence[float] | np.ndarray


def _flat(values: _Array, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float32).ravel()
    if arr.size < size:
        raise ValueError(f"{name} holds {arr.size} values, need {size}")
    return arr[:size]


def transpose(src: _Array, rows: int, cols: int) -> np.ndarray:
    """Transpose a row-major ``[rows, cols]`` matrix into a flat ``[cols, rows]`` one."""
    m = _flat(src, rows * cols, "src").reshape(rows, cols)
    return np.ascontiguousarray(m.T).ravel()


def cpu_rope(
    q: _Array,
    k: _Array,
    seq_len: int,
    n_heads: int,
    head_dim: int,
    freq_base: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Apply rotary position encoding to ``[seq_len, n_heads * head_dim]`` queries and keys.

    Adjacent element pairs of each head are rotated by ``t / freq_base**(i / head_dim)``.
    Returns new ``(q, k)`` arrays.
    """
    if head_dim % 2:
        raise ValueError("head_dim must be even")
    size = seq_len * n_heads * head_dim
    half = head_dim // 2
    shape = (seq_len, n_heads, half, 2)
    qs = _flat(q, size, "q").reshape(shape)
    ks = _flat(k, size, "k").reshape(shape)

    i = np.arange(0, head_dim, 2, dtype=np.float32)
    freq = np.float32(1.0) / np.power(np.float32(freq_base), i / np.float32(head_dim))
    angles = np.arange(seq_len, dtype=np.float32)[:, None] * freq[None, :]
    sin_v = np.sin(angles)[:, None, :]
    cos_v = np.cos(angles)[:, None, :]

    def rotate(x: np.ndarray) -> np.ndarray:
        x0 = x[..., 0]
        x1 = x[..., 1]
        out = np.empty_like(x)
        out[..., 0] = x0 * cos_v - x1 * sin_v
        out[..., 1] = x0 * sin_v + x1 * cos_v
        return out.astype(np.float32).ravel()

    return rotate(qs), rotate(ks)


def cpu_attention(
    q: _Array,
    k: _Array,
    v: _Array,
    seq_len: int,
    n_heads: int,
    n_kv_heads: int,
    head_dim: int,
) -> np.ndarray:
    """Causal scaled dot-product attention with grouped key/value heads.

    ``q`` is ``[seq_len, n_heads * head_dim]``; ``k`` and ``v`` are
    ``[seq_len, n_kv_heads * head_dim]``. Returns ``[seq_len, n_heads * head_dim]`` flat.
    """
    if n_kv_heads <= 0 or n_heads % n_kv_heads:
        raise ValueError("n_heads must be a positive multiple of n_kv_heads")
    heads_per_kv = n_heads // n_kv_heads
    qs = _flat(q, seq_len * n_heads * head_dim, "q").reshape(seq_len, n_heads, head_dim)
    kv_size = seq_len * n_kv_heads * head_dim
    ks = _flat(k, kv_size, "k").reshape(seq_len, n_kv_heads, head_dim)
    vs = _flat(v, kv_size, "v").reshape(seq_len, n_kv_heads, head_dim)

    kv_index = np.arange(n_heads) // heads_per_kv
    kh = ks[:, kv_index, :]  # [S, H, D]
    vh = vs[:, kv_index, :]

    scale = np.float32(1.0) / np.sqrt(np.float32(head_dim))
    scores = np.einsum("thd,shd->hts", qs, kh).astype(np.float32) * scale
    future = np.triu(np.ones((seq_len, seq_len), dtype=bool), k=1)
    scores[:, future] = -np.inf
    scores = np.exp(scores - scores.max(axis=2, keepdims=True))
    scores /= scores.sum(axis=2, keepdims=True)

    out = np.einsum("hts,shd->thd", scores, vh)
    return out.astype(np.float32).ravel()


def cpu_matmul(w: _Array, x: _Array, seq_len: int, in_dim: int, out_dim: int) -> np.ndarray:
    """``y = W @ x`` per token: ``W[out_dim, in_dim]``, ``x[seq_len, in_dim]`` -> flat ``y[seq_len, out_dim]``."""
    wm = _flat(w, out_dim * in_dim, "w").reshape(out_dim, in_dim)
    xm = _flat(x, seq_len * in_dim, "x").reshape(seq_len, in_dim)
    return (xm @ wm.T).astype(np.float32).ravel()
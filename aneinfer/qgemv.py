"""Matrix-vector products over quantized weight matrices (Q4_0, Q8_0, Q6_K)."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from .dequant import dequantize_tensor
from .gguf import GgmlType


class QuantType(IntEnum):
    """Quantized storage formats understood by the GEMV kernels."""

    Q4_0 = 2
    Q8_0 = 8
    Q6K = 14


_Q8_BLOCK = 32
_Q8_BYTES = 34
_Q4_BLOCK = 32
_Q4_BYTES = 18
_Q6K_BLOCK = 256
_Q6K_BYTES = 210

_LAYOUT = {
    QuantType.Q8_0: (_Q8_BLOCK, _Q8_BYTES),
    QuantType.Q4_0: (_Q4_BLOCK, _Q4_BYTES),
    QuantType.Q6K: (_Q6K_BLOCK, _Q6K_BYTES),
}


@dataclass(frozen=True)
class Q8Tensor:
    """A quantized ``[m, n]`` weight matrix stored row by row in GGML blocks."""

    data: bytes
    m: int
    n: int
    quant_type: QuantType

    @classmethod
    def from_raw(
        cls, data: bytes | bytearray | memoryview, ne0: int, ne1: int, quant_type: QuantType
    ) -> Q8Tensor:
        """Wrap raw tensor bytes; ``ne0`` is the row length, ``ne1`` the row count."""
        quant_type = QuantType(quant_type)
        m, n = ne1, ne0
        block_size, bytes_per_block = _LAYOUT[quant_type]
        if n % block_size != 0:
            raise ValueError(f"n must be divisible by {block_size}")
        raw = bytes(data)
        expected = m * (n // block_size) * bytes_per_block
        if len(raw) != expected:
            raise ValueError(
                f"Quant size mismatch: got {len(raw)}, expected {expected} "
                f"(m={m}, n={n}, type={quant_type.name})"
            )
        return cls(raw, m, n, quant_type)


def _check_x(w: Q8Tensor, x: Sequence[float] | np.ndarray) -> np.ndarray:
    xs = np.asarray(x, dtype=np.float32).ravel()
    if xs.size != w.n:
        raise ValueError(f"input vector has {xs.size} values, expected {w.n}")
    return xs


def _blocks(w: Q8Tensor, block_bytes: int) -> np.ndarray:
    raw = np.frombuffer(w.data, dtype=np.uint8)
    return raw.reshape(w.m, -1, block_bytes)


def _scales(blocks: np.ndarray) -> np.ndarray:
    pair = np.ascontiguousarray(blocks[:, :, 0:2])
    return pair.view("<f2")[:, :, 0].astype(np.float64)


def _q8_rows(blocks: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """Rows of ``blocks`` shaped ``[rows, bpr, 34]`` dotted with ``xs``."""
    vals = blocks[:, :, 2:34].view(np.int8).astype(np.float64)
    xb = xs.astype(np.float64).reshape(-1, _Q8_BLOCK)
    block_sums = np.einsum("rbi,bi->rb", vals, xb)
    return (block_sums * _scales(blocks)).sum(axis=1)


def _q4_rows(blocks: np.ndarray, xs: np.ndarray) -> np.ndarray:
    packed = blocks[:, :, 2:18]
    lo = (packed & 0x0F).astype(np.float64) - 8.0
    hi = (packed >> 4).astype(np.float64) - 8.0
    vals = np.concatenate([lo, hi], axis=2)
    xb = xs.astype(np.float64).reshape(-1, _Q4_BLOCK)
    block_sums = np.einsum("rbi,bi->rb", vals, xb)
    return (block_sums * _scales(blocks)).sum(axis=1)


def q4_gemv_cpu(w: Q8Tensor, x: Sequence[float] | np.ndarray) -> np.ndarray:
    """``W @ x`` for a Q4_0 matrix; returns ``m`` float32 values."""
    if w.quant_type is not QuantType.Q4_0:
        raise ValueError(f"expected a Q4_0 tensor, got {w.quant_type.name}")
    xs = _check_x(w, x)
    return _q4_rows(_blocks(w, _Q4_BYTES), xs).astype(np.float32)


def q6k_gemv_cpu(w: Q8Tensor, x: Sequence[float] | np.ndarray) -> np.ndarray:
    """``W @ x`` for a Q6_K matrix, decoding blocks to float32 first."""
    if w.quant_type is not QuantType.Q6K:
        raise ValueError(f"expected a Q6_K tensor, got {w.quant_type.name}")
    xs = _check_x(w, x)
    weights = dequantize_tensor(w.data, GgmlType.Q6K, w.m * w.n).reshape(w.m, w.n)
    return (weights.astype(np.float64) @ xs.astype(np.float64)).astype(np.float32)


def q8_gemv(w: Q8Tensor, x: Sequence[float] | np.ndarray) -> np.ndarray:
    """``W @ x`` dispatched on the tensor's quantization type."""
    if w.quant_type is QuantType.Q4_0:
        return q4_gemv_cpu(w, x)
    if w.quant_type is QuantType.Q6K:
        return q6k_gemv_cpu(w, x)
    xs = _check_x(w, x)
    return _q8_rows(_blocks(w, _Q8_BYTES), xs).astype(np.float32)


def q8_gemv_scalar(w: Q8Tensor, x: Sequence[float] | np.ndarray) -> np.ndarray:
    """Row-at-a-time Q8_0 ``W @ x``, a reference for :func:`q8_gemv`."""
    if w.quant_type is not QuantType.Q8_0:
        raise ValueError(f"expected a Q8_0 tensor, got {w.quant_type.name}")
    xs = _check_x(w, x)
    blocks = _blocks(w, _Q8_BYTES)
    rows = [_q8_rows(row[None, :, :], xs)[0] for row in blocks]
    return np.array(rows, dtype=np.float32)
"""Dequantization of GGML block formats to float32, and float32 to float16 bytes."""

from __future__ import annotations

from collections.abc import Callable, Sequence

import numpy as np

from .gguf import GgmlType, GgufError

_Q4_0_BYTES = 18
_Q8_0_BYTES = 34
_Q4_K_BYTES = 144
_Q6_K_BYTES = 210


def _as_u8(data: bytes | bytearray | memoryview | np.ndarray) -> np.ndarray:
    if isinstance(data, np.ndarray):
        return data.astype(np.uint8, copy=False).ravel()
    return np.frombuffer(data, dtype=np.uint8)


def _f16_column(raw: np.ndarray, start: int) -> np.ndarray:
    """Read a little-endian f16 at byte ``start`` of every row as float32."""
    pair = np.ascontiguousarray(raw[:, start : start + 2])
    return pair.view("<f2")[:, 0].astype(np.float32)


def _q4_0_blocks(raw: np.ndarray) -> np.ndarray:
    scale = _f16_column(raw, 0)[:, None]
    quants = raw[:, 2:18]
    lo = (quants & 0x0F).astype(np.int32) - 8
    hi = (quants >> 4).astype(np.int32) - 8
    values = np.concatenate([lo, hi], axis=1).astype(np.float32)
    return values * scale


def _q8_0_blocks(raw: np.ndarray) -> np.ndarray:
    scale = _f16_column(raw, 0)[:, None]
    values = raw[:, 2:34].view(np.int8).astype(np.float32)
    return values * scale


def _q4_k_blocks(raw: np.ndarray) -> np.ndarray:
    n_blocks = raw.shape[0]
    d = _f16_column(raw, 0)
    dmin = _f16_column(raw, 2)
    s = raw[:, 4:16].astype(np.int32)

    sc = np.empty((n_blocks, 8), dtype=np.int32)
    mn = np.empty((n_blocks, 8), dtype=np.int32)
    sc[:, :4] = s[:, 0:4] & 0x3F
    mn[:, :4] = s[:, 4:8] & 0x3F
    sc[:, 4:] = (s[:, 8:12] & 0x0F) | ((s[:, 0:4] >> 6) << 4)
    mn[:, 4:] = (s[:, 8:12] >> 4) | ((s[:, 4:8] >> 6) << 4)

    scale = (d[:, None] * sc.astype(np.float32))[:, :, None]
    mins = (dmin[:, None] * mn.astype(np.float32))[:, :, None]

    quants = raw[:, 16:144].reshape(n_blocks, 8, 16)
    lo = (quants & 0x0F).astype(np.float32)
    hi = (quants >> 4).astype(np.float32)

    out = np.empty((n_blocks, 8, 32), dtype=np.float32)
    out[:, :, :16] = lo * scale - mins
    out[:, :, 16:] = hi * scale - mins
    return out.reshape(n_blocks, 256)


def _q6_k_blocks(raw: np.ndarray) -> np.ndarray:
    n_blocks = raw.shape[0]
    ql = raw[:, 0:128].astype(np.int32)
    qh = raw[:, 128:192].astype(np.int32)
    scales = raw[:, 192:208].view(np.int8).astype(np.float32)
    d = _f16_column(raw, 208)[:, None]
    sub = np.arange(32) // 16

    out = np.empty((n_blocks, 256), dtype=np.float32)
    for chunk in range(2):
        base = chunk * 128
        ql_a = ql[:, chunk * 64 : chunk * 64 + 32]
        ql_b = ql[:, chunk * 64 + 32 : chunk * 64 + 64]
        qhc = qh[:, chunk * 32 : chunk * 32 + 32]
        sc_off = chunk * 8

        q1 = ((ql_a & 0x0F) | ((qhc & 3) << 4)) - 32
        q2 = ((ql_b & 0x0F) | (((qhc >> 2) & 3) << 4)) - 32
        q3 = ((ql_a >> 4) | (((qhc >> 4) & 3) << 4)) - 32
        q4 = ((ql_b >> 4) | (((qhc >> 6) & 3) << 4)) - 32

        for k, q in enumerate((q1, q2, q3, q4)):
            sc = scales[:, sc_off + sub + 2 * k]
            out[:, base + 32 * k : base + 32 * (k + 1)] = d * sc * q.astype(np.float32)
    return out


def _single_block(
    block: bytes | bytearray | memoryview | np.ndarray,
    size: int,
    decode: Callable[[np.ndarray], np.ndarray],
    label: str,
) -> np.ndarray:
    raw = _as_u8(block)
    if raw.size < size:
        raise ValueError(f"{label} block needs {size} bytes, got {raw.size}")
    return decode(raw[:size].reshape(1, size))[0]


def dequant_q4_0_block(block: bytes | bytearray | memoryview | np.ndarray) -> np.ndarray:
    """Decode one Q4_0 block (f16 scale + 16 bytes of nibbles) to 32 floats.

    Elements 0-15 come from the low nibbles, elements 16-31 from the high nibbles.
    """
    return _single_block(block, _Q4_0_BYTES, _q4_0_blocks, "Q4_0")


def dequant_q8_0_block(block: bytes | bytearray | memoryview | np.ndarray) -> np.ndarray:
    """Decode one Q8_0 block (f16 scale + 32 signed bytes) to 32 floats."""
    return _single_block(block, _Q8_0_BYTES, _q8_0_blocks, "Q8_0")


def dequant_q4_k_block(block: bytes | bytearray | memoryview | np.ndarray) -> np.ndarray:
    """Decode one 144-byte Q4_K block to 256 floats."""
    return _single_block(block, _Q4_K_BYTES, _q4_k_blocks, "Q4_K")


def dequant_q6_k_block(block: bytes | bytearray | memoryview | np.ndarray) -> np.ndarray:
    """Decode one 210-byte Q6_K block (ql, qh, int8 scales, f16 d) to 256 floats."""
    return _single_block(block, _Q6_K_BYTES, _q6_k_blocks, "Q6_K")


_BLOCK_DECODERS: dict[GgmlType, Callable[[np.ndarray], np.ndarray]] = {
    GgmlType.Q4_0: _q4_0_blocks,
    GgmlType.Q8_0: _q8_0_blocks,
    GgmlType.Q4K: _q4_k_blocks,
    GgmlType.Q6K: _q6_k_blocks,
}


def dequantize_tensor(
    data: bytes | bytearray | memoryview | np.ndarray,
    typ: GgmlType,
    n_elements: int,
) -> np.ndarray:
    """Decode ``n_elements`` values stored as ``typ`` into a float32 array."""
    typ = GgmlType(typ)
    block_size = typ.block_size()
    bytes_per_block = typ.bytes_per_block()
    if block_size == 0 or bytes_per_block == 0:
        raise GgufError(f"unsupported quantization type for dequantization: {typ.name}")

    raw = _as_u8(data)

    if typ in (GgmlType.F32, GgmlType.F16):
        need = n_elements * bytes_per_block
        if raw.size < need:
            raise ValueError(f"tensor data holds {raw.size} bytes, need {need}")
        dtype = "<f4" if typ is GgmlType.F32 else "<f2"
        return raw[:need].view(dtype).astype(np.float32)

    decode = _BLOCK_DECODERS.get(typ)
    if decode is None:
        raise GgufError(f"dequantization not implemented for {typ.name}")

    n_blocks = -(-n_elements // block_size)
    need = n_blocks * bytes_per_block
    if raw.size < need:
        raise ValueError(f"tensor data holds {raw.size} bytes, need {need}")
    blocks = raw[:need].reshape(n_blocks, bytes_per_block)
    return decode(blocks).ravel()[:n_elements].astype(np.float32, copy=False)


def f32_to_f16_bytes(data: Sequence[float] | np.ndarray) -> bytes:
    """Encode values as little-endian IEEE half floats."""
    return np.asarray(data, dtype=np.float32).ravel().astype("<f2").tobytes()
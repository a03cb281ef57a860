"""Lookup and decoding of named tensors inside GGUF file data."""

from __future__ import annotations

import numpy as np

from .dequant import dequantize_tensor
from .gguf import GgmlType, GgufFile, TensorInfo


def _locate(gguf: GgufFile, file_data: bytes, name: str) -> tuple[TensorInfo, bytes]:
    tensor = gguf.get_tensor(name)
    if tensor is None:
        raise KeyError(f"tensor not found: {name}")
    start = gguf.tensor_data_offset + tensor.offset
    end = start + tensor.data_size()
    if end > len(file_data):
        raise ValueError(
            f"tensor {name} spans bytes {start}..{end} but file data has {len(file_data)}"
        )
    return tensor, bytes(file_data[start:end])


def extract_tensor_raw(
    gguf: GgufFile, file_data: bytes, name: str
) -> tuple[bytes, int, int, GgmlType]:
    """Return ``(raw_bytes, ne0, ne1, type)`` of a tensor without decoding it.

    ``ne0`` is the fast dimension; ``ne1`` is 1 for one-dimensional tensors.
    """
    tensor, data = _locate(gguf, file_data, name)
    dims = tensor.dimensions
    ne0 = dims[0] if dims else 0
    ne1 = dims[1] if len(dims) > 1 else 1
    return data, ne0, ne1, tensor.typ


def extract_tensor_f32(gguf: GgufFile, file_data: bytes, name: str) -> np.ndarray:
    """Decode a tensor to a flat float32 array."""
    tensor, data = _locate(gguf, file_data, name)
    return dequantize_tensor(data, tensor.typ, tensor.n_elements())


def extract_embedding(gguf: GgufFile, file_data: bytes) -> np.ndarray:
    """Token embedding table, flat ``[vocab_size * dim]``."""
    return extract_tensor_f32(gguf, file_data, "token_embd.weight")


def extract_layer_norms(
    gguf: GgufFile, file_data: bytes, layer: int
) -> tuple[np.ndarray, np.ndarray]:
    """Attention and FFN RMSNorm weights of one layer."""
    attn_norm = extract_tensor_f32(gguf, file_data, f"blk.{layer}.attn_norm.weight")
    ffn_norm = extract_tensor_f32(gguf, file_data, f"blk.{layer}.ffn_norm.weight")
    return attn_norm, ffn_norm


def extract_final_norm(gguf: GgufFile, file_data: bytes) -> np.ndarray:
    """Final RMSNorm weight."""
    return extract_tensor_f32(gguf, file_data, "output_norm.weight")


def extract_lm_head(gguf: GgufFile, file_data: bytes) -> np.ndarray:
    """Classifier weight; falls back to the embedding table when weights are tied."""
    try:
        return extract_tensor_f32(gguf, file_data, "output.weight")
    except (KeyError, ValueError):
        return extract_tensor_f32(gguf, file_data, "token_embd.weight")


def deltanet_tensor_names(layer: int) -> list[str]:
    """Names of all tensors of a DeltaNet layer."""
    suffixes = (
        "attn_norm.weight",
        "post_attention_norm.weight",
        "attn_qkv.weight",
        "attn_gate.weight",
        "ssm_a",
        "ssm_alpha.weight",
        "ssm_beta.weight",
        "ssm_conv1d.weight",
        "ssm_dt.bias",
        "ssm_norm.weight",
        "ssm_out.weight",
        "ffn_gate.weight",
        "ffn_up.weight",
        "ffn_down.weight",
    )
    return [f"blk.{layer}.{suffix}" for suffix in suffixes]


def full_attn_tensor_names(layer: int) -> list[str]:
    """Names of all tensors of a full-attention layer."""
    suffixes = (
        "attn_norm.weight",
        "post_attention_norm.weight",
        "attn_q.weight",
        "attn_k.weight",
        "attn_v.weight",
        "attn_output.weight",
        "attn_q_norm.weight",
        "attn_k_norm.weight",
        "ffn_gate.weight",
        "ffn_up.weight",
        "ffn_down.weight",
    )
    return [f"blk.{layer}.{suffix}" for suffix in suffixes]
# aneinfer

Building blocks for working with GGUF transformer models in Python, built on
NumPy.

## What is in the package

- `aneinfer.gguf`: `GgufFile.parse(data)` reads the header, metadata and
  tensor table of a GGUF v2 or v3 file held in memory. Hyperparameters are
  available through methods such as `architecture()`, `embedding_length()`,
  `head_count()`, `head_count_kv()`, `block_count()`,
  `feed_forward_length()`, `context_length()`, `rope_freq_base()`,
  `rms_norm_eps()` and the `ssm_*()` accessors; tokenizer data through
  `tokenizer_tokens()`, `tokenizer_merges()`, `tokenizer_model()` and
  `eos_token_id()`. Malformed or unsupported data raises `GgufError`.
- `aneinfer.dequant`: `dequantize_tensor(data, typ, n_elements)` decodes F32,
  F16, Q4_0, Q8_0, Q4_K and Q6_K data to a float32 array; single blocks are
  decoded with `dequant_q4_0_block`, `dequant_q8_0_block`,
  `dequant_q4_k_block` and `dequant_q6_k_block`. `f32_to_f16_bytes` encodes
  values as little-endian half floats.
- `aneinfer.tensors`: `extract_tensor_raw` and `extract_tensor_f32` fetch a
  named tensor from the file data, raw or decoded (a missing name raises
  `KeyError`). `extract_embedding`, `extract_layer_norms`,
  `extract_final_norm` and `extract_lm_head` (which falls back to the
  embedding table for tied weights) cover the common tensors;
  `deltanet_tensor_names` and `full_attn_tensor_names` list per-layer names.
- `aneinfer.qgemv`: `Q8Tensor.from_raw` wraps raw Q8_0, Q4_0 or Q6_K matrix
  bytes, and `q8_gemv(w, x)` computes `W @ x` for any of them;
  `q4_gemv_cpu`, `q6k_gemv_cpu` and `q8_gemv_scalar` are the per-format
  variants.
- `aneinfer.tokenizer`: `BpeTokenizer.from_gguf(tokens, merges, eos_id)`
  builds a GPT-2 style byte-level BPE tokenizer with `encode`, `decode` and
  `is_eos`. `byte_to_unicode` and `unicode_to_byte` expose the byte mapping.
- `aneinfer.mil` and `aneinfer.mega`: functions that return MIL program text
  for linear layers written as 1x1 convolutions: `mil_gen_qkv`,
  `mil_gen_output_proj`, `mil_gen_conv`, `mil_gen_ffn_up`,
  `mil_gen_ffn_down`, `mil_gen_multi_procedure`, and the fused
  `mil_gen_fused_ffn`, `mil_gen_fused_ffn_gate_up`, `mil_gen_fused_qkv`,
  `mil_gen_fused_dual_proj` and `mil_gen_fused_triple_proj`.
- CPU kernels:
  - `aneinfer.norm.cpu_rmsnorm` returns the row-wise RMS-normalised input.
  - `aneinfer.cpu_ops` has `transpose`, `cpu_rope`, `cpu_attention` (causal,
    with grouped key/value heads) and `cpu_matmul`; each returns new flat
    float32 arrays.
  - `aneinfer.vecops` has `vec_mul_accumulate`, `vec_scale`,
    `vec_silu_inplace` and `vec_silu_mul_inplace`, which update a NumPy array
    in place, and `ScratchBuffers`, a set of pre-sized float32 buffers.
  - `aneinfer.sampling` has `sample_token` (greedy below temperature 1e-6,
    otherwise temperature plus top-p), `SamplingParams` (defaults:
    temperature 0.7, top_p 0.9, max_tokens 256) and `XorShiftRng`, a small
    seedable generator. Without an explicit `rng`, `sample_token` uses one
    shared generator.

## Install

    pip install .

## Example

```python
from pathlib import Path

from aneinfer.gguf import GgufFile
from aneinfer.tensors import extract_embedding
from aneinfer.tokenizer import BpeTokenizer

data = Path("model.gguf").read_bytes()
gguf = GgufFile.parse(data)
print(gguf.architecture(), gguf.block_count(), gguf.embedding_length())

tokenizer = BpeTokenizer.from_gguf(
    gguf.tokenizer_tokens() or [], gguf.tokenizer_merges(), gguf.eos_token_id()
)
ids = tokenizer.encode("Hello world")
print(ids, tokenizer.decode(ids))

embedding = extract_embedding(gguf, data)
```

Sampling a token from logits:

```python
import numpy as np

from aneinfer.sampling import SamplingParams, XorShiftRng, sample_token

logits = np.array([0.1, 2.5, -1.0, 0.7], dtype=np.float32)
params = SamplingParams()
rng = XorShiftRng()
token = sample_token(logits, params.temperature, params.top_p, rng)
```

## What it does not do

- The MIL functions only produce program text; the package does not compile
  or run those programs on any accelerator.
- There is no end-to-end model: no weight loading into a model object, no
  key/value cache, no prefill or decode loop and no text generation driver.
  The pieces above have to be combined by the caller.
- There is no command-line tool.

## Tests

    pip install .[test]
    pytest
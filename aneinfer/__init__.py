"""GGUF parsing, dequantization, quantized GEMV, BPE tokenization, MIL program text and CPU kernels."""

__version__ = "0.1.0"
"""Reader for the GGUF model container: header, metadata and tensor descriptors."""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

GGUF_MAGIC = 0x46554747  # "GGUF" read as a little-endian u32
_DEFAULT_ALIGNMENT = 32


class GgufError(ValueError):
    """Raised when GGUF data is malformed or unsupported."""


class GgufType(IntEnum):
    """Type tags of metadata values."""

    U8 = 0
    I8 = 1
    U16 = 2
    I16 = 3
    U32 = 4
    I32 = 5
    F32 = 6
    BOOL = 7
    STRING = 8
    ARRAY = 9
    U64 = 10
    I64 = 11
    F64 = 12


class GgmlType(IntEnum):
    """Storage types of tensor data."""

    F32 = 0
    F16 = 1
    Q4_0 = 2
    Q4_1 = 3
    Q5_0 = 6
    Q5_1 = 7
    Q8_0 = 8
    Q8_1 = 9
    Q2K = 10
    Q3K = 11
    Q4K = 12
    Q5K = 13
    Q6K = 14
    Q8K = 15
    IQ2_XXS = 16
    IQ2_XS = 17
    IQ3_XXS = 18
    IQ1_S = 19
    IQ4_NL = 20
    IQ3_S = 21
    IQ2_S = 22
    IQ4_XS = 23
    I8 = 24
    I16 = 25
    I32 = 26
    I64 = 27
    F64 = 28
    IQ1_M = 29
    BF16 = 30

    def block_size(self) -> int:
        """Number of elements per block."""
        return _BLOCK_SIZES.get(self, 1)

    def bytes_per_block(self) -> int:
        """Bytes per block, or 0 where the layout is not known."""
        return _BYTES_PER_BLOCK.get(self, 0)


_BLOCK_SIZES = {
    GgmlType.F32: 1,
    GgmlType.F16: 1,
    GgmlType.Q4_0: 32,
    GgmlType.Q4_1: 32,
    GgmlType.Q5_0: 32,
    GgmlType.Q5_1: 32,
    GgmlType.Q8_0: 32,
    GgmlType.Q4K: 256,
    GgmlType.Q5K: 256,
    GgmlType.Q6K: 256,
}

_BYTES_PER_BLOCK = {
    GgmlType.F32: 4,
    GgmlType.F16: 2,
    GgmlType.Q4_0: 18,
    GgmlType.Q4_1: 20,
    GgmlType.Q5_0: 22,
    GgmlType.Q5_1: 24,
    GgmlType.Q8_0: 34,
    GgmlType.Q4K: 144,
    GgmlType.Q5K: 176,
    GgmlType.Q6K: 210,
}

# Tensor types this reader accepts in tensor descriptors.
_SUPPORTED_GGML = frozenset(
    {
        GgmlType.F32,
        GgmlType.F16,
        GgmlType.Q4_0,
        GgmlType.Q4_1,
        GgmlType.Q5_0,
        GgmlType.Q5_1,
        GgmlType.Q8_0,
        GgmlType.Q4K,
        GgmlType.Q5K,
        GgmlType.Q6K,
    }
)

_SCALAR_FORMATS = {
    GgufType.U8: "<B",
    GgufType.I8: "<b",
    GgufType.U16: "<H",
    GgufType.I16: "<h",
    GgufType.U32: "<I",
    GgufType.I32: "<i",
    GgufType.F32: "<f",
    GgufType.U64: "<Q",
    GgufType.I64: "<q",
    GgufType.F64: "<d",
}


@dataclass(frozen=True)
class MetadataValue:
    """A typed metadata value; arrays hold a list of ``MetadataValue``."""

    kind: GgufType
    value: Any

    def _if(self, kind: GgufType) -> Any:
        return self.value if self.kind is kind else None

    def as_u32(self) -> int | None:
        return self._if(GgufType.U32)

    def as_u64(self) -> int | None:
        return self._if(GgufType.U64)

    def as_f32(self) -> float | None:
        return self._if(GgufType.F32)

    def as_str(self) -> str | None:
        return self._if(GgufType.STRING)


@dataclass(frozen=True)
class TensorInfo:
    """Descriptor of one tensor; ``offset`` is relative to the tensor data section."""

    name: str
    dimensions: tuple[int, ...]
    typ: GgmlType
    offset: int

    def n_elements(self) -> int:
        return math.prod(self.dimensions)

    def data_size(self) -> int:
        """Size in bytes of the tensor's stored data."""
        bs = self.typ.block_size()
        return (self.n_elements() + bs - 1) // bs * self.typ.bytes_per_block()


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._view = memoryview(data)
        self.pos = 0

    def take(self, n: int) -> memoryview:
        end = self.pos + n
        if n < 0 or end > len(self._view):
            raise GgufError(f"unexpected end of data at byte {self.pos}")
        chunk = self._view[self.pos : end]
        self.pos = end
        return chunk

    def unpack(self, fmt: str) -> Any:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))[0]

    def u32(self) -> int:
        return self.unpack("<I")

    def u64(self) -> int:
        return self.unpack("<Q")

    def string(self) -> str:
        length = self.u64()
        raw = bytes(self.take(length))
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise GgufError("invalid UTF-8 in GGUF string") from exc

    def gguf_type(self) -> GgufType:
        code = self.u32()
        try:
            return GgufType(code)
        except ValueError:
            raise GgufError(f"unknown GGUF type: {code}") from None

    def ggml_type(self) -> GgmlType:
        code = self.u32()
        try:
            typ = GgmlType(code)
        except ValueError:
            typ = None
        if typ not in _SUPPORTED_GGML:
            raise GgufError(f"unsupported GGML type: {code}")
        return typ

    def value(self, kind: GgufType) -> MetadataValue:
        if kind is GgufType.STRING:
            return MetadataValue(kind, self.string())
        if kind is GgufType.BOOL:
            return MetadataValue(kind, self.unpack("<B") != 0)
        if kind is GgufType.ARRAY:
            elem_kind = self.gguf_type()
            count = self.u64()
            return MetadataValue(kind, [self.value(elem_kind) for _ in range(count)])
        return MetadataValue(kind, self.unpack(_SCALAR_FORMATS[kind]))


@dataclass
class GgufFile:
    """Parsed GGUF header with metadata and tensor descriptors."""

    version: int
    metadata: dict[str, MetadataValue] = field(default_factory=dict)
    tensors: list[TensorInfo] = field(default_factory=list)
    tensor_data_offset: int = 0

    @classmethod
    def parse(cls, data: bytes) -> GgufFile:
        """Parse the header of a GGUF file held in ``data``."""
        r = _Reader(data)
        magic = r.u32()
        if magic != GGUF_MAGIC:
            raise GgufError(
                f"not a GGUF file (magic: 0x{magic:08x}, expected 0x{GGUF_MAGIC:08x})"
            )
        version = r.u32()
        if not 2 <= version <= 3:
            raise GgufError(f"unsupported GGUF version: {version}")

        tensor_count = r.u64()
        metadata_count = r.u64()

        metadata: dict[str, MetadataValue] = {}
        for _ in range(metadata_count):
            key = r.string()
            metadata[key] = r.value(r.gguf_type())

        tensors = []
        for _ in range(tensor_count):
            name = r.string()
            n_dims = r.u32()
            dims = tuple(r.u64() for _ in range(n_dims))
            typ = r.ggml_type()
            offset = r.u64()
            tensors.append(TensorInfo(name, dims, typ, offset))

        align_value = metadata.get("general.alignment")
        alignment = align_value.as_u32() if align_value is not None else None
        if alignment is None:
            alignment = _DEFAULT_ALIGNMENT
        if alignment == 0:
            raise GgufError("general.alignment must be non-zero")
        data_offset = (r.pos + alignment - 1) // alignment * alignment

        return cls(version, metadata, tensors, data_offset)

    def get_tensor(self, name: str) -> TensorInfo | None:
        return next((t for t in self.tensors if t.name == name), None)

    def architecture(self) -> str | None:
        value = self.metadata.get("general.architecture")
        return value.as_str() if value is not None else None

    def _arch_value(self, suffix: str) -> MetadataValue | None:
        arch = self.architecture()
        if arch is None:
            return None
        return self.metadata.get(f"{arch}.{suffix}")

    def _arch_u32(self, suffix: str) -> int | None:
        value = self._arch_value(suffix)
        return value.as_u32() if value is not None else None

    def _arch_f32(self, suffix: str) -> float | None:
        value = self._arch_value(suffix)
        return value.as_f32() if value is not None else None

    def embedding_length(self) -> int | None:
        return self._arch_u32("embedding_length")

    def head_count(self) -> int | None:
        return self._arch_u32("attention.head_count")

    def head_count_kv(self) -> int | None:
        return self._arch_u32("attention.head_count_kv")

    def block_count(self) -> int | None:
        return self._arch_u32("block_count")

    def feed_forward_length(self) -> int | None:
        return self._arch_u32("feed_forward_length")

    def vocab_size(self) -> int | None:
        """Length of the ``tokenizer.ggml.tokens`` array, if present."""
        value = self.metadata.get("tokenizer.ggml.tokens")
        if value is not None and value.kind is GgufType.ARRAY:
            return len(value.value)
        return None

    def rope_freq_base(self) -> float | None:
        return self._arch_f32("rope.freq_base")

    def context_length(self) -> int | None:
        return self._arch_u32("context_length")

    def key_length(self) -> int | None:
        return self._arch_u32("attention.key_length")

    def value_length(self) -> int | None:
        return self._arch_u32("attention.value_length")

    def rms_norm_eps(self) -> float | None:
        return self._arch_f32("attention.layer_norm_rms_epsilon")

    def full_attention_interval(self) -> int | None:
        return self._arch_u32("full_attention_interval")

    def ssm_state_size(self) -> int | None:
        return self._arch_u32("ssm.state_size")

    def ssm_conv_kernel(self) -> int | None:
        return self._arch_u32("ssm.conv_kernel")

    def ssm_inner_size(self) -> int | None:
        return self._arch_u32("ssm.inner_size")

    def ssm_group_count(self) -> int | None:
        return self._arch_u32("ssm.group_count")

    def ssm_time_step_rank(self) -> int | None:
        return self._arch_u32("ssm.time_step_rank")

    def is_deltanet_layer(self, layer_idx: int) -> bool:
        """True when the layer carries an ``ssm_a`` tensor."""
        return self.get_tensor(f"blk.{layer_idx}.ssm_a") is not None

    def metadata_keys(self) -> list[str]:
        return sorted(self.metadata)

    def tokenizer_tokens(self) -> list[str] | None:
        """Token strings; non-string entries become empty strings."""
        value = self.metadata.get("tokenizer.ggml.tokens")
        if value is None or value.kind is not GgufType.ARRAY:
            return None
        return [v.value if v.kind is GgufType.STRING else "" for v in value.value]

    def tokenizer_merges(self) -> list[str] | None:
        """BPE merge rules; non-string entries are skipped."""
        value = self.metadata.get("tokenizer.ggml.merges")
        if value is None or value.kind is not GgufType.ARRAY:
            return None
        return [v.value for v in value.value if v.kind is GgufType.STRING]

    def tokenizer_model(self) -> str | None:
        value = self.metadata.get("tokenizer.ggml.model")
        return value.as_str() if value is not None else None

    def eos_token_id(self) -> int | None:
        value = self.metadata.get("tokenizer.ggml.eos_token_id")
        return value.as_u32() if value is not None else None
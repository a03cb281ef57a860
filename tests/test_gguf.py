import struct

import pytest

from aneinfer.gguf import (
    GgmlType,
    GgufError,
    GgufFile,
    GgufType,
    MetadataValue,
    TensorInfo,
)


def _str(s):
    raw = s.encode("utf-8")
    return struct.pack("<Q", len(raw)) + raw


def _kv(key, kind, payload):
    return _str(key) + struct.pack("<I", kind) + payload


def _u32(key, v):
    return _kv(key, GgufType.U32, struct.pack("<I", v))


def _f32(key, v):
    return _kv(key, GgufType.F32, struct.pack("<f", v))


def _s(key, v):
    return _kv(key, GgufType.STRING, _str(v))


def _str_array(key, items):
    payload = struct.pack("<IQ", GgufType.STRING, len(items)) + b"".join(
        _str(i) for i in items
    )
    return _kv(key, GgufType.ARRAY, payload)


def _tensor(name, dims, typ, offset):
    out = _str(name) + struct.pack("<I", len(dims))
    out += b"".join(struct.pack("<Q", d) for d in dims)
    return out + struct.pack("<IQ", typ, offset)


def _build(kvs=(), tensors=(), version=3):
    head = b"GGUF" + struct.pack("<IQQ", version, len(tensors), len(kvs))
    return head + b"".join(kvs) + b"".join(tensors)


def _llama():
    kvs = [
        _s("general.architecture", "llama"),
        _u32("llama.embedding_length", 64),
        _u32("llama.attention.head_count", 4),
        _u32("llama.attention.head_count_kv", 2),
        _u32("llama.block_count", 2),
        _u32("llama.feed_forward_length", 128),
        _u32("llama.context_length", 512),
        _f32("llama.rope.freq_base", 10000.0),
        _f32("llama.attention.layer_norm_rms_epsilon", 1e-5),
        _u32("llama.ssm.state_size", 16),
        _str_array("tokenizer.ggml.tokens", ["a", "b", "ab", "</s>"]),
        _str_array("tokenizer.ggml.merges", ["a b"]),
        _s("tokenizer.ggml.model", "gpt2"),
        _u32("tokenizer.ggml.eos_token_id", 3),
    ]
    tensors = [
        _tensor("token_embd.weight", [64, 4], GgmlType.F32, 0),
        _tensor("blk.0.attn_q.weight", [64, 64], GgmlType.Q4_0, 1024),
        _tensor("blk.1.ssm_a", [4], GgmlType.F32, 4096),
    ]
    return _build(kvs, tensors)


def test_magic_is_ascii_gguf():
    data = _build()
    assert data[:4] == b"GGUF"
    assert GgufFile.parse(data).version == 3


def test_bad_magic_raises():
    with pytest.raises(GgufError, match="not a GGUF file"):
        GgufFile.parse(b"GGML" + _build()[4:])


@pytest.mark.parametrize("version", [1, 4])
def test_unsupported_version(version):
    with pytest.raises(GgufError, match="unsupported GGUF version"):
        GgufFile.parse(_build(version=version))


def test_version_two_accepted():
    assert GgufFile.parse(_build(version=2)).version == 2


def test_truncated_data_raises():
    data = _llama()
    with pytest.raises(GgufError):
        GgufFile.parse(data[:-5])


def test_unknown_metadata_type():
    data = _build([_kv("x", 99, b"")])
    with pytest.raises(GgufError, match="unknown GGUF type: 99"):
        GgufFile.parse(data)


def test_unsupported_ggml_type():
    data = _build(tensors=[_tensor("t", [32], GgmlType.Q8_1, 0)])
    with pytest.raises(GgufError, match="unsupported GGML type: 9"):
        GgufFile.parse(data)


def test_invalid_utf8():
    bad_key = struct.pack("<Q", 2) + b"\xff\xfe"
    data = _build([bad_key + struct.pack("<I", GgufType.U8) + b"\x01"])
    with pytest.raises(GgufError, match="UTF-8"):
        GgufFile.parse(data)


def test_model_accessors():
    g = GgufFile.parse(_llama())
    assert g.architecture() == "llama"
    assert g.embedding_length() == 64
    assert g.head_count() == 4
    assert g.head_count_kv() == 2
    assert g.block_count() == 2
    assert g.feed_forward_length() == 128
    assert g.context_length() == 512
    assert g.rope_freq_base() == 10000.0
    assert g.rms_norm_eps() == pytest.approx(1e-5)
    assert g.ssm_state_size() == 16
    assert g.key_length() is None
    assert g.value_length() is None
    assert g.full_attention_interval() is None
    assert g.ssm_conv_kernel() is None
    assert g.ssm_inner_size() is None
    assert g.ssm_group_count() is None
    assert g.ssm_time_step_rank() is None


def test_tokenizer_accessors():
    g = GgufFile.parse(_llama())
    assert g.vocab_size() == 4
    assert g.tokenizer_tokens() == ["a", "b", "ab", "</s>"]
    assert g.tokenizer_merges() == ["a b"]
    assert g.tokenizer_model() == "gpt2"
    assert g.eos_token_id() == 3


def test_without_architecture_everything_is_none():
    g = GgufFile.parse(_build([_u32("llama.block_count", 2)]))
    assert g.architecture() is None
    assert g.block_count() is None
    assert g.vocab_size() is None
    assert g.tokenizer_tokens() is None
    assert g.tokenizer_merges() is None


def test_accessor_requires_matching_type():
    g = GgufFile.parse(
        _build([_s("general.architecture", "llama"), _f32("llama.block_count", 2.0)])
    )
    assert g.block_count() is None


def test_non_string_tokens_and_merges():
    tokens = _kv(
        "tokenizer.ggml.tokens",
        GgufType.ARRAY,
        struct.pack("<IQ", GgufType.U8, 2) + b"\x01\x02",
    )
    merges = _kv(
        "tokenizer.ggml.merges",
        GgufType.ARRAY,
        struct.pack("<IQ", GgufType.U8, 1) + b"\x01",
    )
    g = GgufFile.parse(_build([tokens, merges]))
    assert g.tokenizer_tokens() == ["", ""]
    assert g.tokenizer_merges() == []
    assert g.vocab_size() == 2


def test_tensor_descriptors():
    g = GgufFile.parse(_llama())
    t = g.get_tensor("blk.0.attn_q.weight")
    assert t.dimensions == (64, 64)
    assert t.typ is GgmlType.Q4_0
    assert t.offset == 1024
    assert g.get_tensor("missing") is None
    assert [x.name for x in g.tensors] == [
        "token_embd.weight",
        "blk.0.attn_q.weight",
        "blk.1.ssm_a",
    ]


def test_is_deltanet_layer():
    g = GgufFile.parse(_llama())
    assert g.is_deltanet_layer(1)
    assert not g.is_deltanet_layer(0)


def test_metadata_keys_sorted():
    g = GgufFile.parse(_llama())
    keys = g.metadata_keys()
    assert keys == sorted(keys)
    assert "general.architecture" in keys
    assert len(keys) == len(g.metadata)


def test_tensor_data_offset_default_alignment():
    data = _llama()
    g = GgufFile.parse(data)
    assert g.tensor_data_offset % 32 == 0
    assert len(data) <= g.tensor_data_offset < len(data) + 32


def test_tensor_data_offset_custom_alignment():
    data = _build([_u32("general.alignment", 64)])
    g = GgufFile.parse(data)
    assert g.tensor_data_offset % 64 == 0
    assert len(data) <= g.tensor_data_offset < len(data) + 64


def test_scalar_metadata_types():
    kvs = [
        _kv("i8", GgufType.I8, b"\xff"),
        _kv("i16", GgufType.I16, struct.pack("<h", -300)),
        _kv("u64", GgufType.U64, struct.pack("<Q", 2**40)),
        _kv("i64", GgufType.I64, struct.pack("<q", -(2**40))),
        _kv("f64", GgufType.F64, struct.pack("<d", 0.25)),
        _kv("flag", GgufType.BOOL, b"\x02"),
        _kv("off", GgufType.BOOL, b"\x00"),
    ]
    md = GgufFile.parse(_build(kvs)).metadata
    assert md["i8"].value == -1
    assert md["i16"].value == -300
    assert md["u64"].as_u64() == 2**40
    assert md["u64"].as_u32() is None
    assert md["i64"].value == -(2**40)
    assert md["f64"].value == 0.25
    assert md["flag"].value is True
    assert md["off"].value is False


def test_nested_array():
    inner = struct.pack("<IQ", GgufType.U32, 2) + struct.pack("<II", 5, 6)
    outer = struct.pack("<IQ", GgufType.ARRAY, 1) + inner
    md = GgufFile.parse(_build([_kv("nested", GgufType.ARRAY, outer)])).metadata
    nested = md["nested"]
    assert nested.kind is GgufType.ARRAY
    assert [v.as_u32() for v in nested.value[0].value] == [5, 6]


def test_metadata_value_conversions():
    v = MetadataValue(GgufType.STRING, "llama")
    assert v.as_str() == "llama"
    assert v.as_u32() is None
    assert v.as_f32() is None
    assert MetadataValue(GgufType.F32, 1.5).as_f32() == 1.5


@pytest.mark.parametrize(
    "typ,block,nbytes",
    [
        (GgmlType.F32, 1, 4),
        (GgmlType.F16, 1, 2),
        (GgmlType.Q4_0, 32, 18),
        (GgmlType.Q8_0, 32, 34),
        (GgmlType.Q4K, 256, 144),
        (GgmlType.Q6K, 256, 210),
        (GgmlType.Q8K, 1, 0),
    ],
)
def test_block_layout(typ, block, nbytes):
    assert typ.block_size() == block
    assert typ.bytes_per_block() == nbytes


def test_tensor_info_sizes():
    t = TensorInfo("w", (64, 2), GgmlType.Q4_0, 0)
    assert t.n_elements() == 64 * 2
    assert t.data_size() == (64 * 2 // 32) * 18
    f = TensorInfo("f", (3, 5), GgmlType.F32, 0)
    assert f.data_size() == f.n_elements() * 4


def test_data_size_rounds_up_partial_block():
    t = TensorInfo("w", (33,), GgmlType.Q8_0, 0)
    assert t.data_size() == 2 * GgmlType.Q8_0.bytes_per_block()
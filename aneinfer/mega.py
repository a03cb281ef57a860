"""Fused MIL programs that chain several operations into one dispatch."""

from __future__ import annotations

from .mil import CONV_PREAMBLE, MIL_FOOTER, MIL_HEADER

_WEIGHT_PATH = 'string("@model_path/weights/weight.bin")'


def _func_open(channels: int, spatial: int) -> str:
    return f"    func main<ios18>(tensor<fp32, [1, {channels}, 1, {spatial}]> x) {{\n"


def _cast_in(channels: int, spatial: int) -> str:
    return (
        f"        tensor<fp16, [1, {channels}, 1, {spatial}]> x16 = "
        f'cast(dtype = to_fp16, x = x)[name = string("cast_in")];\n'
    )


def _cast_out(out_var: str, src: str, channels: int, spatial: int, op_name: str) -> str:
    return (
        f"        tensor<fp32, [1, {channels}, 1, {spatial}]> {out_var} = "
        f'cast(dtype = to_fp32, x = {src})[name = string("{op_name}")];\n'
    )


def _weight(name: str, out_ch: int, in_ch: int, offset: int) -> str:
    return (
        f"        tensor<fp16, [{out_ch}, {in_ch}, 1, 1]> {name} = "
        f'const()[name = string("{name}"), val = tensor<fp16, [{out_ch}, {in_ch}, 1, 1]>'
        f"(BLOBFILE(path = {_WEIGHT_PATH}, offset = uint64({offset})))];\n"
    )


def _conv(out_var: str, weight: str, src: str, out_ch: int, spatial: int, op_name: str) -> str:
    return (
        f"        tensor<fp16, [1, {out_ch}, 1, {spatial}]> {out_var} = "
        f"conv(dilations = c_dilations, groups = c_groups, pad = c_pad, "
        f"pad_type = c_pad_type, strides = c_strides, weight = {weight}, "
        f'x = {src})[name = string("{op_name}")];\n'
    )


def _unary(out_var: str, op: str, src: str, channels: int, spatial: int, op_name: str) -> str:
    return (
        f"        tensor<fp16, [1, {channels}, 1, {spatial}]> {out_var} = "
        f'{op}(x = {src})[name = string("{op_name}")];\n'
    )


def _mul(out_var: str, a: str, b: str, channels: int, spatial: int, op_name: str) -> str:
    return (
        f"        tensor<fp16, [1, {channels}, 1, {spatial}]> {out_var} = "
        f'mul(x = {a}, y = {b})[name = string("{op_name}")];\n'
    )


def _program(channels: int, spatial: int, body: list[str], ret: str) -> str:
    parts = [
        MIL_HEADER,
        _func_open(channels, spatial),
        CONV_PREAMBLE,
        _cast_in(channels, spatial),
        *body,
        f"    }} -> ({ret});\n",
        MIL_FOOTER,
    ]
    return "".join(parts)


def mil_gen_fused_ffn(dim: int, hidden_dim: int, spatial: int) -> str:
    """Whole SwiGLU FFN (gate, SiLU, up, mul, down) as one program.

    The weight blob holds gate, up and down projections as consecutive chunks.
    """
    cs_gate = 64 + hidden_dim * dim * 2
    cs_up = 64 + hidden_dim * dim * 2
    gate_offset = 64
    up_offset = 64 + cs_gate
    down_offset = 64 + cs_gate + cs_up
    h = hidden_dim
    body = [
        _weight("W_gate", h, dim, gate_offset),
        _conv("h1", "W_gate", "x16", h, spatial, "conv_gate"),
        _unary("sig", "sigmoid", "h1", h, spatial, "sigmoid"),
        _mul("silu", "h1", "sig", h, spatial, "silu"),
        _weight("W_up", h, dim, up_offset),
        _conv("h3", "W_up", "x16", h, spatial, "conv_up"),
        _mul("gated", "silu", "h3", h, spatial, "gate_mul"),
        _weight("W_down", dim, h, down_offset),
        _conv("out16", "W_down", "gated", dim, spatial, "conv_down"),
        _cast_out("y", "out16", dim, spatial, "cast_out"),
    ]
    return _program(dim, spatial, body, "y")


def mil_gen_fused_dual_proj(in_dim: int, out_a: int, out_b: int, spatial: int) -> str:
    """Two projections of the same input, returned as ``a`` and ``b``."""
    cs_a = 64 + out_a * in_dim * 2
    a_offset = 64
    b_offset = 64 + cs_a
    body = [
        _weight("Wa", out_a, in_dim, a_offset),
        _conv("ha", "Wa", "x16", out_a, spatial, "conv_a"),
        _weight("Wb", out_b, in_dim, b_offset),
        _conv("hb", "Wb", "x16", out_b, spatial, "conv_b"),
        _cast_out("a", "ha", out_a, spatial, "cast_a"),
        _cast_out("b", "hb", out_b, spatial, "cast_b"),
    ]
    return _program(in_dim, spatial, body, "a, b")


def mil_gen_fused_triple_proj(
    in_dim: int, out_a: int, out_b: int, out_c: int, spatial: int
) -> str:
    """Three projections of the same input, returned as ``a``, ``b`` and ``c``."""
    cs_a = 64 + out_a * in_dim * 2
    cs_b = 64 + out_b * in_dim * 2
    a_offset = 64
    b_offset = 64 + cs_a
    c_offset = 64 + cs_a + cs_b
    body = [
        _weight("Wa", out_a, in_dim, a_offset),
        _conv("ha", "Wa", "x16", out_a, spatial, "conv_a"),
        _weight("Wb", out_b, in_dim, b_offset),
        _conv("hb", "Wb", "x16", out_b, spatial, "conv_b"),
        _weight("Wc", out_c, in_dim, c_offset),
        _conv("hc", "Wc", "x16", out_c, spatial, "conv_c"),
        _cast_out("a", "ha", out_a, spatial, "cast_a"),
        _cast_out("b", "hb", out_b, spatial, "cast_b"),
        _cast_out("c", "hc", out_c, spatial, "cast_c"),
    ]
    return _program(in_dim, spatial, body, "a, b, c")


def mil_gen_fused_ffn_gate_up(dim: int, hidden_dim: int, spatial: int) -> str:
    """Gate, SiLU, up and mul without the down projection; outputs ``hidden_dim`` channels."""
    cs_gate = 64 + hidden_dim * dim * 2
    gate_offset = 64
    up_offset = 64 + cs_gate
    h = hidden_dim
    body = [
        _weight("W_gate", h, dim, gate_offset),
        _conv("h1", "W_gate", "x16", h, spatial, "conv_gate"),
        _unary("sig", "sigmoid", "h1", h, spatial, "sigmoid"),
        _mul("silu", "h1", "sig", h, spatial, "silu"),
        _weight("W_up", h, dim, up_offset),
        _conv("h3", "W_up", "x16", h, spatial, "conv_up"),
        _mul("gated16", "silu", "h3", h, spatial, "gate_mul"),
        _cast_out("y", "gated16", h, spatial, "cast_out"),
    ]
    return _program(dim, spatial, body, "y")


def mil_gen_fused_qkv(dim: int, spatial: int) -> str:
    """Q, K and V projections of one input in a single program."""
    chunk_size = 64 + dim * dim * 2
    wq_offset = 64
    wk_offset = 64 + chunk_size
    wv_offset = 64 + 2 * chunk_size
    body = [
        _weight("Wq", dim, dim, wq_offset),
        _conv("q16", "Wq", "x16", dim, spatial, "conv_q"),
        _weight("Wk", dim, dim, wk_offset),
        _conv("k16", "Wk", "x16", dim, spatial, "conv_k"),
        _weight("Wv", dim, dim, wv_offset),
        _conv("v16", "Wv", "x16", dim, spatial, "conv_v"),
        _cast_out("q", "q16", dim, spatial, "cast_q"),
        _cast_out("k", "k16", dim, spatial, "cast_k"),
        _cast_out("v", "v16", dim, spatial, "cast_v"),
    ]
    return _program(dim, spatial, body, "q, k, v")
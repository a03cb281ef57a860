"""MIL program text generation for linear layers expressed as 1x1 convolutions.

Tensor layout is ``[1, C, 1, S]``: batch 1, channels, height 1, sequence.
"""

from __future__ import annotations

from collections.abc import Iterable

MIL_HEADER = (
    "program(1.3)\n"
    '[buildInfo = dict<string, string>({{"coremlc-component-MIL", "3510.2.1"}, '
    '{"coremlc-version", "3505.4.1"}, {"coremltools-component-milinternal", ""}, '
    '{"coremltools-version", "9.0"}})]\n'
    "{\n"
)

MIL_FOOTER = "}\n"

CONV_PREAMBLE = (
    '        string c_pad_type = const()[name = string("c_pad_type"), val = string("valid")];\n'
    '        tensor<int32, [2]> c_strides = const()[name = string("c_strides"), '
    "val = tensor<int32, [2]>([1, 1])];\n"
    '        tensor<int32, [4]> c_pad = const()[name = string("c_pad"), '
    "val = tensor<int32, [4]>([0, 0, 0, 0])];\n"
    '        tensor<int32, [2]> c_dilations = const()[name = string("c_dilations"), '
    "val = tensor<int32, [2]>([1, 1])];\n"
    '        int32 c_groups = const()[name = string("c_groups"), val = int32(1)];\n'
    '        string to_fp16 = const()[name = string("to_fp16"), val = string("fp16")];\n'
    '        string to_fp32 = const()[name = string("to_fp32"), val = string("fp32")];\n'
)

_WEIGHT_PATH = 'string("@model_path/weights/weight.bin")'


def _func_open(name: str, channels: int, spatial: int, var: str = "x") -> str:
    return f"    func {name}<ios18>(tensor<fp32, [1, {channels}, 1, {spatial}]> {var}) {{\n"


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


def _procedure(
    index: int, name: str, in_ch: int, out_ch: int, spatial: int, blob_offset: int
) -> str:
    i = index
    lines = [
        _func_open(name, in_ch, spatial, f"x{i}"),
        f'        string pt_{i} = const()[name = string("pt_{i}"), val = string("valid")];\n',
        f'        tensor<int32, [2]> st_{i} = const()[name = string("st_{i}"), '
        f"val = tensor<int32, [2]>([1, 1])];\n",
        f'        tensor<int32, [4]> pd_{i} = const()[name = string("pd_{i}"), '
        f"val = tensor<int32, [4]>([0, 0, 0, 0])];\n",
        f'        tensor<int32, [2]> dl_{i} = const()[name = string("dl_{i}"), '
        f"val = tensor<int32, [2]>([1, 1])];\n",
        f'        int32 gr_{i} = const()[name = string("gr_{i}"), val = int32(1)];\n',
        f'        string to16_{i} = const()[name = string("to16_{i}"), val = string("fp16")];\n',
        f'        string to32_{i} = const()[name = string("to32_{i}"), val = string("fp32")];\n',
        f"        tensor<fp16, [1, {in_ch}, 1, {spatial}]> x16_{i} = "
        f'cast(dtype = to16_{i}, x = x{i})[name = string("cin_{i}")];\n',
        f"        tensor<fp16, [{out_ch}, {in_ch}, 1, 1]> W_{i} = "
        f'const()[name = string("W_{i}"), val = tensor<fp16, [{out_ch}, {in_ch}, 1, 1]>'
        f"(BLOBFILE(path = {_WEIGHT_PATH}, offset = uint64({blob_offset})))];\n",
        f"        tensor<fp16, [1, {out_ch}, 1, {spatial}]> y16_{i} = "
        f"conv(dilations = dl_{i}, groups = gr_{i}, pad = pd_{i}, pad_type = pt_{i}, "
        f'strides = st_{i}, weight = W_{i}, x = x16_{i})[name = string("conv_{i}")];\n',
        f"        tensor<fp32, [1, {out_ch}, 1, {spatial}]> y{i} = "
        f'cast(dtype = to32_{i}, x = y16_{i})[name = string("cout_{i}")];\n',
        f"    }} -> (y{i});\n\n",
    ]
    return "".join(lines)


def mil_gen_multi_procedure(procs: Iterable[tuple[str, int, int, int, int]]) -> str:
    """Build a program with one conv procedure per ``(name, in_ch, out_ch, spatial, offset)``.

    All procedures share one weight blob and read it at their own offsets.
    """
    body = "".join(
        _procedure(i, name, in_ch, out_ch, spatial, offset)
        for i, (name, in_ch, out_ch, spatial, offset) in enumerate(procs)
    )
    return MIL_HEADER + body + MIL_FOOTER


def mil_conv_op(
    weight_name: str,
    conv_name: str,
    input_var: str,
    out_ch: int,
    in_ch: int,
    spatial: int,
    blob_offset: int,
) -> str:
    """Return the weight constant and conv lines (fp16) for one projection, without a trailing newline."""
    return (
        f"        tensor<fp16, [{out_ch}, {in_ch}, 1, 1]> {weight_name} = "
        f'const()[name = string("{weight_name}"), '
        f"val = tensor<fp16, [{out_ch}, {in_ch}, 1, 1]>"
        f"(BLOBFILE(path = {_WEIGHT_PATH}, offset = uint64({blob_offset})))];\n"
        f"        tensor<fp16, [1, {out_ch}, 1, {spatial}]> {conv_name} = "
        f"conv(dilations = c_dilations, groups = c_groups, pad = c_pad, "
        f"pad_type = c_pad_type, strides = c_strides, weight = {weight_name}, "
        f'x = {input_var})[name = string("{conv_name}")];'
    )


def mil_gen_qkv(dim: int, spatial: int) -> str:
    """Fused Q/K/V projections: one ``[1, dim, 1, S]`` input, three outputs."""
    chunk_size = 64 + dim * dim * 2
    wq_offset = 64
    wk_offset = 64 + chunk_size
    wv_offset = 64 + 2 * chunk_size
    parts = [
        MIL_HEADER,
        _func_open("main", dim, spatial),
        CONV_PREAMBLE,
        _cast_in(dim, spatial),
        mil_conv_op("Wq", "conv_q", "x16", dim, dim, spatial, wq_offset),
        "\n",
        mil_conv_op("Wk", "conv_k", "x16", dim, dim, spatial, wk_offset),
        "\n",
        mil_conv_op("Wv", "conv_v", "x16", dim, dim, spatial, wv_offset),
        "\n",
        _cast_out("q", "conv_q", dim, spatial, "cast_q"),
        _cast_out("k", "conv_k", dim, spatial, "cast_k"),
        _cast_out("v", "conv_v", dim, spatial, "cast_v"),
        "    } -> (q, k, v);\n",
        MIL_FOOTER,
    ]
    return "".join(parts)


def _single_conv(
    in_ch: int, out_ch: int, spatial: int, weight_name: str, conv_name: str
) -> str:
    parts = [
        MIL_HEADER,
        _func_open("main", in_ch, spatial),
        CONV_PREAMBLE,
        _cast_in(in_ch, spatial),
        mil_conv_op(weight_name, conv_name, "x16", out_ch, in_ch, spatial, 64),
        "\n",
        _cast_out("y", conv_name, out_ch, spatial, "cast_out"),
        "    } -> (y);\n",
        MIL_FOOTER,
    ]
    return "".join(parts)


def mil_gen_output_proj(dim: int, spatial: int) -> str:
    """Output projection: ``[1, dim, 1, S]`` in and out."""
    return _single_conv(dim, dim, spatial, "Wo", "conv_o")


def mil_gen_conv(in_ch: int, out_ch: int, spatial: int) -> str:
    """Single linear projection from ``in_ch`` to ``out_ch`` channels."""
    return _single_conv(in_ch, out_ch, spatial, "W", "conv")


def mil_gen_ffn_up(dim: int, hidden_dim: int, spatial: int) -> str:
    """Fused gate and up projections: outputs ``out1`` and ``out3`` of ``hidden_dim`` channels."""
    chunk_size = 64 + hidden_dim * dim * 2
    w1_offset = 64
    w3_offset = 64 + chunk_size
    parts = [
        MIL_HEADER,
        _func_open("main", dim, spatial),
        CONV_PREAMBLE,
        _cast_in(dim, spatial),
        mil_conv_op("W1", "conv_w1", "x16", hidden_dim, dim, spatial, w1_offset),
        "\n",
        mil_conv_op("W3", "conv_w3", "x16", hidden_dim, dim, spatial, w3_offset),
        "\n",
        _cast_out("out1", "conv_w1", hidden_dim, spatial, "cast_h1"),
        _cast_out("out3", "conv_w3", hidden_dim, spatial, "cast_h3"),
        "    } -> (out1, out3);\n",
        MIL_FOOTER,
    ]
    return "".join(parts)


def mil_gen_ffn_down(dim: int, hidden_dim: int, spatial: int) -> str:
    """Down projection from ``hidden_dim`` back to ``dim`` channels."""
    return _single_conv(hidden_dim, dim, spatial, "W2", "conv_w2")
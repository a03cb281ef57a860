from aneinfer.mega import (
    mil_gen_fused_dual_proj,
    mil_gen_fused_ffn,
    mil_gen_fused_ffn_gate_up,
    mil_gen_fused_qkv,
    mil_gen_fused_triple_proj,
)
from aneinfer.mil import CONV_PREAMBLE, MIL_FOOTER, MIL_HEADER


def test_fused_ffn_generation():
    mil = mil_gen_fused_ffn(2048, 6144, 64)
    for name in ("conv_gate", "sigmoid", "silu", "conv_up", "gate_mul", "conv_down",
                 "-> (y)", "W_gate", "W_up", "W_down"):
        assert name in mil


def test_fused_qkv_generation():
    mil = mil_gen_fused_qkv(2048, 64)
    assert "conv_q" in mil
    assert "conv_k" in mil
    assert "conv_v" in mil
    assert "-> (q, k, v)" in mil


def test_fused_ffn_small():
    mil = mil_gen_fused_ffn(64, 128, 16)
    assert "sigmoid" in mil
    assert "conv_gate" in mil
    assert "conv_down" in mil
    assert "offset = uint64(64)" in mil
    assert "offset = uint64(16512)" in mil
    assert "offset = uint64(32960)" in mil


def test_fused_gate_up_small():
    mil = mil_gen_fused_ffn_gate_up(64, 128, 16)
    assert "sigmoid" in mil
    assert "conv_gate" in mil
    assert "conv_up" in mil
    assert "conv_down" not in mil
    assert "offset = uint64(16512)" in mil
    assert "tensor<fp32, [1, 128, 1, 16]> y = cast" in mil


def test_programs_are_framed():
    for mil in (
        mil_gen_fused_ffn(8, 16, 4),
        mil_gen_fused_dual_proj(8, 8, 4, 2),
        mil_gen_fused_triple_proj(8, 8, 4, 4, 2),
        mil_gen_fused_ffn_gate_up(8, 16, 4),
        mil_gen_fused_qkv(8, 4),
    ):
        assert mil.startswith(MIL_HEADER)
        assert mil.endswith(MIL_FOOTER)
        assert CONV_PREAMBLE in mil


def test_dual_proj_offsets_and_shapes():
    mil = mil_gen_fused_dual_proj(16, 32, 8, 4)
    assert "-> (a, b)" in mil
    assert "tensor<fp16, [32, 16, 1, 1]> Wa" in mil
    assert "tensor<fp16, [8, 16, 1, 1]> Wb" in mil
    # 64 + 64 + 32*16*2 = 1152
    assert "offset = uint64(1152)" in mil
    assert "tensor<fp32, [1, 8, 1, 4]> b = cast" in mil


def test_triple_proj_offsets():
    mil = mil_gen_fused_triple_proj(16, 32, 8, 8, 4)
    assert "-> (a, b, c)" in mil
    assert "offset = uint64(1152)" in mil
    # 1152 + 64 + 8*16*2 = 1472
    assert "offset = uint64(1472)" in mil
    assert "conv_c" in mil


def test_fused_qkv_offsets():
    mil = mil_gen_fused_qkv(16, 4)
    # chunk = 64 + 16*16*2 = 576
    assert "offset = uint64(640)" in mil
    assert "offset = uint64(1216)" in mil
    assert mil.count("BLOBFILE") == 3


def test_fused_ffn_op_order():
    mil = mil_gen_fused_ffn(8, 16, 4)
    positions = [mil.index(n) for n in (
        '"conv_gate"', '"sigmoid"', '"silu"', '"conv_up"', '"gate_mul"', '"conv_down"', '"cast_out"'
    )]
    assert positions == sorted(positions)
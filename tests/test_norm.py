import numpy as np
import pytest

from aneinfer.norm import cpu_rmsnorm


def test_rmsnorm():
    out = cpu_rmsnorm([1.0, 2.0, 3.0, 4.0], [1.0] * 4, 1, 4)
    assert abs(out[0] - 0.3651) < 0.01


def test_rmsnorm_unit_rms_rows():
    rng = np.random.default_rng(0)
    x = rng.standard_normal(3 * 8).astype(np.float32) * 5
    out = cpu_rmsnorm(x, np.ones(8), 3, 8)
    assert out.shape == (24,)
    assert out.dtype == np.float32
    rms = np.sqrt(np.mean(out.reshape(3, 8) ** 2, axis=1))
    assert np.allclose(rms, 1.0, atol=1e-3)


def test_rmsnorm_weight_scales():
    out = cpu_rmsnorm([3.0, 3.0], [2.0, 0.5], 1, 2)
    assert out[0] == pytest.approx(2.0, abs=1e-4)
    assert out[1] == pytest.approx(0.5, abs=1e-4)


def test_rmsnorm_zero_row():
    out = cpu_rmsnorm([0.0, 0.0, 0.0], [1.0, 1.0, 1.0], 1, 3)
    assert out.tolist() == [0.0, 0.0, 0.0]


def test_rmsnorm_short_input():
    with pytest.raises(ValueError):
        cpu_rmsnorm([1.0, 2.0], [1.0, 1.0], 2, 2)


def test_rmsnorm_short_weight():
    with pytest.raises(ValueError):
        cpu_rmsnorm([1.0, 2.0], [1.0], 1, 2)
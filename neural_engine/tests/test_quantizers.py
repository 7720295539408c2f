"""Tests for the quantization codec."""

import pytest
import torch

from ..core import ConfigurationError, DType, ShapeMismatch, Tensor, TensorConfig
from ..quantization import (
    MIN_RANGE,
    Range,
    S8Quantizer,
    Scale,
    U8Quantizer,
    dequantize_tensor,
    get_quantizer,
    per_channel_minmax,
    quantize_tensor,
    round_half_away_from_zero,
)


def test_round_half_away_from_zero():
    """Ties round away from zero, everything else to nearest."""
    values = torch.tensor([0.5, 1.5, 2.5, -0.5, -2.5, 0.4, -0.6, 3.0])
    expected = torch.tensor([1.0, 2.0, 3.0, -1.0, -3.0, 0.0, -1.0, 3.0])
    assert torch.equal(round_half_away_from_zero(values), expected)


def test_u8_per_tensor():
    """u8 maps [min, max] onto [0, 255]."""
    values = torch.linspace(-3.0, 5.0, 101)
    quantizer = U8Quantizer()
    q, scale = quantizer.quantize(values)

    assert q.dtype == torch.uint8
    assert q.min().item() == 0
    assert q.max().item() == 255
    assert scale.channels == 1
    assert scale.min.item() == pytest.approx(-3.0)
    assert scale.value.item() == pytest.approx(255.0 / 8.0)
    assert torch.equal(scale.zero_point, scale.min)


def test_s8_symmetric_with_ties():
    """s8 is symmetric around zero and rounds ties away from zero."""
    values = torch.tensor([-127.0, 2.5, -0.5, 127.0])
    quantizer = S8Quantizer()
    q, scale = quantizer.quantize(values)

    assert scale.value.item() == 1.0
    assert torch.equal(scale.zero_point, torch.zeros(1))
    assert q.tolist() == [-127, 3, -1, 127]


def test_saturation_boundedness():
    """Values outside the representable range saturate silently."""
    huge = torch.tensor([-1e6, 1e6, 3.0])
    s8 = S8Quantizer().quantize_values(huge, Scale(torch.zeros(1), torch.ones(1), DType.S8))
    assert s8.tolist() == [-128, 127, 3]

    u8 = U8Quantizer().quantize_values(
        torch.tensor([-5.0, 300.0, 7.0]), Scale(torch.zeros(1), torch.ones(1), DType.U8)
    )
    assert u8.tolist() == [0, 255, 7]

    generator = torch.Generator().manual_seed(3)
    wide = (torch.rand(1000, generator=generator) - 0.5) * 1e8
    for quantizer in (U8Quantizer(), S8Quantizer()):
        q, _ = quantizer.quantize(wide)
        assert q.min().item() >= quantizer.qmin
        assert q.max().item() <= quantizer.qmax


def test_round_trip_within_one_step():
    """Dequantized values stay within half a step of the source and inside [min, max]."""
    generator = torch.Generator().manual_seed(0)
    values = torch.rand(64, 48, generator=generator) * 20 - 10

    for quantizer in (U8Quantizer(), S8Quantizer()):
        q, scale = quantizer.quantize(values)
        restored = quantizer.dequantize_values(q, scale)
        half_step = 0.5 / scale.value.item()

        assert (restored - values).abs().max().item() <= half_step * 1.001
        assert restored.min().item() >= values.min().item() - half_step * 1.001
        assert restored.max().item() <= values.max().item() + half_step * 1.001


def test_per_channel_permutation():
    """Permuting channels permutes the per-channel scales identically."""
    generator = torch.Generator().manual_seed(1)
    weight = torch.randn(16, 8, generator=generator) * torch.arange(1, 9, dtype=torch.float32)
    perm = torch.randperm(8, generator=generator)

    quantizer = S8Quantizer()
    q, scale = quantizer.quantize(weight, per_channel=True)
    q_perm, scale_perm = quantizer.quantize(weight[:, perm], per_channel=True)

    assert scale.channels == 8
    assert torch.equal(scale_perm.value, scale.value[perm])
    assert torch.equal(q_perm, q[:, perm])


def test_per_channel_independent_of_workers():
    """Per-channel ranges do not depend on how channels are partitioned."""
    generator = torch.Generator().manual_seed(2)
    values = torch.randn(37, 53, generator=generator)

    single = per_channel_minmax(values, channel_axis=0, num_workers=1)
    several = per_channel_minmax(values, channel_axis=0, num_workers=5)

    assert torch.equal(single.min, several.min)
    assert torch.equal(single.max, several.max)


@pytest.mark.parametrize("quantizer_class", [U8Quantizer, S8Quantizer])
@pytest.mark.parametrize("per_channel,channel_axis", [(False, -1), (True, -1), (True, 0)])
def test_vectorized_matches_blocked(quantizer_class, per_channel, channel_axis):
    """Both execution paths produce identical integers."""
    generator = torch.Generator().manual_seed(4)
    values = torch.rand(200, 33, generator=generator) * 20 - 10

    vectorized = quantizer_class(vectorized=True)
    blocked = quantizer_class(vectorized=False, num_workers=3)
    q_vec, scale = vectorized.quantize(values, per_channel, channel_axis)
    q_blk = blocked.quantize_values(values, scale, channel_axis)

    assert torch.equal(q_vec, q_blk)


def test_degenerate_range():
    """A constant tensor quantizes without dividing by zero."""
    constant = torch.full((4, 4), 2.0)

    q, scale = U8Quantizer().quantize(constant)
    assert torch.isfinite(scale.value).all()
    assert q.eq(0).all()

    q, scale = S8Quantizer().quantize(torch.zeros(4))
    assert scale.value.item() == pytest.approx(127.0 / MIN_RANGE)
    assert q.eq(0).all()


def test_invalid_input():
    """NaN, Inf and empty tensors are rejected."""
    quantizer = U8Quantizer()
    with pytest.raises(ValueError):
        quantizer.quantize(torch.tensor([1.0, float("nan")]))
    with pytest.raises(ValueError):
        quantizer.quantize(torch.tensor([1.0, float("inf")]))
    with pytest.raises(ValueError):
        quantizer.quantize(torch.empty(0))


def test_range_to_scale():
    """A Range only becomes a Scale through an explicit conversion."""
    value_range = Range(torch.tensor([-1.0, -4.0]), torch.tensor([3.0, 2.0]))

    u8 = value_range.to_scale(DType.U8)
    assert u8.value.tolist() == pytest.approx([255.0 / 4.0, 255.0 / 6.0])
    assert u8.min.tolist() == [-1.0, -4.0]

    s8 = value_range.to_scale(DType.S8)
    assert s8.value.tolist() == pytest.approx([127.0 / 3.0, 127.0 / 4.0])

    with pytest.raises(ValueError):
        Range(torch.tensor([1.0]), torch.tensor([0.0]))
    with pytest.raises(ShapeMismatch):
        Range(torch.tensor([0.0, 1.0]), torch.tensor([2.0]))


def test_quantize_tensor():
    """quantize_tensor produces the value, min and scale tensors."""
    generator = torch.Generator().manual_seed(5)
    source = Tensor.from_torch("w_fp32", torch.rand(6, 4, generator=generator) - 0.5)

    q, min_tensor, scale_tensor = quantize_tensor(
        source, TensorConfig("w", (6, 4), DType.S8), per_channel=True
    )
    assert q.dtype == DType.S8
    assert min_tensor.name == "w_min"
    assert scale_tensor.name == "w_scale"
    assert scale_tensor.shape == (4,)

    scale = Scale.from_tensors(min_tensor, scale_tensor, DType.S8)
    restored = dequantize_tensor(q, scale)
    assert (restored - source.data()).abs().max().item() <= 0.5 / scale.value.min().item() * 1.001

    with pytest.raises(ShapeMismatch):
        quantize_tensor(source, TensorConfig("w", (4, 6), DType.S8))
    with pytest.raises(ConfigurationError):
        quantize_tensor(q, TensorConfig("w2", (6, 4), DType.S8))


def test_get_quantizer():
    """Quantizers are looked up by dtype."""
    assert isinstance(get_quantizer(DType.U8), U8Quantizer)
    assert isinstance(get_quantizer(DType.S8, vectorized=False), S8Quantizer)
    with pytest.raises(ConfigurationError):
        get_quantizer(DType.FP32)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

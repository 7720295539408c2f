"""Tests for the torch matmul engine."""

import pytest
import torch
import torch.nn.functional as F

from ..core import ACTIVATION_REGISTRY, MATMUL_ENGINE_REGISTRY, ComputeError
from ..ops import PostOp, TorchMatmulEngine

SRC = torch.tensor([[1, 2], [3, 4]], dtype=torch.uint8)
WEIGHT = torch.tensor([[1, -1], [2, 0]], dtype=torch.int8)


def test_integer_accumulation():
    """Integer operands accumulate exactly, then bias and scales apply."""
    dst = torch.empty(2, 2)
    TorchMatmulEngine().execute(
        SRC,
        WEIGHT,
        dst,
        bias=torch.tensor([1.0, 1.0]),
        output_scales=torch.tensor([0.5, 2.0]),
    )
    # acc = [[5, -1], [11, -3]]
    assert dst.tolist() == [[3.0, 0.0], [6.0, -4.0]]


def test_transposed_weight():
    """A transposed weight is read without a physical copy by the caller."""
    dst = torch.empty(2, 2)
    TorchMatmulEngine().execute(SRC, WEIGHT.t().contiguous(), dst, transpose_weight=True)
    assert dst.tolist() == [[5.0, -1.0], [11.0, -3.0]]


def test_sum_post_op():
    """The sum post-op adds the previous contents of dst."""
    dst = torch.full((2, 2), 10.0)
    TorchMatmulEngine().execute(SRC, WEIGHT, dst, post_ops=[PostOp.sum()])
    assert dst.tolist() == [[15.0, 9.0], [21.0, 7.0]]


@pytest.mark.parametrize("algorithm", ["gelu_tanh", "gelu_erf"])
def test_eltwise_post_op(algorithm):
    """An eltwise post-op applies the registered activation."""
    dst = torch.empty(2, 2)
    TorchMatmulEngine().execute(
        SRC, WEIGHT, dst, output_scales=torch.tensor([0.25]), post_ops=[PostOp.eltwise(algorithm)]
    )
    raw = torch.tensor([[5.0, -1.0], [11.0, -3.0]]) * 0.25
    approximate = "tanh" if algorithm == "gelu_tanh" else "none"
    assert torch.allclose(dst, F.gelu(raw, approximate=approximate))


def test_registries():
    """The torch engine and both activations are registered."""
    assert MATMUL_ENGINE_REGISTRY.get("torch") is TorchMatmulEngine
    assert "gelu_tanh" in ACTIVATION_REGISTRY
    assert "gelu_erf" in ACTIVATION_REGISTRY


def test_compute_error():
    """Primitive failures surface as ComputeError."""
    engine = TorchMatmulEngine()
    with pytest.raises(ComputeError):
        engine.execute(torch.ones(2, 3), torch.ones(2, 2), torch.empty(2, 2))
    with pytest.raises(ComputeError):
        engine.execute(SRC, WEIGHT, torch.empty(2, 2), post_ops=[PostOp("unknown")])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

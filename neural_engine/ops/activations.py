"""
Elementwise activations available as matmul epilogues.

GELU(x) ≈ 0.5 * x * (1 + tanh(sqrt(2/π) * (x + 0.044715 * x³)))
"""

import torch
import torch.nn.functional as F

from ..core.registry import ACTIVATION_REGISTRY


@ACTIVATION_REGISTRY.register("gelu_tanh")
def gelu_tanh(x: torch.Tensor) -> torch.Tensor:
    return F.gelu(x, approximate="tanh")


@ACTIVATION_REGISTRY.register("gelu_erf")
def gelu_erf(x: torch.Tensor) -> torch.Tensor:
    return F.gelu(x)

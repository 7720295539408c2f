"""
Neural Engine - integer-quantized inner product

Quantized matmul operator for CPU inference graphs:
- u8/s8 activations, per-tensor or per-channel s8 weights
- Zero-point compensation folded into the bias
- Fused residual sum or GELU epilogue
- fp32 output, or s8/u8 output with a static or dynamic range
"""

__version__ = "1.0.0"

from .core.registry import (
    ACTIVATION_REGISTRY,
    MATMUL_ENGINE_REGISTRY,
    OPERATOR_REGISTRY,
    QUANTIZER_REGISTRY,
)
from .ops import InnerProductOperator, MatmulEngine, TorchMatmulEngine

__all__ = [
    "OPERATOR_REGISTRY",
    "QUANTIZER_REGISTRY",
    "MATMUL_ENGINE_REGISTRY",
    "ACTIVATION_REGISTRY",
    "InnerProductOperator",
    "MatmulEngine",
    "TorchMatmulEngine",
]

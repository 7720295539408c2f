"""Operators and the matmul primitive they delegate to."""

from .activations import gelu_erf, gelu_tanh
from .inner_product import InnerProductOperator
from .matmul_engine import MatmulEngine, PostOp, TorchMatmulEngine
from .template import Operator, OperatorState

__all__ = [
    "Operator",
    "OperatorState",
    "InnerProductOperator",
    "MatmulEngine",
    "TorchMatmulEngine",
    "PostOp",
    "gelu_tanh",
    "gelu_erf",
]

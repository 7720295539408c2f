"""Core types: tensors, configs, allocator, registries and errors."""

from .allocator import MemoryAllocator
from .conf import AttrConfig, DType, OperatorConfig, TensorConfig
from .config_parser import ConfigParser
from .errors import (
    AllocationError,
    ComputeError,
    ConfigurationError,
    NeuralEngineError,
    ShapeMismatch,
)
from .registry import (
    ACTIVATION_REGISTRY,
    MATMUL_ENGINE_REGISTRY,
    OPERATOR_REGISTRY,
    QUANTIZER_REGISTRY,
)
from .tensor import Tensor
from .tensor_io import TensorIO

__all__ = [
    "MemoryAllocator",
    "AttrConfig",
    "DType",
    "OperatorConfig",
    "TensorConfig",
    "ConfigParser",
    "NeuralEngineError",
    "ConfigurationError",
    "ShapeMismatch",
    "AllocationError",
    "ComputeError",
    "OPERATOR_REGISTRY",
    "QUANTIZER_REGISTRY",
    "MATMUL_ENGINE_REGISTRY",
    "ACTIVATION_REGISTRY",
    "Tensor",
    "TensorIO",
]

"""
Tensor-level quantization entry points.

Wraps the dtype quantizers so that a float Tensor becomes the three tensors
the inner-product operator consumes: the quantized values, ``<name>_min`` and
``<name>_scale``.
"""

from typing import Optional, Tuple

import torch

from ..core.allocator import MemoryAllocator
from ..core.conf import DType, TensorConfig
from ..core.errors import ConfigurationError, ShapeMismatch
from ..core.registry import QUANTIZER_REGISTRY
from ..core.tensor import Tensor
from .base_quantizer import BaseQuantizer
from .ranges import Scale


def get_quantizer(
    dtype: str,
    num_workers: Optional[int] = None,
    vectorized: Optional[bool] = None,
) -> BaseQuantizer:
    """Instantiate the registered quantizer for ``dtype``."""
    if dtype not in QUANTIZER_REGISTRY:
        raise ConfigurationError(
            f"No quantizer for dtype {dtype}. Available: {QUANTIZER_REGISTRY.list()}"
        )
    return QUANTIZER_REGISTRY.get(dtype)(num_workers=num_workers, vectorized=vectorized)


def quantize_tensor(
    source: Tensor,
    config: TensorConfig,
    per_channel: bool = False,
    channel_axis: int = -1,
    allocator: Optional[MemoryAllocator] = None,
    num_workers: Optional[int] = None,
    vectorized: Optional[bool] = None,
) -> Tuple[Tensor, Tensor, Tensor]:
    """
    Quantize a float tensor.

    Args:
        source: fp32 tensor with a buffer
        config: Name, shape and target dtype (u8 or s8) of the quantized tensor
        per_channel: One scale per slice along ``channel_axis``
        channel_axis: Channel dimension for per-channel mode
        allocator: Buffer source for the created tensors
        num_workers: Worker pool size for per-channel loops
        vectorized: Force the vectorized or blocked path

    Returns:
        Tuple of (quantized tensor, min tensor, scale tensor), each with a life of 1
    """
    if source.dtype != DType.FP32:
        raise ConfigurationError(f"Can only quantize fp32 tensors, got {source.dtype}")
    if tuple(config.shape) != source.shape:
        raise ShapeMismatch(
            f"Quantized shape {list(config.shape)} does not match "
            f"source {source.name} shape {list(source.shape)}"
        )

    quantizer = get_quantizer(config.dtype, num_workers, vectorized)
    values, scale = quantizer.quantize(source.data(), per_channel, channel_axis)

    quantized = Tensor(config, allocator)
    quantized.add_tensor_life(1)
    quantized.mutable_data().copy_(values)
    min_tensor, scale_tensor = scale.to_tensors(config.name, allocator)
    return quantized, min_tensor, scale_tensor


def dequantize_tensor(
    quantized: Tensor,
    scale: Scale,
    channel_axis: int = -1,
) -> torch.Tensor:
    """Map a quantized tensor back to float32 values."""
    quantizer = get_quantizer(quantized.dtype)
    return quantizer.dequantize_values(quantized.data(), scale, channel_axis)

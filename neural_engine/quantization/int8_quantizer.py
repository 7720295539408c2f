"""8-bit integer quantizer implementations."""

import torch

from ..core.conf import DType
from ..core.registry import QUANTIZER_REGISTRY
from .base_quantizer import BaseQuantizer


@QUANTIZER_REGISTRY.register(DType.U8)
class U8Quantizer(BaseQuantizer):
    """
    Asymmetric unsigned 8-bit quantization.

    q = round((x - min) * scale), scale = 255 / (max - min), saturated to [0, 255].
    """

    dtype = DType.U8

    def scale_values(self, values, mins, scales) -> torch.Tensor:
        return (values - mins) * scales

    def unscale_values(self, values, mins, scales) -> torch.Tensor:
        return values / scales + mins


@QUANTIZER_REGISTRY.register(DType.S8)
class S8Quantizer(BaseQuantizer):
    """
    Symmetric signed 8-bit quantization.

    q = round(x * scale), scale = 127 / max(|min|, |max|), saturated to [-128, 127].
    """

    dtype = DType.S8

    def scale_values(self, values, mins, scales) -> torch.Tensor:
        return values * scales

    def unscale_values(self, values, mins, scales) -> torch.Tensor:
        return values / scales

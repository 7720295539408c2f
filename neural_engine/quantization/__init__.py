"""Quantization codec, bias re-biasing and output re-quantization."""

from .base_quantizer import BaseQuantizer, round_half_away_from_zero
from .bias import compensate_bias, rebias, weight_compensation
from .codec import dequantize_tensor, get_quantizer, quantize_tensor
from .int8_quantizer import S8Quantizer, U8Quantizer
from .ranges import MIN_RANGE, Range, Scale, per_channel_minmax, runtime_minmax
from .requantize import OutputRequantizer, RequantizeMode

__all__ = [
    "BaseQuantizer",
    "U8Quantizer",
    "S8Quantizer",
    "MIN_RANGE",
    "Range",
    "Scale",
    "runtime_minmax",
    "per_channel_minmax",
    "round_half_away_from_zero",
    "get_quantizer",
    "quantize_tensor",
    "dequantize_tensor",
    "weight_compensation",
    "compensate_bias",
    "rebias",
    "OutputRequantizer",
    "RequantizeMode",
]

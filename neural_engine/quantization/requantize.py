"""
Output re-quantization of the fp32 matmul result.

Static mode applies a scale computed offline and supplied by the caller.
Dynamic mode derives the scale from the values produced by this invocation
and hands it back so it can be emitted as side outputs. An fp32 output skips
re-quantization and copies the result out.
"""

from typing import Optional

import torch
from loguru import logger

from ..core.conf import DType
from ..core.errors import ConfigurationError, ShapeMismatch
from ..core.tensor import Tensor
from .codec import get_quantizer
from .ranges import Scale


class RequantizeMode:
    NONE = "none"
    STATIC = "static"
    DYNAMIC = "dynamic"


class OutputRequantizer:
    """Maps an fp32 accumulator onto the configured output dtype."""

    def __init__(
        self,
        output_dtype: str,
        mode: str,
        num_workers: Optional[int] = None,
        vectorized: Optional[bool] = None,
    ):
        """
        Args:
            output_dtype: fp32, s8 or u8
            mode: RequantizeMode; must be NONE exactly when the output is fp32
            num_workers: Worker pool size for the quantizer
            vectorized: Force the quantizer's vectorized or blocked path
        """
        DType.validate(output_dtype)
        if output_dtype == DType.FP32:
            if mode != RequantizeMode.NONE:
                raise ConfigurationError(f"fp32 output takes no {mode} output range")
            self.quantizer = None
        else:
            if mode not in (RequantizeMode.STATIC, RequantizeMode.DYNAMIC):
                raise ConfigurationError(
                    f"{output_dtype} output needs static or dynamic mode, got {mode}"
                )
            self.quantizer = get_quantizer(output_dtype, num_workers, vectorized)
        self.output_dtype = output_dtype
        self.mode = mode

    def requantize(
        self,
        accumulator: torch.Tensor,
        dst: Tensor,
        scale: Optional[Scale] = None,
    ) -> Optional[Scale]:
        """
        Write ``accumulator`` into ``dst`` in the output dtype.

        Args:
            accumulator: fp32 result after the epilogue
            dst: Output tensor of the same shape
            scale: Precomputed scale (static mode only)

        Returns:
            The scale that was applied, or None for an fp32 output
        """
        if tuple(accumulator.shape) != dst.shape:
            raise ShapeMismatch(
                f"Accumulator shape {list(accumulator.shape)} does not match "
                f"{dst.name} shape {list(dst.shape)}"
            )

        if self.quantizer is None:
            dst.mutable_data().copy_(accumulator)
            return None

        if self.mode == RequantizeMode.STATIC:
            if scale is None:
                raise ConfigurationError("Static re-quantization without a scale")
        else:
            scale = self.quantizer.compute_scale(accumulator)
            logger.debug(
                f"Dynamic output range for {dst.name}: "
                f"min={scale.min.item():.6g}, scale={scale.value.item():.6g}"
            )

        dst.mutable_data().copy_(self.quantizer.quantize_values(accumulator, scale))
        return scale

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(dtype={self.output_dtype}, mode={self.mode})"

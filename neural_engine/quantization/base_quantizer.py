"""
Base quantizer class that all integer quantizers inherit from.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import torch
import torch.backends.cpu
from loguru import logger

from ..core.conf import DType
from ..core.parallel import parallel_for
from .ranges import Range, Scale, per_channel_minmax, runtime_minmax


def _wide_vector_available() -> bool:
    return torch.backends.cpu.get_cpu_capability() in ("AVX2", "AVX512")


WIDE_VECTOR_AVAILABLE = _wide_vector_available()

# Rows per block on the blocked path
BLOCK_ROWS = 64


def round_half_away_from_zero(values: torch.Tensor) -> torch.Tensor:
    """Round to nearest integer, ties away from zero."""
    truncated = torch.trunc(values)
    ties = (values - truncated).abs() == 0.5
    return torch.where(ties, truncated + torch.sign(values), torch.round(values))


class BaseQuantizer(ABC):
    """
    Abstract base class for float -> integer quantization.

    Each target dtype (u8, s8) implements the scale derivation and the affine
    mapping; rounding, saturation and the two execution paths are shared.
    """

    dtype: str = ""

    def __init__(self, num_workers: Optional[int] = None, vectorized: Optional[bool] = None):
        """
        Initialize quantizer.

        Args:
            num_workers: Worker pool size for per-channel and blocked loops
            vectorized: Force the vectorized (True) or blocked (False) path;
                defaults to vectorized when wide vector instructions are available
        """
        self.qmin, self.qmax = DType.qrange(self.dtype)
        self.num_workers = num_workers
        self.vectorized = WIDE_VECTOR_AVAILABLE if vectorized is None else vectorized

    @abstractmethod
    def scale_values(
        self, values: torch.Tensor, mins: torch.Tensor, scales: torch.Tensor
    ) -> torch.Tensor:
        """
        Map float values to the unrounded integer domain.

        ``mins`` and ``scales`` are already broadcastable against ``values``.
        """
        pass

    @abstractmethod
    def unscale_values(
        self, values: torch.Tensor, mins: torch.Tensor, scales: torch.Tensor
    ) -> torch.Tensor:
        """Inverse of :meth:`scale_values` on integer values."""
        pass

    def compute_range(
        self, values: torch.Tensor, per_channel: bool = False, channel_axis: int = -1
    ) -> Range:
        if per_channel:
            return per_channel_minmax(values, channel_axis, self.num_workers)
        return runtime_minmax(values)

    def compute_scale(
        self, values: torch.Tensor, per_channel: bool = False, channel_axis: int = -1
    ) -> Scale:
        return self.compute_range(values, per_channel, channel_axis).to_scale(self.dtype)

    def quantize(
        self, values: torch.Tensor, per_channel: bool = False, channel_axis: int = -1
    ) -> Tuple[torch.Tensor, Scale]:
        """
        Derive a scale from ``values`` and quantize them with it.

        Args:
            values: Float tensor
            per_channel: One scale per slice along ``channel_axis``
            channel_axis: Channel dimension for per-channel mode

        Returns:
            Tuple of (quantized tensor, scale)
        """
        self.validate_input(values)
        scale = self.compute_scale(values, per_channel, channel_axis)
        logger.debug(
            f"{self}: quantizing {list(values.shape)} with {scale.channels} scale(s)"
        )
        return self.quantize_values(values, scale, channel_axis), scale

    def _broadcast(
        self, scale: Scale, ndim: int, channel_axis: int
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        if scale.channels == 1 or ndim == 0:
            return scale.min.reshape(()), scale.value.reshape(())
        view = [1] * ndim
        view[channel_axis] = scale.channels
        return scale.min.reshape(view), scale.value.reshape(view)

    def _map(self, values, mins, scales) -> torch.Tensor:
        scaled = self.scale_values(values.to(torch.float32), mins, scales)
        rounded = round_half_away_from_zero(scaled)
        return rounded.clamp_(self.qmin, self.qmax).to(DType.to_torch(self.dtype))

    def quantize_values(
        self, values: torch.Tensor, scale: Scale, channel_axis: int = -1
    ) -> torch.Tensor:
        """
        Quantize with a known scale. Out-of-range values saturate silently.

        The vectorized and blocked paths apply the same float32 operations
        element by element, so their integer outputs are identical.
        """
        mins, scales = self._broadcast(scale, values.dim(), channel_axis)
        if self.vectorized or values.dim() == 0:
            return self._map(values, mins, scales)

        output = torch.empty(values.shape, dtype=DType.to_torch(self.dtype))
        rows = values.shape[0]
        sliced = mins.dim() > 0 and mins.shape[0] > 1

        def quantize_block(start: int, stop: int):
            for lo in range(start, stop, BLOCK_ROWS):
                hi = min(lo + BLOCK_ROWS, stop)
                block_mins = mins[lo:hi] if sliced else mins
                block_scales = scales[lo:hi] if sliced else scales
                output[lo:hi] = self._map(values[lo:hi], block_mins, block_scales)

        parallel_for(rows, quantize_block, self.num_workers)
        return output

    def dequantize_values(
        self, quantized: torch.Tensor, scale: Scale, channel_axis: int = -1
    ) -> torch.Tensor:
        """Map integer values back to float32."""
        mins, scales = self._broadcast(scale, quantized.dim(), channel_axis)
        return self.unscale_values(quantized.to(torch.float32), mins, scales)

    def validate_input(self, values: torch.Tensor):
        """
        Validate a float tensor before quantization.

        Raises:
            ValueError: If the tensor is empty or holds NaN/Inf values
        """
        if values.numel() == 0:
            raise ValueError("Cannot quantize an empty tensor")

        if torch.isnan(values).any():
            raise ValueError("Tensor contains NaN values")

        if torch.isinf(values).any():
            raise ValueError("Tensor contains Inf values")

    def __repr__(self) -> str:
        path = "vectorized" if self.vectorized else "blocked"
        return f"{self.__class__.__name__}(dtype={self.dtype}, path={path})"


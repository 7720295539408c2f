"""
Value ranges and quantization scales.

A Range records observed extremes of a float tensor. A Scale is what a Range
becomes once the scale for a target dtype has been derived from it: the
multiplier applied before rounding, together with the min that serves as the
zero point for asymmetric (u8) quantization. The two are separate types; a
Range is only ever turned into a Scale through :meth:`Range.to_scale`.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import torch
from loguru import logger

from ..core.allocator import MemoryAllocator
from ..core.conf import DType, TensorConfig
from ..core.errors import ShapeMismatch
from ..core.parallel import parallel_for
from ..core.tensor import Tensor

# Lower bound for a range width before dividing by it
MIN_RANGE = 1e-10


@dataclass(frozen=True, eq=False)
class Range:
    """Per-tensor (length 1) or per-channel (length C) min/max pair."""

    min: torch.Tensor
    max: torch.Tensor

    def __post_init__(self):
        mins = torch.as_tensor(self.min, dtype=torch.float32).reshape(-1)
        maxs = torch.as_tensor(self.max, dtype=torch.float32).reshape(-1)
        if mins.shape != maxs.shape:
            raise ShapeMismatch(
                f"Range min has {mins.numel()} entries, max has {maxs.numel()}"
            )
        if bool((mins > maxs).any()):
            raise ValueError("Range min must not exceed max")
        object.__setattr__(self, "min", mins)
        object.__setattr__(self, "max", maxs)

    @property
    def channels(self) -> int:
        return self.min.numel()

    def to_scale(self, dtype: str) -> "Scale":
        """
        Derive the scale for ``dtype``.

        - u8: 255 / (max - min), asymmetric around min
        - s8: 127 / max(|min|, |max|), symmetric
        - fp32: 1
        """
        if dtype == DType.U8:
            width = self.max - self.min
            degenerate = width < MIN_RANGE
            values = 255.0 / width.clamp(min=MIN_RANGE)
        elif dtype == DType.S8:
            abs_max = torch.maximum(self.min.abs(), self.max.abs())
            degenerate = abs_max < MIN_RANGE
            values = 127.0 / abs_max.clamp(min=MIN_RANGE)
        elif dtype == DType.FP32:
            return Scale(self.min.clone(), torch.ones_like(self.min), dtype)
        else:
            raise ValueError(f"Cannot derive a scale for dtype {dtype}")

        if bool(degenerate.any()):
            logger.warning(
                f"{int(degenerate.sum())} degenerate range(s) for {dtype}, "
                f"width clamped to {MIN_RANGE}"
            )
        return Scale(self.min.clone(), values.to(torch.float32), dtype)


@dataclass(frozen=True, eq=False)
class Scale:
    """Derived quantization parameters for one dtype."""

    min: torch.Tensor
    value: torch.Tensor
    dtype: str

    def __post_init__(self):
        mins = torch.as_tensor(self.min, dtype=torch.float32).reshape(-1)
        values = torch.as_tensor(self.value, dtype=torch.float32).reshape(-1)
        if mins.shape != values.shape:
            raise ShapeMismatch(
                f"Scale min has {mins.numel()} entries, value has {values.numel()}"
            )
        object.__setattr__(self, "min", mins)
        object.__setattr__(self, "value", values)
        DType.validate(self.dtype)

    @property
    def channels(self) -> int:
        return self.value.numel()

    @property
    def zero_point(self) -> torch.Tensor:
        """Float value stored as integer 0 (u8 only; zero for symmetric types)."""
        if self.dtype == DType.U8:
            return self.min
        return torch.zeros_like(self.min)

    @classmethod
    def from_tensors(cls, min_tensor: Tensor, scale_tensor: Tensor, dtype: str) -> "Scale":
        """Read a scale from a pair of ``<name>_min`` / ``<name>_scale`` side tensors."""
        return cls(min_tensor.data().clone(), scale_tensor.data().clone(), dtype)

    def write_tensors(self, min_tensor: Tensor, scale_tensor: Tensor):
        """Store into existing side tensors, resizing them to the channel count."""
        for tensor, values in ((min_tensor, self.min), (scale_tensor, self.value)):
            tensor.set_shape((self.channels,))
            tensor.mutable_data().copy_(values)

    def to_tensors(
        self, name: str, allocator: Optional[MemoryAllocator] = None
    ) -> Tuple[Tensor, Tensor]:
        """Create ``<name>_min`` and ``<name>_scale`` tensors with a life of 1."""
        tensors = []
        for suffix in ("min", "scale"):
            tensor = Tensor(
                TensorConfig(f"{name}_{suffix}", (self.channels,), DType.FP32), allocator
            )
            tensor.add_tensor_life(1)
            tensors.append(tensor)
        self.write_tensors(*tensors)
        return tensors[0], tensors[1]

    def __repr__(self) -> str:
        return f"Scale(dtype={self.dtype}, channels={self.channels})"


def runtime_minmax(values: torch.Tensor) -> Range:
    """Global min/max of a tensor in one reduction pass."""
    lo, hi = torch.aminmax(values.to(torch.float32))
    return Range(lo.reshape(1), hi.reshape(1))


def per_channel_minmax(
    values: torch.Tensor,
    channel_axis: int = -1,
    num_workers: Optional[int] = None,
) -> Range:
    """
    Min/max of every slice along ``channel_axis``.

    Channels are reduced independently across a worker pool; the result does
    not depend on how the channels are partitioned.
    """
    channels_first = values.to(torch.float32).movedim(channel_axis, 0)
    channels_first = channels_first.reshape(channels_first.shape[0], -1)
    num_channels = channels_first.shape[0]
    mins = torch.empty(num_channels, dtype=torch.float32)
    maxs = torch.empty(num_channels, dtype=torch.float32)

    def reduce_block(start: int, stop: int):
        lo, hi = torch.aminmax(channels_first[start:stop], dim=1)
        mins[start:stop] = lo
        maxs[start:stop] = hi

    parallel_for(num_channels, reduce_block, num_workers)
    return Range(mins, maxs)

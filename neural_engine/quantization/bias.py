"""
Bias re-biasing for an asymmetrically quantized activation.

A u8 activation stores ``(x - min) * scale``, so ``x = q / scale + min``.
Expanding ``x @ W`` leaves a term ``min * sum_k W[k, n]`` per output channel.
Folding that term into the bias, already moved to the integer accumulator
domain, lets the integer matmul treat the activation as if it had no shift.
"""

from typing import Optional, Union

import torch

from ..core.errors import ShapeMismatch
from ..core.parallel import parallel_for

ScalarLike = Union[float, torch.Tensor]


def weight_compensation(
    weight: torch.Tensor,
    transpose_weight: bool = False,
    num_workers: Optional[int] = None,
) -> torch.Tensor:
    """
    Sum the float weight over the contraction dimension, per output channel.

    Args:
        weight: Float weight stored K x N, or N x K when ``transpose_weight``
        transpose_weight: Weight is stored N x K
        num_workers: Worker pool size; channels are summed independently

    Returns:
        float32 tensor of length N
    """
    if weight.dim() != 2:
        raise ShapeMismatch(f"Weight must be 2D, got {weight.dim()}D")
    per_channel = weight if transpose_weight else weight.t()
    per_channel = per_channel.to(torch.float32)
    compensation = torch.empty(per_channel.shape[0], dtype=torch.float32)

    def sum_block(start: int, stop: int):
        compensation[start:stop] = per_channel[start:stop].sum(dim=1)

    parallel_for(per_channel.shape[0], sum_block, num_workers)
    return compensation


def rebias(
    origin_bias: torch.Tensor,
    compensation: torch.Tensor,
    weight_scales: torch.Tensor,
    src_zero_point: ScalarLike,
    src_scale: ScalarLike,
) -> torch.Tensor:
    """
    Combine the bias with precomputed weight compensation.

    bias_out[n] = (origin_bias[n] + compensation[n] * src_zero_point) * src_scale * weight_scales[n]

    Args:
        origin_bias: float32 bias of length N
        compensation: Output of :func:`weight_compensation`
        weight_scales: Weight scales, length 1 or N
        src_zero_point: Activation min (0 for a symmetric activation)
        src_scale: Activation scale

    Returns:
        float32 tensor of length N
    """
    num_channels = compensation.numel()
    bias = origin_bias.to(torch.float32).reshape(-1)
    if bias.numel() != num_channels:
        raise ShapeMismatch(
            f"Bias has {bias.numel()} entries, weight has {num_channels} output channels"
        )
    weight_scales = torch.as_tensor(weight_scales, dtype=torch.float32).reshape(-1)
    if weight_scales.numel() not in (1, num_channels):
        raise ShapeMismatch(
            f"{weight_scales.numel()} weight scales for {num_channels} output channels"
        )
    zero_point = torch.as_tensor(src_zero_point, dtype=torch.float32).reshape(())
    src_scale = torch.as_tensor(src_scale, dtype=torch.float32).reshape(())

    return (bias + compensation * zero_point) * src_scale * weight_scales


def compensate_bias(
    origin_bias: torch.Tensor,
    weight: torch.Tensor,
    weight_scales: torch.Tensor,
    src_zero_point: ScalarLike,
    src_scale: ScalarLike,
    transpose_weight: bool = False,
    num_workers: Optional[int] = None,
) -> torch.Tensor:
    """
    Move the bias into the integer accumulator domain with zero-point compensation.

    Args:
        origin_bias: float32 bias of length N
        weight: Float-domain weight (see :func:`weight_compensation`)
        weight_scales: Weight scales, length 1 or N
        src_zero_point: Activation min (0 for a symmetric activation)
        src_scale: Activation scale
        transpose_weight: Weight is stored N x K
        num_workers: Worker pool size

    Returns:
        float32 tensor of length N
    """
    compensation = weight_compensation(weight, transpose_weight, num_workers)
    return rebias(origin_bias, compensation, weight_scales, src_zero_point, src_scale)

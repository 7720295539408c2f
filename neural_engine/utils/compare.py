"""Tolerance comparison of operator outputs against a reference."""

from typing import Union

import torch
from loguru import logger

from ..core.tensor import Tensor

TensorLike = Union[Tensor, torch.Tensor]


def _values(tensor: TensorLike) -> torch.Tensor:
    return tensor.data() if isinstance(tensor, Tensor) else tensor


def max_abs_error(actual: TensorLike, expected: TensorLike) -> float:
    a = _values(actual).to(torch.float64)
    b = _values(expected).to(torch.float64)
    return (a - b).abs().max().item()


def compare_data(actual: TensorLike, expected: TensorLike, tolerance: float) -> bool:
    """
    Compare two tensors.

    Integer tensors match when every element differs by at most ``tolerance``
    counts. Float tensors match when ``max|a - b| <= tolerance * max|b|``.
    """
    a, b = _values(actual), _values(expected)
    if a.numel() != b.numel():
        logger.warning(f"Size mismatch: {a.numel()} vs {b.numel()} elements")
        return False
    if a.numel() == 0:
        return True

    error = max_abs_error(a.reshape(-1), b.reshape(-1))
    if b.is_floating_point():
        bound = tolerance * b.to(torch.float64).abs().max().item()
    else:
        bound = tolerance
    matched = error <= bound
    logger.debug(f"max |a - b| = {error:.6g}, bound = {bound:.6g}, matched = {matched}")
    return matched

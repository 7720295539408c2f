"""Case generation and result comparison helpers."""

from .case_builder import InnerProductCase, build_case, make_fp32_tensor
from .compare import compare_data, max_abs_error

__all__ = [
    "InnerProductCase",
    "build_case",
    "make_fp32_tensor",
    "compare_data",
    "max_abs_error",
]

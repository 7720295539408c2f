"""
Dense matmul primitive behind the inner-product operator.

The operator only sets up operand layout, scales and the epilogue; the
multiply-accumulate itself is delegated to a MatmulEngine. Engines are looked
up by name in MATMUL_ENGINE_REGISTRY, so a stub engine can stand in for the
real one in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import torch
from loguru import logger

from ..core.errors import ComputeError
from ..core.registry import ACTIVATION_REGISTRY, MATMUL_ENGINE_REGISTRY


@dataclass(frozen=True)
class PostOp:
    """One epilogue step, applied in list order after bias and output scales."""

    kind: str
    algorithm: str = ""
    scale: float = 1.0

    SUM = "sum"
    ELTWISE = "eltwise"

    @classmethod
    def sum(cls, scale: float = 1.0) -> "PostOp":
        """Accumulate onto the previous contents of the destination buffer."""
        return cls(cls.SUM, scale=scale)

    @classmethod
    def eltwise(cls, algorithm: str) -> "PostOp":
        """Apply a registered activation elementwise."""
        return cls(cls.ELTWISE, algorithm=algorithm)


class MatmulEngine(ABC):
    """Opaque matmul capability with a bias / scale / post-op epilogue."""

    name: str = ""

    @abstractmethod
    def execute(
        self,
        src: torch.Tensor,
        weight: torch.Tensor,
        dst: torch.Tensor,
        bias: Optional[torch.Tensor] = None,
        output_scales: Optional[torch.Tensor] = None,
        post_ops: Sequence[PostOp] = (),
        transpose_weight: bool = False,
    ):
        """
        Compute ``dst = post_ops((src @ weight + bias) * output_scales)`` in place.

        Args:
            src: M x K operand (fp32 or 8-bit integer)
            weight: K x N operand, or N x K when ``transpose_weight``
            dst: M x N fp32 buffer; a sum post-op reads its previous contents
            bias: Length-N bias in the accumulator domain
            output_scales: Length-1 or length-N multipliers applied to the accumulator
            post_ops: Epilogue steps
            transpose_weight: Read ``weight`` transposed

        Raises:
            ComputeError: If the primitive fails
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"


@MATMUL_ENGINE_REGISTRY.register("torch")
class TorchMatmulEngine(MatmulEngine):
    """
    torch.matmul on the CPU.

    Integer operands are widened to float64, where every u8 x s8 dot product of
    realistic depth is exact, so the accumulator equals the int32 result.
    """

    name = "torch"

    def __init__(self, accumulate_dtype: torch.dtype = torch.float64):
        self.accumulate_dtype = accumulate_dtype

    def execute(
        self,
        src,
        weight,
        dst,
        bias=None,
        output_scales=None,
        post_ops=(),
        transpose_weight=False,
    ):
        acc_dtype = self.accumulate_dtype
        try:
            weight = weight.t() if transpose_weight else weight
            acc = torch.matmul(src.to(acc_dtype), weight.to(acc_dtype))
            if bias is not None:
                acc += bias.to(acc_dtype)
            if output_scales is not None:
                acc *= output_scales.to(acc_dtype)
            result = acc.to(torch.float32)

            for post_op in post_ops:
                if post_op.kind == PostOp.SUM:
                    result += post_op.scale * dst
                elif post_op.kind == PostOp.ELTWISE:
                    result = ACTIVATION_REGISTRY.get(post_op.algorithm)(result)
                else:
                    raise ComputeError(f"Unsupported post-op: {post_op.kind}")

            dst.copy_(result)
        except ComputeError:
            raise
        except RuntimeError as e:
            logger.error(f"{self.name} matmul failed: {e}")
            raise ComputeError(f"{self.name} matmul failed: {e}") from e

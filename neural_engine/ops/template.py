"""
Operator lifecycle shared by all operators.

    CONSTRUCTED --prepare/reshape--> SHAPED --allocate--> READY --forward--> EXECUTED

``reshape()`` covers both SHAPED and READY: it infers output shapes, resolves
everything that depends only on shapes and constant operands, then obtains
the buffers. ``forward()`` can be repeated for inputs of the same shapes.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from ..core.allocator import MemoryAllocator
from ..core.conf import OperatorConfig
from ..core.errors import ConfigurationError, ShapeMismatch
from ..core.tensor import Tensor


class OperatorState(Enum):
    CONSTRUCTED = "constructed"
    SHAPED = "shaped"
    READY = "ready"
    EXECUTED = "executed"


class Operator(ABC):
    """Base class for operators driven by a graph executor."""

    def __init__(self, conf: OperatorConfig, allocator: Optional[MemoryAllocator] = None):
        """
        Args:
            conf: Operator configuration, shared with other instances
            allocator: Buffer source for scratch tensors
        """
        self.conf = conf
        self.name = conf.name
        self.attrs = conf.attrs
        self.allocator = allocator
        self.state = OperatorState.CONSTRUCTED
        self._prepared = False
        self._input_shapes: Optional[List[Tuple[int, ...]]] = None

    def prepare(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        """
        Validate attributes and operand sets against the configuration.

        Raises:
            ConfigurationError: On missing/unknown attributes or operand sets
                that do not match the declared mode
        """
        if len(inputs) != len(self.conf.inputs):
            raise ConfigurationError(
                f"{self.name}: {len(inputs)} inputs given, "
                f"{len(self.conf.inputs)} configured"
            )
        if len(outputs) != len(self.conf.outputs):
            raise ConfigurationError(
                f"{self.name}: {len(outputs)} outputs given, "
                f"{len(self.conf.outputs)} configured"
            )
        self._prepare(inputs, outputs)
        self._prepared = True
        logger.info(f"Prepared {self}")

    def reshape(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        """
        Infer output shapes, then obtain buffers.

        Raises:
            ShapeMismatch: If operand dimensions disagree
            AllocationError: If a buffer cannot be obtained
        """
        if not self._prepared:
            self.prepare(inputs, outputs)
        self._reshape(inputs, outputs)
        self._input_shapes = [tensor.shape for tensor in inputs]
        self.state = OperatorState.SHAPED

        self._allocate(inputs, outputs)
        self.state = OperatorState.READY
        logger.debug(f"{self.name}: output shapes {[list(t.shape) for t in outputs]}")

    def forward(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        """
        Execute one invocation.

        Raises:
            ConfigurationError: If called before reshape()
            ShapeMismatch: If input shapes changed since reshape()
            ComputeError: If the delegated primitive fails
        """
        if self.state not in (OperatorState.READY, OperatorState.EXECUTED):
            raise ConfigurationError(
                f"{self.name}: forward() called in state {self.state.value}"
            )
        shapes = [tensor.shape for tensor in inputs]
        if shapes != self._input_shapes:
            raise ShapeMismatch(
                f"{self.name}: input shapes changed from {self._input_shapes} "
                f"to {shapes}; call reshape() first"
            )
        self._forward(inputs, outputs)
        self.state = OperatorState.EXECUTED

    def run(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        """prepare + reshape + forward."""
        self.prepare(inputs, outputs)
        self.reshape(inputs, outputs)
        self.forward(inputs, outputs)

    @abstractmethod
    def _prepare(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        pass

    @abstractmethod
    def _reshape(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        pass

    def _allocate(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        for tensor in outputs:
            tensor.mutable_data()

    @abstractmethod
    def _forward(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        pass

    def release(self):
        """Give back scratch buffers held by the operator."""
        self.state = OperatorState.CONSTRUCTED
        self._input_shapes = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, state={self.state.value})"

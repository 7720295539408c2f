"""
Tensor: a typed, shaped CPU buffer with a life counter.

The buffer is obtained lazily on the first ``mutable_data()`` call and only
once the tensor has been given a life. When ``unref_data()`` brings the life
count back to zero the buffer goes back to the allocator for reuse.
"""

from typing import Optional, Sequence, Tuple

import torch
from loguru import logger

from .allocator import MemoryAllocator
from .conf import DType, TensorConfig
from .errors import AllocationError


class Tensor:
    """Typed tensor owned by exactly one producer at a time."""

    def __init__(
        self,
        config: Optional[TensorConfig] = None,
        allocator: Optional[MemoryAllocator] = None,
        *,
        name: str = "",
        shape: Sequence[int] = (),
        dtype: str = DType.FP32,
    ):
        """
        Args:
            config: Descriptor to build from; overrides name/shape/dtype when given
            allocator: Buffer source; buffers are allocated directly when None
            name: Tensor name
            shape: Tensor shape
            dtype: Element type tag (see :class:`DType`)
        """
        if config is not None:
            name, shape, dtype = config.name, config.shape, config.dtype
        self.name = name
        self.shape: Tuple[int, ...] = tuple(int(d) for d in shape)
        self.dtype = DType.validate(dtype)
        self.allocator = allocator
        self.life = 0
        self._buffer: Optional[torch.Tensor] = None

    @classmethod
    def from_torch(
        cls,
        name: str,
        values: torch.Tensor,
        dtype: Optional[str] = None,
        allocator: Optional[MemoryAllocator] = None,
        life: int = 1,
    ) -> "Tensor":
        """Create a tensor holding a copy of ``values``."""
        if dtype is None:
            dtype = next(
                (tag for tag in DType.all() if DType.to_torch(tag) == values.dtype),
                None,
            )
            if dtype is None:
                raise ValueError(f"No dtype tag for torch dtype {values.dtype}")
        tensor = cls(TensorConfig(name, tuple(values.shape), dtype), allocator)
        tensor.add_tensor_life(life)
        tensor.mutable_data().copy_(values.to(DType.to_torch(dtype)))
        return tensor

    @property
    def torch_dtype(self) -> torch.dtype:
        return DType.to_torch(self.dtype)

    @property
    def has_data(self) -> bool:
        return self._buffer is not None

    def size(self) -> int:
        n = 1
        for d in self.shape:
            n *= d
        return n

    def set_shape(self, shape: Sequence[int]):
        """
        Change the shape; a buffer of the wrong size is dropped.

        The buffer only goes back to the allocator pool when the tensor has no
        life left. Otherwise views taken before the resize may still be in use,
        so the reference is dropped without pooling it.
        """
        shape = tuple(int(d) for d in shape)
        if shape == self.shape:
            return
        self.shape = shape
        if self._buffer is None or self._buffer.numel() == self.size():
            return
        if self.life > 0:
            if self.allocator is not None:
                self.allocator.discard(self._buffer)
            self._buffer = None
        else:
            self._release()

    def add_tensor_life(self, count: int):
        self.life += count

    def unref_data(self, count: int = 1):
        """
        Decrease the life count; the buffer is released when it reaches zero.

        Args:
            count: Number of consumers that are done with this tensor
        """
        if count > self.life:
            raise ValueError(
                f"Tensor {self.name} unreferenced {count} times with life {self.life}"
            )
        self.life -= count
        if self.life == 0:
            self._release()

    def _release(self):
        if self._buffer is None:
            return
        if self.allocator is not None:
            self.allocator.release(self._buffer)
        self._buffer = None

    def mutable_data(self) -> torch.Tensor:
        """
        Get the writable buffer, allocating it on first use.

        Raises:
            AllocationError: If the tensor has no life yet or the buffer cannot be obtained
        """
        if self._buffer is None:
            if self.life <= 0:
                raise AllocationError(
                    f"Tensor {self.name} has no life; call add_tensor_life() first"
                )
            if self.allocator is not None:
                self._buffer = self.allocator.get_buffer(self.size(), self.torch_dtype)
            else:
                try:
                    self._buffer = torch.empty(self.size(), dtype=self.torch_dtype)
                except RuntimeError as e:
                    raise AllocationError(
                        f"Failed to allocate tensor {self.name}: {e}"
                    ) from e
        return self._buffer.view(self.shape)

    def data(self) -> torch.Tensor:
        """Get the buffer for reading."""
        if self._buffer is None:
            raise AllocationError(f"Tensor {self.name} has no buffer")
        return self._buffer.view(self.shape)

    def print(self, limit: int = 8):
        """Dump a short description of the tensor at DEBUG level."""
        preview = "<no buffer>"
        if self._buffer is not None:
            preview = self._buffer[:limit].tolist()
        logger.debug(
            f"Tensor {self.name}: shape={list(self.shape)}, dtype={self.dtype}, "
            f"life={self.life}, data={preview}"
        )

    def __repr__(self) -> str:
        return (
            f"Tensor(name={self.name}, shape={list(self.shape)}, "
            f"dtype={self.dtype}, life={self.life})"
        )

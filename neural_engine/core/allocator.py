"""
Explicit buffer allocator with reuse of released buffers.

The allocator is constructed by the caller at start-up, passed to every
Tensor that needs a buffer, and closed at shutdown. Buffers whose owning
tensor's life count dropped to zero are pooled by (dtype, numel) and handed
out again on the next matching request.
"""

from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import torch
from loguru import logger

from .errors import AllocationError


class MemoryAllocator:
    """Pooling allocator for CPU tensor buffers."""

    def __init__(self, max_bytes: Optional[int] = None, reuse: bool = True):
        """
        Args:
            max_bytes: Budget for live buffers (pooled buffers included); None for unlimited
            reuse: Hand out released buffers again instead of freeing them
        """
        self.max_bytes = max_bytes
        self.reuse = reuse
        self._pool: Dict[Tuple[torch.dtype, int], List[torch.Tensor]] = defaultdict(list)
        self._closed = False
        self.bytes_reserved = 0
        self.alloc_count = 0
        self.reuse_count = 0
        logger.info(
            f"Initialized {self.__class__.__name__}"
            f"(max_bytes={max_bytes}, reuse={reuse})"
        )

    @staticmethod
    def _nbytes(numel: int, dtype: torch.dtype) -> int:
        return numel * torch.empty((), dtype=dtype).element_size()

    def get_buffer(self, numel: int, dtype: torch.dtype) -> torch.Tensor:
        """
        Obtain a flat buffer of ``numel`` elements.

        Raises:
            AllocationError: If the allocator is closed, the budget is exceeded
                or torch cannot allocate the memory
        """
        if self._closed:
            raise AllocationError("Allocator is closed")

        key = (dtype, int(numel))
        if self.reuse and self._pool[key]:
            self.reuse_count += 1
            logger.debug(f"Reusing pooled buffer {key}")
            return self._pool[key].pop()

        nbytes = self._nbytes(numel, dtype)
        if self.max_bytes is not None and self.bytes_reserved + nbytes > self.max_bytes:
            # Pooled buffers of other sizes still count against the budget
            self._drain_pool()
            if self.bytes_reserved + nbytes > self.max_bytes:
                raise AllocationError(
                    f"Cannot allocate {nbytes} bytes: {self.bytes_reserved} of "
                    f"{self.max_bytes} bytes already reserved"
                )

        try:
            buffer = torch.empty(int(numel), dtype=dtype)
        except RuntimeError as e:
            raise AllocationError(f"Failed to allocate {nbytes} bytes: {e}") from e

        self.bytes_reserved += nbytes
        self.alloc_count += 1
        return buffer

    def release(self, buffer: torch.Tensor):
        """Return a buffer obtained from :meth:`get_buffer`."""
        if self._closed:
            return
        if self.reuse:
            self._pool[(buffer.dtype, buffer.numel())].append(buffer)
        else:
            self.bytes_reserved -= self._nbytes(buffer.numel(), buffer.dtype)

    def discard(self, buffer: torch.Tensor):
        """Stop accounting for a buffer that must not be handed out again."""
        if self._closed:
            return
        self.bytes_reserved -= self._nbytes(buffer.numel(), buffer.dtype)

    def _drain_pool(self):
        for (dtype, numel), buffers in self._pool.items():
            self.bytes_reserved -= len(buffers) * self._nbytes(numel, dtype)
        self._pool.clear()

    @property
    def pooled_buffers(self) -> int:
        return sum(len(buffers) for buffers in self._pool.values())

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        """Drop every pooled buffer; further requests fail."""
        if self._closed:
            return
        self._drain_pool()
        self._closed = True
        logger.info(
            f"Closed allocator: {self.alloc_count} allocations, "
            f"{self.reuse_count} reuses"
        )

    def __enter__(self) -> "MemoryAllocator":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"reserved={self.bytes_reserved}, pooled={self.pooled_buffers})"
        )

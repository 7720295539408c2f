"""Worker pool for loops over independent channels or rows."""

import concurrent.futures
import os
from typing import Callable, List, Optional, Tuple

NUM_WORKERS_ENV = "NEURAL_ENGINE_NUM_WORKERS"


def default_num_workers() -> int:
    """Worker count from NEURAL_ENGINE_NUM_WORKERS, else the CPU count."""
    value = os.environ.get(NUM_WORKERS_ENV)
    if value:
        return max(1, int(value))
    return os.cpu_count() or 1


def split_range(total: int, parts: int) -> List[Tuple[int, int]]:
    """Split ``range(total)`` into at most ``parts`` contiguous [start, stop) blocks."""
    parts = max(1, min(parts, total))
    base, extra = divmod(total, parts)
    blocks = []
    start = 0
    for i in range(parts):
        stop = start + base + (1 if i < extra else 0)
        if stop > start:
            blocks.append((start, stop))
        start = stop
    return blocks


def parallel_for(
    total: int,
    fn: Callable[[int, int], None],
    num_workers: Optional[int] = None,
):
    """
    Run ``fn(start, stop)`` over contiguous blocks of ``range(total)``.

    Each block must only read its own slice of the inputs and write its own
    slice of the outputs, so the result does not depend on the partitioning.
    The first exception raised by a worker is re-raised here.

    Args:
        total: Number of independent items
        fn: Block function
        num_workers: Pool size; defaults to :func:`default_num_workers`
    """
    if total <= 0:
        return
    num_workers = num_workers or default_num_workers()
    blocks = split_range(total, num_workers)
    if len(blocks) == 1:
        fn(*blocks[0])
        return

    with concurrent.futures.ThreadPoolExecutor(max_workers=len(blocks)) as executor:
        futures = [executor.submit(fn, start, stop) for start, stop in blocks]
        for future in concurrent.futures.as_completed(futures):
            future.result()

"""
Bounded Batch Workers
=====================

Runs per-entity work with bounded parallelism. A failure on one item is
logged and counted; sibling items keep running.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class BatchResult:
    """Outcome counts for one batch run."""
    succeeded: int = 0
    failed: int = 0
    results: List[Any] = field(default_factory=list)
    failed_keys: List[Any] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


def _default_key(item: Any) -> Any:
    return getattr(item, "id", None)


async def process_isolated(
    items: Iterable[T],
    handler: Callable[[T], Awaitable[Any]],
    *,
    operation: str,
    max_concurrency: int = 5,
    key: Optional[Callable[[T], Any]] = None,
) -> BatchResult:
    """
    Run ``handler`` over ``items`` with at most ``max_concurrency`` in flight.

    Results are kept in input order. Exceptions raised by ``handler`` are
    logged with the item key and never cancel the remaining items.
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be at least 1")

    key = key or _default_key
    semaphore = asyncio.Semaphore(max_concurrency)

    async def guarded(item: T) -> tuple[bool, Any]:
        async with semaphore:
            try:
                return True, await handler(item)
            except Exception as e:
                logger.error(
                    f"{operation} failed",
                    extra={
                        "operation": operation,
                        "item": key(item),
                        "error_type": type(e).__name__,
                        "error": str(e),
                    },
                    exc_info=True,
                )
                return False, None

    items = list(items)
    outcomes = await asyncio.gather(*[guarded(item) for item in items])

    batch = BatchResult()
    for item, (ok, value) in zip(items, outcomes):
        if ok:
            batch.succeeded += 1
            batch.results.append(value)
        else:
            batch.failed += 1
            batch.failed_keys.append(key(item))
    return batch

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from license_resolver.schemas.outcomes import ResolutionOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class Completion(Generic[T, R]):
    completed: int
    total: int
    index: int
    item: T
    result: R


async def map_with_concurrency(
    items: Sequence[T],
    concurrency: int,
    mapper: Callable[[T], Awaitable[R]],
    on_complete: Callable[[Completion[T, R]], None] | None = None,
) -> list[R]:
    """Run ``mapper`` over ``items`` with at most ``concurrency`` in flight.

    Workers claim the next index from a shared cursor, so each item is mapped
    exactly once. Results keep the input order regardless of completion order.
    """
    if concurrency <= 0:
        raise ValueError("concurrency must be a positive integer")

    results: list[R | None] = [None] * len(items)
    cursor = 0
    completed = 0

    async def worker() -> None:
        nonlocal cursor, completed
        while True:
            index = cursor
            cursor += 1
            if index >= len(items):
                return
            result = await mapper(items[index])
            results[index] = result
            completed += 1
            if on_complete is not None:
                on_complete(Completion(completed, len(items), index, items[index], result))

    worker_count = min(concurrency, len(items))
    await asyncio.gather(*(worker() for _ in range(worker_count)))
    return results  # type: ignore[return-value]


@dataclass(slots=True)
class ProgressSnapshot:
    completed: int
    total: int
    mapped: int
    unresolved: int
    elapsed_seconds: float

    @property
    def percent(self) -> float:
        return (self.completed / self.total * 100.0) if self.total else 100.0


class ProgressTracker:
    """Counts mapped/unresolved outcomes and logs every ``every`` completions."""

    def __init__(
        self,
        *,
        every: int,
        listener: Callable[[ProgressSnapshot], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.every = max(1, every)
        self.listener = listener
        self.clock = clock
        self.started_at = clock()
        self.mapped = 0
        self.unresolved = 0

    def __call__(self, completion: Completion[object, ResolutionOutcome]) -> None:
        if completion.result.mapped is not None:
            self.mapped += 1
        else:
            self.unresolved += 1

        snapshot = ProgressSnapshot(
            completed=completion.completed,
            total=completion.total,
            mapped=self.mapped,
            unresolved=self.unresolved,
            elapsed_seconds=self.clock() - self.started_at,
        )
        if self.listener is not None:
            self.listener(snapshot)
        if snapshot.completed % self.every == 0 or snapshot.completed == snapshot.total:
            logger.info(
                "[progress] %s/%s (%.1f%%) mapped=%s unresolved=%s elapsed=%ss",
                snapshot.completed,
                snapshot.total,
                snapshot.percent,
                snapshot.mapped,
                snapshot.unresolved,
                int(snapshot.elapsed_seconds),
            )

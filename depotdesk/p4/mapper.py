"""Bounded fan-out — run an async transform over many items with a cap."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def bounded_map(
    items: Sequence[T],
    transform: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[R]:
    """Apply *transform* to every item with at most *limit* calls in flight.

    ``result[i]`` always belongs to ``items[i]`` whatever the completion
    order.  A failing transform propagates unchanged; the remaining
    workers are cancelled.

    Parameters
    ----------
    items:
        Inputs, consumed through a shared cursor.
    transform:
        Coroutine function applied to each item.
    limit:
        Maximum number of concurrent transforms; must be positive.
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")

    count = len(items)
    results: list[R | None] = [None] * count
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while cursor < count:
            index = cursor
            cursor += 1
            results[index] = await transform(items[index])

    workers = [asyncio.ensure_future(worker()) for _ in range(min(count, limit))]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise

    return results  # type: ignore[return-value]

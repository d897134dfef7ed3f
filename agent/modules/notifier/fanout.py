"""Concurrent fan-out with per-item outcome classification."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class SendOutcome(str, Enum):
    SENT = "sent"          # send returned True
    NOT_SENT = "not_sent"  # send returned False (deliberate non-send)
    FAILED = "failed"      # send raised


@dataclass
class ItemResult(Generic[T]):
    item: T
    outcome: SendOutcome
    error: str | None = None


async def fan_out(
    items: Sequence[T],
    send: Callable[[T], Awaitable[bool]],
    concurrency: int = 10,
) -> list[ItemResult[T]]:
    """Run ``send`` for every item concurrently and wait for all of them.

    At most ``concurrency`` sends are in flight. One item failing never
    cancels or skips another; results come back in input order.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    sem = asyncio.Semaphore(concurrency)

    async def _guarded(item: T) -> bool:
        async with sem:
            return await send(item)

    raw = await asyncio.gather(*[_guarded(i) for i in items], return_exceptions=True)

    results: list[ItemResult[T]] = []
    for item, value in zip(items, raw):
        if isinstance(value, BaseException):
            if not isinstance(value, Exception):
                # Cancellation / interpreter exit must not be swallowed
                raise value
            logger.warning("fan_out_item_failed", error=str(value), error_type=type(value).__name__)
            results.append(ItemResult(item=item, outcome=SendOutcome.FAILED, error=str(value)))
        elif value:
            results.append(ItemResult(item=item, outcome=SendOutcome.SENT))
        else:
            results.append(ItemResult(item=item, outcome=SendOutcome.NOT_SENT))
    return results

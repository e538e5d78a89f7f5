"""Concurrent fan-out helpers for sibling aggregations."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List


async def gather_all(*aws: Awaitable[Any]) -> List[Any]:
    """
    Run awaitables concurrently and return their results in argument order.

    Unlike ``asyncio.gather``, the first failure cancels every sibling still
    running before the exception is re-raised, and cancelling the caller
    cancels all of them. No partial result ever escapes.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    if pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # Retrieve every failure so none is reported as never retrieved.
    errors = [
        task.exception()
        for task in tasks
        if task in done and not task.cancelled() and task.exception() is not None
    ]
    if errors:
        raise errors[0]
    return [task.result() for task in tasks]

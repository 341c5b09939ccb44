"""Cooperative cancellation for pull-based streams.

Each pull from the upstream iterator races the caller's ``asyncio.Event``.
When the event wins, the pending read is cancelled, the upstream is closed
(releasing its socket) and ``CancellationError`` is raised to the consumer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from switchyard.errors import CancellationError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def _pull(source: AsyncIterator[T]) -> T:
    return await source.__anext__()


async def aclose_quietly(source: Any) -> None:
    """Close an async iterator if it supports closing."""
    close = getattr(source, "aclose", None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:
        logger.warning("Failed to close stream cleanly: %s", e)


async def iterate_cancellable(
    source: AsyncIterator[T],
    cancel: asyncio.Event | None = None,
) -> AsyncIterator[T]:
    """Yield from *source* until it ends or *cancel* is set."""
    if cancel is None:
        try:
            async for item in source:
                yield item
        finally:
            await aclose_quietly(source)
        return

    cancelled = asyncio.ensure_future(cancel.wait())
    try:
        while True:
            if cancel.is_set():
                raise CancellationError("Stream cancelled by caller")
            pull = asyncio.ensure_future(_pull(source))
            done, _ = await asyncio.wait(
                {pull, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
            if pull not in done:
                pull.cancel()
                await asyncio.gather(pull, return_exceptions=True)
                logger.debug("Stream cancelled by caller; upstream read abandoned")
                raise CancellationError("Stream cancelled by caller")
            try:
                item = pull.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        cancelled.cancel()
        await asyncio.gather(cancelled, return_exceptions=True)
        await aclose_quietly(source)

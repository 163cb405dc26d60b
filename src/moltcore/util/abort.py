"""Helpers for racing awaitables against a turn's abort event."""

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

T = TypeVar("T")


class AbortedError(Exception):
    """Raised when work is interrupted by an abort signal."""

    def __init__(self, message: str = "Operation aborted"):
        super().__init__(message)


async def race_abort(awaitable: Awaitable[T], abort: Optional[asyncio.Event]) -> T:
    """Await ``awaitable`` unless ``abort`` fires first.

    When the abort event wins, the pending work is cancelled and awaited
    before ``AbortedError`` is raised, so subprocesses and network calls
    unwind before the caller continues.
    """
    if abort is None:
        return await awaitable
    if abort.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise AbortedError()

    work: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if work.done():
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise AbortedError()


async def sleep(ms: float, abort: Optional[asyncio.Event] = None) -> None:
    """Sleep ``ms`` milliseconds, raising ``AbortedError`` if aborted first."""
    if abort is None:
        await asyncio.sleep(ms / 1000)
        return
    if abort.is_set():
        raise AbortedError()
    try:
        await asyncio.wait_for(abort.wait(), timeout=ms / 1000)
    except asyncio.TimeoutError:
        return
    raise AbortedError()

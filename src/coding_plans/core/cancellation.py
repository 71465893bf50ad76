"""Cooperative cancellation for vendor requests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Callable, TypeVar

T = TypeVar("T")


class CancellationToken:
    """Caller-owned signal. Once cancelled it stays cancelled."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancellation_requested(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove


class OperationCancelled(Exception):
    pass


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await `awaitable`, aborting it as soon as `token` is cancelled.

    Raises OperationCancelled when the token fires first.
    """
    if token is None:
        return await awaitable
    if token.is_cancellation_requested:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelled()

    work = asyncio.ensure_future(awaitable)
    remove = token.on_cancellation_requested(work.cancel)
    try:
        return await work
    except asyncio.CancelledError:
        if token.is_cancellation_requested and work.cancelled():
            raise OperationCancelled() from None
        raise
    finally:
        remove()

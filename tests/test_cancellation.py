from __future__ import annotations

import asyncio

import pytest

from coding_plans.core.cancellation import CancellationToken, OperationCancelled, run_cancellable
from coding_plans.core.events import ChangeEvent


@pytest.mark.asyncio
async def test_run_cancellable_returns_result() -> None:
    async def work() -> int:
        return 7

    assert await run_cancellable(work(), CancellationToken()) == 7
    assert await run_cancellable(work(), None) == 7


@pytest.mark.asyncio
async def test_run_cancellable_aborts_pending_work() -> None:
    token = CancellationToken()
    finished = False

    async def work() -> None:
        nonlocal finished
        await asyncio.sleep(10)
        finished = True

    async def cancel_soon() -> None:
        await asyncio.sleep(0)
        token.cancel()

    asyncio.ensure_future(cancel_soon())
    with pytest.raises(OperationCancelled):
        await run_cancellable(work(), token)
    assert not finished


@pytest.mark.asyncio
async def test_already_cancelled_token_never_starts_work() -> None:
    token = CancellationToken()
    token.cancel()
    started = False

    async def work() -> None:
        nonlocal started
        started = True

    with pytest.raises(OperationCancelled):
        await run_cancellable(work(), token)
    assert not started


def test_cancellation_callbacks() -> None:
    token = CancellationToken()
    seen: list[str] = []
    token.on_cancellation_requested(lambda: seen.append("a"))
    remove = token.on_cancellation_requested(lambda: seen.append("b"))
    remove()

    token.cancel()
    token.cancel()
    token.on_cancellation_requested(lambda: seen.append("late"))

    assert token.is_cancellation_requested
    assert seen == ["a", "late"]


def test_change_event_isolates_listener_failures() -> None:
    event = ChangeEvent("test")
    seen: list[int] = []

    def broken() -> None:
        raise RuntimeError("listener bug")

    event.subscribe(broken)
    unsubscribe = event.subscribe(lambda: seen.append(1))
    event.fire()
    assert seen == [1]

    unsubscribe()
    event.fire()
    assert seen == [1]
    assert len(event) == 1


@pytest.mark.asyncio
async def test_outer_cancellation_is_not_reported_as_token_cancellation() -> None:
    token = CancellationToken()

    async def work() -> None:
        await asyncio.sleep(10)

    task = asyncio.ensure_future(run_cancellable(work(), token))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not token.is_cancellation_requested

"""Timeout and cooperative-cancellation wrapper for external calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from rag_router.errors import ProviderUnavailable

T = TypeVar("T")


async def call_provider(
    call: Awaitable[T],
    *,
    timeout: float,
    what: str,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """Await an external call bounded by `timeout` and an optional cancel signal.

    Timeouts, cancellation and any exception raised by the call surface as
    `ProviderUnavailable` so each tier can apply its own fallback.
    """

    if cancel_event is not None and cancel_event.is_set():
        if asyncio.iscoroutine(call):
            call.close()
        raise ProviderUnavailable(what, "cancelled")

    task = asyncio.ensure_future(call)
    waiters: set[asyncio.Future] = {task}
    cancel_waiter: asyncio.Future | None = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        # Also reached when the caller itself is cancelled, e.g. by a request timeout.
        if not task.done():
            task.cancel()
        if cancel_waiter is not None and not cancel_waiter.done():
            cancel_waiter.cancel()

    if task not in done:
        reason = "cancelled" if cancel_waiter is not None and cancel_waiter in done else (
            f"timed out after {timeout:.2f}s"
        )
        raise ProviderUnavailable(what, reason)

    try:
        return task.result()
    except Exception as exc:
        raise ProviderUnavailable(what, f"{type(exc).__name__}: {exc}") from exc

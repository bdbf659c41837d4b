"""
Cancellation tokens and latest-request-wins supersession.

Every computation carries a ``CancellationToken``. Reads check it before and
after touching the store; entry points check it once more before returning
results. ``LatestRequestGate`` hands out tokens per request key and cancels
the previous one, so a slow computation for an outdated filter selection can
never overwrite the result of a newer one.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from analytics.errors import OperationCancelled

logger = structlog.get_logger()

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by one computation."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(self._reason or "cancelled")


def check_cancelled(signal: CancellationToken | None) -> None:
    """No-op when ``signal`` is None."""
    if signal is not None:
        signal.raise_if_cancelled()


async def gather_all(*awaitables: Awaitable[T]) -> list[T]:
    """Run awaitables concurrently and wait for every one of them.

    Unlike a bare ``asyncio.gather``, no sibling is left running when one
    fails. Cancellation wins over other failures; otherwise the first failure
    (in argument order) is raised.
    """
    outcomes = await asyncio.gather(*awaitables, return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, OperationCancelled):
            raise outcome
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return list(outcomes)


class LatestRequestGate:
    """Tracks the newest computation per request key.

    Usage:
        gate = LatestRequestGate()
        outcome = await gate.run("kpi-overview:widget-1", lambda token: compute(..., signal=token))

    ``run`` raises ``OperationCancelled`` when the computation was superseded
    while in flight, even if it finished successfully afterwards.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = asyncio.Lock()

    async def begin(self, key: str) -> CancellationToken:
        async with self._lock:
            previous = self._tokens.get(key)
            if previous is not None and not previous.cancelled:
                previous.cancel("superseded")
                logger.info("request.superseded", key=key)
            token = CancellationToken()
            self._tokens[key] = token
            return token

    def is_current(self, key: str, token: CancellationToken) -> bool:
        return self._tokens.get(key) is token and not token.cancelled

    async def finish(self, key: str, token: CancellationToken) -> None:
        async with self._lock:
            if self._tokens.get(key) is token:
                del self._tokens[key]

    async def run(self, key: str, compute: Callable[[CancellationToken], Awaitable[T]]) -> T:
        token = await self.begin(key)
        try:
            result = await compute(token)
            if not self.is_current(key, token):
                raise OperationCancelled(token.reason or "superseded")
            return result
        finally:
            await self.finish(key, token)

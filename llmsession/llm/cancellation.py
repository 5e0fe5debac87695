"""
Cooperative cancellation threaded through a whole turn.

A ``CancellationToken`` is handed to ``send_message`` / ``resume_session``
and passed down to the transport and to the tool-confirmation callback.
Cancelling it aborts whatever awaitable is currently wrapped in
``guard()`` and surfaces as ``RequestCancelledError``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, TypeVar

from llmsession.errors import RequestCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """A one-shot cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(self.reason or "Request was cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await *awaitable* unless the token fires first.

        When the token wins, the wrapped work is cancelled and
        ``RequestCancelledError`` is raised.
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("Cancelled work raised during teardown", exc_info=True)
        raise RequestCancelledError(self.reason or "Request was cancelled")


async def guarded(token: CancellationToken | None, awaitable: Awaitable[T]) -> T:
    """``token.guard(awaitable)`` when a token is given, else a plain await."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)

"""Per-request cancellation context.

A ``CancelToken`` is created for each inbound request and handed to every
suspending operation (probe call, relay call).  ``child()`` returns a token
that is cancelled together with its parent, so the outbound leg of a relay
session can be torn down either by the inbound disconnect or by the session
itself without touching the parent.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Awaitable, TypeVar

from routegate.core.errors import ClientDisconnected

T = TypeVar("T")


class CancelToken:
    def __init__(self, reason: str = "") -> None:
        self._event = asyncio.Event()
        self._children: list[CancelToken] = []
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in self._children:
            child.cancel(reason)
        self._children.clear()

    def child(self) -> "CancelToken":
        linked = CancelToken()
        if self.cancelled:
            linked.cancel(self.reason)
        else:
            self._children.append(linked)
        return linked

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When the token wins, the pending work is cancelled (which releases
        whatever connection it holds) and ``ClientDisconnected`` is raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ClientDisconnected(self.reason)
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                with suppress(asyncio.CancelledError):
                    await work
        if work in done:
            return work.result()
        raise ClientDisconnected(self.reason)

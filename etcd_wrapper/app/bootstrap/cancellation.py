# etcd_wrapper/app/bootstrap/cancellation.py
from __future__ import annotations

import asyncio
import weakref
from typing import Awaitable, Optional, TypeVar

from ..errors import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """
    Cancel-once, broadcast-to-all-waiters token shared by every component.

    Once cancelled it can never be reset. Child tokens are cancelled together
    with their parent but may also be cancelled on their own, which gives
    callers a per-request scope without touching the shared token.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._children: "weakref.WeakSet[CancellationToken]" = weakref.WeakSet()
        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        for child in list(self._children):
            child.cancel()

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """
        Wait out `seconds` unless the token fires first.

        Returns True when the wait ended because of cancellation.
        """
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True

    async def guard(self, awaitable: Awaitable[T], operation: str = "operation") -> T:
        """
        Await `awaitable`, abandoning it as soon as the token fires.

        Raises OperationCancelledError when cancellation wins the race.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelledError(operation)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()
        task.cancel()
        raise OperationCancelledError(operation)

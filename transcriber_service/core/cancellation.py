"""
Cancellation signal bound to one request

A signal fires once, either explicitly (client disconnected) or when its
deadline passes. It may be fired from any thread; waiters on any event loop
are woken through ``call_soon_threadsafe``.
"""
import asyncio
import threading
import time
from typing import Awaitable, List, Optional, Tuple, TypeVar

from transcriber_service.core.exceptions import PipelineCancelled

T = TypeVar('T')

DEADLINE_EXCEEDED = 'deadline exceeded'


class CancelSignal:
    """One-shot cancellation token with an optional deadline"""

    def __init__(self, deadline: Optional[float] = None):
        """
        Args:
            deadline: Absolute ``time.monotonic()`` value after which the
                signal counts as fired
        """
        self._deadline = deadline
        self._reason: Optional[str] = None
        self._lock = threading.Lock()
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> 'CancelSignal':
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    @property
    def reason(self) -> Optional[str]:
        self._check_deadline()
        return self._reason

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    def cancel(self, reason: str = 'cancelled') -> bool:
        """
        Fire the signal

        Returns:
            True if this call fired it, False if it had already fired
        """
        with self._lock:
            if self._reason is not None:
                return False
            self._reason = reason
            waiters = list(self._waiters)

        for loop, future in waiters:
            try:
                loop.call_soon_threadsafe(_resolve, future)
            except RuntimeError:
                # loop already closed, nobody left to wake
                pass
        return True

    def raise_if_cancelled(self):
        reason = self.reason
        if reason is not None:
            raise PipelineCancelled(reason)

    async def wait(self) -> str:
        """Suspend until the signal fires; returns the reason"""
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        with self._lock:
            if self._reason is None:
                self._waiters.append((loop, future))
            else:
                future.set_result(None)

        try:
            remaining = self._remaining()
            if remaining is None:
                await future
            else:
                try:
                    await asyncio.wait_for(future, timeout=remaining)
                except asyncio.TimeoutError:
                    self.cancel(DEADLINE_EXCEEDED)
        finally:
            with self._lock:
                if (loop, future) in self._waiters:
                    self._waiters.remove((loop, future))

        return self._reason

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the signal fires first

        When the signal wins, the inner task is cancelled and awaited so its
        own cleanup (process termination, connection close) finishes before
        PipelineCancelled is raised.
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            await asyncio.gather(task, waiter, return_exceptions=True)
            raise

        if task in done:
            waiter.cancel()
            await asyncio.gather(waiter, return_exceptions=True)
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise PipelineCancelled(self._reason)

    def _check_deadline(self):
        if self._deadline is not None and self._reason is None and time.monotonic() >= self._deadline:
            self.cancel(DEADLINE_EXCEEDED)

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())


def _resolve(future: asyncio.Future):
    if not future.done():
        future.set_result(None)

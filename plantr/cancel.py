"""Cancellation tokens threaded through every suspending operation.

A token combines an optional deadline with an external cancel source and
inherits both from its parent. ``cancel()`` is idempotent and may be called
from any thread; waiting coroutines are woken on their own event loop.
"""

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, TypeVar

from .errors import OperationCancelled, RelayTimeoutError

T = TypeVar("T")


class CancelToken:
    """Deadline plus cancel source for one unit of work."""

    def __init__(
        self,
        timeout: float | None = None,
        parent: "CancelToken | None" = None,
    ):
        """Initialize the token.

        Args:
            timeout: Seconds from now until the deadline, or None for none.
            parent: Token whose cancellation and deadline also apply here.
        """
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._parent = parent
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    def with_timeout(self, timeout: float | None) -> "CancelToken":
        """Child token that also expires ``timeout`` seconds from now."""
        return CancelToken(timeout=timeout, parent=self)

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def deadline(self) -> float | None:
        deadlines = [d for d in (self._deadline, self._parent_deadline()) if d is not None]
        return min(deadlines) if deadlines else None

    def _parent_deadline(self) -> float | None:
        return self._parent.deadline if self._parent is not None else None

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), or None."""
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def cancel(self) -> None:
        """Cancel this token and every token derived from it."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Call ``callback`` once when this token or an ancestor is cancelled."""
        if self.cancelled:
            callback()
            return
        token: CancelToken | None = self
        while token is not None:
            with token._lock:
                if not token._cancelled:
                    token._callbacks.append(callback)
            token = token._parent
        # An ancestor may have been cancelled while we were registering
        if self.cancelled:
            callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        token: CancelToken | None = self
        while token is not None:
            with token._lock:
                if callback in token._callbacks:
                    token._callbacks.remove(callback)
            token = token._parent

    def _loop_event(self) -> tuple[asyncio.Event, Callable[[], None]]:
        loop = asyncio.get_running_loop()
        event = asyncio.Event()

        def wake() -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(event.set)

        self.add_callback(wake)
        return event, wake

    async def wait(self) -> None:
        """Block until the token is cancelled (deadlines are ignored)."""
        event, wake = self._loop_event()
        try:
            await event.wait()
        finally:
            self.remove_callback(wake)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` under this token.

        Raises:
            OperationCancelled: The token was cancelled first.
            RelayTimeoutError: The deadline passed first.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled()

        task: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
        event, wake = self._loop_event()
        waiter = asyncio.ensure_future(event.wait())

        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if task in done:
                return task.result()
            if waiter in done or self.cancelled:
                raise OperationCancelled()
            raise RelayTimeoutError(context="no answer within the deadline")
        finally:
            self.remove_callback(wake)
            waiter.cancel()
            if not task.done():
                task.cancel()
                # Let the operation release its resources before returning
                await asyncio.gather(task, return_exceptions=True)

"""Delayed task scheduling and write coalescing.

Timers go through a Scheduler so tests can replace the event loop clock
with a virtual one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

_LOGGER = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Handle of a scheduled callback."""

    def cancel(self) -> None: ...


class Scheduler:
    """Scheduler backed by the running asyncio event loop."""

    def now(self) -> float:
        """Return the current time in seconds."""
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Run callback after delay seconds."""
        return asyncio.get_running_loop().call_later(delay, callback)

    async def async_sleep(self, delay: float) -> None:
        """Suspend the calling task for delay seconds."""
        await asyncio.sleep(delay)


class Debouncer:
    """Coalesce rapid calls of a coroutine function into one call.

    Every call restarts the timer. When it fires, the function runs once
    with the arguments of the last call and all pending callers receive
    the same result or exception.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        delay: float,
        function: Callable[..., Awaitable[Any]],
    ) -> None:
        self._scheduler = scheduler
        self._delay = delay
        self._function = function
        self._timer: TimerHandle | None = None
        self._waiters: list[asyncio.Future[Any]] = []
        self._args: tuple[Any, ...] = ()
        self._kwargs: dict[str, Any] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        """Return True if a call is waiting for the timer."""
        return self._timer is not None

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        if self._timer is not None:
            self._timer.cancel()

        self._args = args
        self._kwargs = kwargs
        waiter: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._timer = self._scheduler.call_later(self._delay, self._fire)
        return await waiter

    def _fire(self) -> None:
        waiters, self._waiters = self._waiters, []
        args, kwargs = self._args, self._kwargs
        self._timer = None

        task = asyncio.ensure_future(self._run(waiters, args, kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(
        self,
        waiters: list[asyncio.Future[Any]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> None:
        try:
            result = await self._function(*args, **kwargs)
        except Exception as err:  # noqa: BLE001
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(err)
            return

        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(result)

    def cancel(self) -> None:
        """Drop the pending call, its callers are cancelled."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter.cancel()

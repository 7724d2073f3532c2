"""Retry executor for fallible asynchronous operations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .scheduler import Scheduler

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class RetryRunner:
    """Execute an operation, retrying it after failures.

    The delay before retry n (1-based) is either a fixed number of seconds
    or interval(n). There is no jitter.
    """

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler

    async def async_run(
        self,
        operation: Callable[[], Awaitable[_T]],
        max_retries: int = 1,
        interval: float | Callable[[int], float] = 0,
    ) -> _T:
        """Run operation, retrying up to max_retries times.

        Raises:
            TypeError: If the arguments are of the wrong type.
            Exception: The last failure once all retries are used.

        """
        if not callable(operation):
            raise TypeError("expected_function")
        if not isinstance(max_retries, int) or isinstance(max_retries, bool):
            raise TypeError("expected_times_number")
        if not callable(interval) and not isinstance(interval, (int, float)):
            raise TypeError("expected_interval_number_or_function")

        retries = 0
        while True:
            try:
                return await operation()
            except Exception as err:
                if retries >= max_retries:
                    raise
                retries += 1
                delay = interval(retries) if callable(interval) else interval
                _LOGGER.debug(
                    "Attempt failed (%s), retry %d/%d in %ss",
                    err,
                    retries,
                    max_retries,
                    delay,
                )
                await self._scheduler.async_sleep(delay)

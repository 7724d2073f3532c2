"""Webhook subscription lifecycle for a single Toon agreement.

The Toon API only pushes updates for a limited time after subscribing.
Every pushed payload carries the remaining lifetime of the subscription,
which is used to schedule the next renewal.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from .api import ToonError, ToonSessionError, ToonSubscriptionError
from .const import (
    MESSAGE_WEBHOOK_REGISTRATION_FAILED,
    SUBSCRIPTION_MAX_RETRIES,
    SUBSCRIPTION_RETRY_BASE,
)
from .models import SubscriptionState, SubscriptionStatus
from .retry import RetryRunner

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .client import ToonOAuth2Client
    from .scheduler import Scheduler, TimerHandle

_LOGGER = logging.getLogger(__name__)


def subscription_retry_interval(retry: int) -> float:
    """Return the delay in seconds before retry number retry."""
    return SUBSCRIPTION_RETRY_BASE * (2**retry)


class SubscriptionScheduler:
    """Keep the webhook subscription of one agreement alive.

    States move from idle to registering to active. A renewal timer moves
    an active subscription back to registering. When all retries fail the
    state returns to idle and a warning is set on the device.
    """

    def __init__(
        self,
        agreement_id: str,
        get_client: Callable[[], ToonOAuth2Client | None],
        scheduler: Scheduler,
        set_warning: Callable[[str | None], Awaitable[None]],
        max_retries: int = SUBSCRIPTION_MAX_RETRIES,
    ) -> None:
        self._agreement_id = agreement_id
        self._get_client = get_client
        self._scheduler = scheduler
        self._set_warning = set_warning
        self._max_retries = max_retries
        self._retry = RetryRunner(scheduler)
        self._renewal_timer: TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._torn_down = False
        self.state = SubscriptionState()

    @property
    def renewal_scheduled(self) -> bool:
        """Return True if a renewal timer is armed."""
        return self._renewal_timer is not None

    def _client(self) -> ToonOAuth2Client:
        client = self._get_client()
        if client is None:
            no_client = f"No client available for agreement {self._agreement_id}"
            raise ToonSessionError(no_client)
        return client

    async def async_register_subscription(self) -> None:
        """Subscribe to webhook events, retrying with exponential backoff.

        Returns immediately when a registration is already in flight.

        Raises:
            ToonSubscriptionError: If all attempts failed.

        """
        if self.state.registering:
            _LOGGER.debug(
                "Subscription for %s already registering", self._agreement_id
            )
            return

        self.state.status = SubscriptionStatus.REGISTERING
        self.state.retry_count = 0
        attempt = 0

        async def _attempt() -> Any:
            nonlocal attempt
            attempt += 1
            self.state.retry_count = attempt - 1
            if attempt > 1:
                _LOGGER.debug(
                    "Registering webhook subscription for %s, retry %d/%d",
                    self._agreement_id,
                    attempt - 1,
                    self._max_retries,
                )
            else:
                _LOGGER.debug(
                    "Registering webhook subscription for %s", self._agreement_id
                )
            return await self._client().async_register_webhook_subscription(
                self._agreement_id
            )

        try:
            await self._retry.async_run(
                _attempt, self._max_retries, subscription_retry_interval
            )
        except Exception as err:
            self.state.status = SubscriptionStatus.IDLE
            _LOGGER.error(
                "Failed to register webhook subscription for %s, reason: %s",
                self._agreement_id,
                err,
            )
            await self._set_warning(MESSAGE_WEBHOOK_REGISTRATION_FAILED)
            failed = f"Webhook subscription failed after {attempt} attempts: {err}"
            raise ToonSubscriptionError(failed) from err

        self.state.status = SubscriptionStatus.ACTIVE
        _LOGGER.info("Webhook subscription active for %s", self._agreement_id)
        await self._set_warning(None)

    def schedule_renewal(self, time_to_live: float) -> None:
        """Arm the renewal timer, replacing any previous one."""
        if self._torn_down:
            return
        if self._renewal_timer is not None:
            self._renewal_timer.cancel()

        self.state.expires_at = datetime.fromtimestamp(
            self._scheduler.now() + time_to_live, UTC
        )
        self._renewal_timer = self._scheduler.call_later(
            time_to_live, self._on_renewal_due
        )
        _LOGGER.debug(
            "Webhook subscription for %s renews in %ss",
            self._agreement_id,
            time_to_live,
        )

    def _on_renewal_due(self) -> None:
        self._renewal_timer = None
        task = asyncio.ensure_future(self._async_renew())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _async_renew(self) -> None:
        try:
            await self.async_register_subscription()
        except ToonSubscriptionError:
            _LOGGER.debug("Renewal for %s gave up", self._agreement_id)

    async def async_get_subscriptions(self) -> Any:
        """Return the subscriptions registered at the provider."""
        return await self._client().async_get_registered_webhook_subscriptions(
            self._agreement_id
        )

    async def async_teardown(self) -> None:
        """Cancel the renewal timer and unsubscribe, best effort."""
        self._torn_down = True
        if self._renewal_timer is not None:
            self._renewal_timer.cancel()
            self._renewal_timer = None

        client = self._get_client()
        if client is None:
            return
        try:
            await client.async_unregister_webhook_subscription(self._agreement_id)
        except (ToonError, httpx.HTTPError) as err:
            _LOGGER.warning(
                "Failed to unsubscribe webhook for %s: %s", self._agreement_id, err
            )
        self.state.status = SubscriptionStatus.IDLE

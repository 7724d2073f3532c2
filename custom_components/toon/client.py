"""OAuth2 client bound to a single Toon session."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from . import api
from .api import ToonApiAuthError, ToonSessionError
from .const import DEFAULT_SCOPES, DEFAULT_TENANT_ID
from .models import Agreement, OAuth2Token, Session, SessionInformation

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToonClientConfig:
    """Static OAuth2 application configuration."""

    client_id: str
    client_secret: str
    redirect_uri: str
    tenant_id: str = DEFAULT_TENANT_ID
    callback_url: str | None = None


class ToonOAuth2Client:
    """Authenticated client for one Toon session.

    The client is owned by the session manager. Devices only keep a
    reference to it and get a new one when the session changes.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        config: ToonClientConfig,
        session: Session,
        token_update_callback: Callable[[ToonOAuth2Client], Awaitable[None]]
        | None = None,
    ) -> None:
        self._http = http
        self._config = config
        self._session = session
        self._token_update_callback = token_update_callback
        self._token_lock = asyncio.Lock()
        self._closed = False

    @property
    def session(self) -> Session:
        """Return the session this client is bound to."""
        return self._session

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def config_id(self) -> str:
        return self._session.config_id

    @property
    def title(self) -> str | None:
        return self._session.title

    @property
    def token(self) -> OAuth2Token | None:
        return self._session.token

    @property
    def closed(self) -> bool:
        return self._closed

    def set_token(self, token: OAuth2Token) -> None:
        self._session.token = token

    def set_title(self, title: str | None) -> None:
        self._session.title = title

    def close(self) -> None:
        """Mark the client as discarded, further requests will fail."""
        self._closed = True

    def get_authorization_url(self, state: str | None = None) -> str:
        """Return the URL the user has to visit to authorize this client."""
        return api.build_authorization_url(
            client_id=self._config.client_id,
            redirect_uri=self._config.redirect_uri,
            state=state or secrets.token_urlsafe(16),
            scopes=DEFAULT_SCOPES,
            tenant_id=self._config.tenant_id,
        )

    async def async_get_token_by_code(self, code: str) -> OAuth2Token:
        """Exchange an authorization code and bind the resulting token."""
        token = await api.async_get_token_by_code(
            self._http,
            client_id=self._config.client_id,
            client_secret=self._config.client_secret,
            redirect_uri=self._config.redirect_uri,
            code=code,
            tenant_id=self._config.tenant_id,
        )
        self.set_token(token)
        return token

    async def async_get_session_information(self) -> SessionInformation:
        """Return session metadata for the authorized account.

        The Toon API has no user info endpoint, a fresh identifier is
        issued for the token and the title is taken from the agreements.
        """
        agreements = await self.async_get_agreements()
        names = [a.display_common_name for a in agreements if a.display_common_name]
        title = f"Toon ({', '.join(names)})" if names else "Toon"
        return SessionInformation(id=secrets.token_hex(16), title=title)

    async def async_refresh_token(self) -> OAuth2Token:
        """Refresh the bound token and notify the owner.

        Raises:
            ToonApiAuthError: If no refresh token exists or refresh fails.

        """
        token = self.token
        if token is None or not token.refresh_token:
            no_refresh = "No refresh token available"
            raise ToonApiAuthError(no_refresh)

        new_token = await api.async_refresh_token(
            self._http,
            client_id=self._config.client_id,
            client_secret=self._config.client_secret,
            refresh_token=token.refresh_token,
            tenant_id=self._config.tenant_id,
        )
        self.set_token(new_token)
        _LOGGER.debug("Refreshed token for session %s", self.session_id)
        if self._token_update_callback is not None:
            await self._token_update_callback(self)
        return new_token

    async def _async_access_token(self) -> str:
        if self._closed:
            closed = f"Client for session {self.session_id} was closed"
            raise ToonSessionError(closed)
        if self.token is None:
            no_token = f"Session {self.session_id} has no token"
            raise ToonApiAuthError(no_token)

        async with self._token_lock:
            if self.token.is_expired():
                await self.async_refresh_token()
        return self.token.access_token

    async def _async_call(
        self, func: Callable[..., Awaitable[Any]], *args: Any
    ) -> Any:
        """Call an api function with a valid access token.

        A rejected token is refreshed once and the call is retried.
        """
        access_token = await self._async_access_token()
        try:
            return await func(self._http, access_token, *args)
        except ToonApiAuthError:
            if self.token is None or not self.token.refresh_token:
                raise
            _LOGGER.debug(
                "%s unauthorized, refreshing token", getattr(func, "__name__", func)
            )

        async with self._token_lock:
            if self.token.access_token == access_token:
                await self.async_refresh_token()
        return await func(self._http, self.token.access_token, *args)

    async def async_get_agreements(self) -> list[Agreement]:
        """Get all agreements (registered Toon devices) for this account."""
        _LOGGER.debug("async_get_agreements()")
        return await self._async_call(api.async_get_agreements)

    async def async_get_status(self, agreement_id: str) -> dict[str, Any]:
        """Fetch the status object of an agreement."""
        return await self._async_call(api.async_get_status, agreement_id)

    async def async_update_state(
        self, agreement_id: str, data: dict[str, Any]
    ) -> Any:
        """Write a full thermostat info object."""
        return await self._async_call(api.async_update_thermostat, agreement_id, data)

    async def async_register_webhook_subscription(self, agreement_id: str) -> Any:
        """Register a new webhook subscription for an agreement.

        Any existing subscription of this application is cancelled first,
        so subscriptions do not pile up.
        """
        _LOGGER.debug("async_register_webhook_subscription(%s)", agreement_id)
        try:
            await self.async_unregister_webhook_subscription(agreement_id)
            _LOGGER.debug("Existing webhook subscription was cancelled")
        except api.ToonError as err:
            _LOGGER.debug(
                "Failed to unregister webhook before new subscription: %s", err
            )

        if not self._config.callback_url:
            no_callback = "No webhook callback URL configured"
            raise api.ToonApiClientError(no_callback)

        return await self._async_call(
            api.async_subscribe_webhook,
            agreement_id,
            self._config.client_id,
            self._config.callback_url,
        )

    async def async_unregister_webhook_subscription(self, agreement_id: str) -> Any:
        """End the webhook subscription of this application."""
        _LOGGER.debug("async_unregister_webhook_subscription(%s)", agreement_id)
        return await self._async_call(
            api.async_unsubscribe_webhook, agreement_id, self._config.client_id
        )

    async def async_get_registered_webhook_subscriptions(
        self, agreement_id: str
    ) -> Any:
        """Return the currently registered webhook subscriptions."""
        return await self._async_call(api.async_get_webhooks, agreement_id)

"""Session manager for the Toon integration.

Owns the single persisted OAuth2 session of an installation, drives the
authorization handshake and rebinds devices when the session changes.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections import defaultdict
from typing import TYPE_CHECKING, Any

import httpx

from .api import (
    ToonApiAuthError,
    ToonError,
    ToonMigrationError,
    ToonSessionError,
    ToonSessionIntegrityError,
)
from .client import ToonClientConfig, ToonOAuth2Client
from .const import (
    DEFAULT_CONFIG_ID,
    EVENT_AUTHORIZED,
    EVENT_ERROR,
    EVENT_URL,
    MESSAGE_LOGGED_OUT,
    MESSAGE_LOGIN_FAILED,
)
from .models import OAuth2Token, Session, SessionStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from homeassistant.helpers.storage import Store

    from .device import ToonDevice

_LOGGER = logging.getLogger(__name__)


class SessionManager:
    """Manage the OAuth2 session shared by all Toon devices.

    The store holds a mapping of session id to session record. At most one
    record may exist, more than one is treated as corrupted data.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        config: ToonClientConfig,
        store: Store,
    ) -> None:
        self._http = http
        self._config = config
        self._store = store
        self._clients: dict[tuple[str, str], ToonOAuth2Client] = {}
        self._devices: list[ToonDevice] = []
        self._listeners: dict[str, list[Callable[[Any], None]]] = defaultdict(list)
        self.state = SessionStatus.UNAUTHENTICATED

    @property
    def devices(self) -> list[ToonDevice]:
        """Return the devices managed by this session manager."""
        return list(self._devices)

    def register_device(self, device: ToonDevice) -> Callable[[], None]:
        """Add a device to be rebound on login and disabled on logout.

        Returns:
            A function to unregister the device.

        """
        self._devices.append(device)

        def unregister() -> None:
            if device in self._devices:
                self._devices.remove(device)

        return unregister

    def register_listener(
        self, event: str, callback: Callable[[Any], None]
    ) -> Callable[[], None]:
        """Register a callback for the url, authorized or error event.

        Returns:
            A function to unregister the callback.

        """
        self._listeners[event].append(callback)

        def unregister() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        return unregister

    def _emit(self, event: str, data: Any = None) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(data)
            except Exception:
                _LOGGER.exception("Error in %s listener", event)

    async def _async_load_sessions(self) -> dict[str, Session]:
        try:
            data = await self._store.async_load()
        except Exception:
            _LOGGER.exception("Could not load saved OAuth2 sessions")
            raise
        return {
            session_id: Session.from_record(session_id, record)
            for session_id, record in (data or {}).items()
        }

    async def _async_get_session(self) -> Session | None:
        """Return the persisted session, None if there is none.

        Raises:
            ToonSessionIntegrityError: If more than one session is stored.

        """
        sessions = await self._async_load_sessions()
        if len(sessions) > 1:
            multiple = "Multiple OAuth2 sessions found, not allowed."
            raise ToonSessionIntegrityError(multiple)
        session = next(iter(sessions.values()), None)
        _LOGGER.debug(
            "_async_get_session() -> %s",
            session.session_id if session else "no session found",
        )
        return session

    async def async_is_authenticated(self) -> bool:
        """Return True if exactly one session is persisted.

        Raises:
            ToonSessionIntegrityError: If more than one session is stored.

        """
        try:
            session = await self._async_get_session()
        except ToonSessionError:
            _LOGGER.error("Could not get current OAuth2 session")
            raise
        _LOGGER.debug("async_is_authenticated() -> %s", session is not None)
        return session is not None

    async def _async_state_from_store(self) -> SessionStatus:
        """Return the status the persisted sessions imply."""
        try:
            session = await self._async_get_session()
        except Exception as err:  # noqa: BLE001
            _LOGGER.debug("No usable saved session: %s", err)
            return SessionStatus.UNAUTHENTICATED
        if session is None:
            return SessionStatus.UNAUTHENTICATED
        return SessionStatus.AUTHENTICATED

    def _create_client(self, session: Session) -> ToonOAuth2Client:
        return ToonOAuth2Client(
            self._http,
            self._config,
            session,
            token_update_callback=self._async_on_token_update,
        )

    async def _async_save_client(self, client: ToonOAuth2Client) -> None:
        """Persist a client's session, replacing whatever was stored."""
        await self._store.async_save({client.session_id: client.session.as_record()})
        self._clients[(client.session_id, client.config_id)] = client

    async def _async_on_token_update(self, client: ToonOAuth2Client) -> None:
        if self._clients.get((client.session_id, client.config_id)) is not client:
            return
        _LOGGER.debug("Persisting refreshed token of session %s", client.session_id)
        await self._store.async_save({client.session_id: client.session.as_record()})

    def has_client(self, session_id: str, config_id: str) -> bool:
        return (session_id, config_id) in self._clients

    def get_client(self, session_id: str, config_id: str) -> ToonOAuth2Client:
        """Return the live client of a session.

        Raises:
            ToonSessionError: If no such client exists.

        """
        try:
            return self._clients[(session_id, config_id)]
        except KeyError as err:
            missing = f"No OAuth2 client for session {session_id}"
            raise ToonSessionError(missing) from err

    async def async_get_saved_client(self) -> ToonOAuth2Client | None:
        """Return the client of the persisted session, None if logged out."""
        session = await self._async_get_session()
        if session is None:
            return None

        key = (session.session_id, session.config_id)
        if key not in self._clients:
            self._clients[key] = self._create_client(session)
        if self.state is SessionStatus.UNAUTHENTICATED:
            self.state = SessionStatus.AUTHENTICATED
        return self._clients[key]

    async def async_get_client_for_session(self) -> ToonOAuth2Client:
        """Return the client of the persisted session.

        Raises:
            ToonSessionError: If no session is stored.
            ToonSessionIntegrityError: If more than one session is stored.

        """
        client = await self.async_get_saved_client()
        if client is None:
            no_session = "No OAuth2 session found"
            raise ToonSessionError(no_session)
        return client

    async def async_login(
        self, callback: Callable[[str, str], Awaitable[str]]
    ) -> bool:
        """Run the authorization handshake.

        Args:
            callback: Awaits the authorization code for an authorization
                URL and state, e.g. from an OAuth2 redirect view.

        Returns:
            True if a new session was stored, False if authorization failed.

        """
        _LOGGER.info("Starting Toon login")
        self.state = SessionStatus.AUTHENTICATING

        client: ToonOAuth2Client | None = None
        try:
            client = await self.async_get_saved_client()
        except ToonSessionError as err:
            _LOGGER.warning("No usable saved OAuth2 client: %s", err)

        if client is None:
            client = self._create_client(Session(session_id=secrets.token_hex(16)))
            _LOGGER.debug("Created new temporary OAuth2 client")

        state = secrets.token_urlsafe(16)
        url = client.get_authorization_url(state)
        self._emit(EVENT_URL, url)

        try:
            code = await callback(url, state)
            _LOGGER.debug("Received OAuth2 code")
            await client.async_get_token_by_code(code)
            information = await client.async_get_session_information()
        except (ToonError, httpx.HTTPError, TimeoutError) as err:
            _LOGGER.error("Could not get token by code: %s", err)
            self.state = await self._async_state_from_store()
            self._emit(
                EVENT_ERROR, ToonApiAuthError(MESSAGE_LOGIN_FAILED.format(error=err))
            )
            return False

        token = client.token
        client.close()
        self._clients.pop((client.session_id, client.config_id), None)

        final = self._create_client(
            Session(
                session_id=information.id,
                config_id=DEFAULT_CONFIG_ID,
                token=token,
                title=information.title,
            )
        )
        try:
            await self._async_save_client(final)
        except Exception as err:
            _LOGGER.exception("Could not save new OAuth2 client")
            self.state = await self._async_state_from_store()
            self._emit(
                EVENT_ERROR, ToonSessionError(MESSAGE_LOGIN_FAILED.format(error=err))
            )
            return False

        self.state = SessionStatus.AUTHENTICATED
        _LOGGER.info("Authenticated with Toon as session %s", final.session_id)
        self._emit(EVENT_AUTHORIZED)

        await self._async_rebind_devices(final)
        return True

    async def _async_rebind_devices(self, client: ToonOAuth2Client) -> None:
        devices = self.devices
        results = await asyncio.gather(
            *(
                device.async_reset_client(client.session_id, client.config_id)
                for device in devices
            ),
            return_exceptions=True,
        )
        errors = [
            (device, result)
            for device, result in zip(devices, results, strict=True)
            if isinstance(result, Exception)
        ]
        for device, err in errors:
            _LOGGER.error("Could not reset OAuth2 client on %s: %s", device.id, err)
        if errors:
            self._emit(
                EVENT_ERROR,
                ToonSessionError(MESSAGE_LOGIN_FAILED.format(error=errors[0][1])),
            )
        _LOGGER.debug("Reset %d devices to new OAuth2 client", len(devices))

    async def async_logout(self) -> None:
        """Remove the persisted session and mark all devices unavailable.

        Raises:
            ToonSessionError: If no session is stored.
            ToonSessionIntegrityError: If more than one session is stored.

        """
        _LOGGER.info("Logging out of Toon")
        session = await self._async_get_session()
        if session is None:
            no_session = "No OAuth2 session found to log out"
            raise ToonSessionError(no_session)

        await self._store.async_save({})
        client = self._clients.pop((session.session_id, session.config_id), None)
        if client is not None:
            client.close()
        self.state = SessionStatus.UNAUTHENTICATED

        results = await asyncio.gather(
            *(
                device.async_set_unavailable(MESSAGE_LOGGED_OUT)
                for device in self.devices
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                _LOGGER.error("Could not mark device unavailable: %s", result)

    async def async_migrate_legacy_account(
        self, account: dict[str, Any] | None
    ) -> Session:
        """Turn a legacy stored account into a persisted session.

        Raises:
            ToonMigrationError: If the account lacks a token.

        """
        _LOGGER.debug("async_migrate_legacy_account()")
        if not account:
            raise ToonMigrationError("Missing OAuth2 Account")
        if not account.get("accessToken"):
            raise ToonMigrationError("Missing Access Token")
        if not account.get("refreshToken"):
            raise ToonMigrationError("Missing Refresh Token")

        existing = await self._async_get_session()
        if existing is not None:
            _LOGGER.info("Session already present, skipping legacy migration")
            return existing

        session = Session(
            session_id=secrets.token_hex(16),
            config_id=DEFAULT_CONFIG_ID,
            token=OAuth2Token(
                access_token=account["accessToken"],
                refresh_token=account["refreshToken"],
            ),
        )
        await self._async_save_client(self._create_client(session))
        self.state = SessionStatus.AUTHENTICATED
        _LOGGER.info("Migrated legacy OAuth2 account to session %s", session.session_id)
        return session

    def close(self) -> None:
        """Close all live clients."""
        for client in self._clients.values():
            client.close()
        self._clients.clear()

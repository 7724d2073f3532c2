"""OAuth2 redirect handling for the Toon login flow."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web
from homeassistant.components.http import HomeAssistantView

from .api import ToonApiAuthError
from .const import OAUTH2_CALLBACK_PATH

_LOGGER = logging.getLogger(__name__)

AUTHORIZATION_TIMEOUT = 600


class PendingAuthorizations:
    """Authorization codes awaited by running logins, keyed by OAuth2 state."""

    def __init__(self, timeout: float = AUTHORIZATION_TIMEOUT) -> None:
        self._timeout = timeout
        self._pending: dict[str, asyncio.Future[str]] = {}

    def __contains__(self, state: str) -> bool:
        return state in self._pending

    async def async_wait_for_code(self, url: str, state: str) -> str:
        """Wait until the redirect for state delivers a code.

        Raises:
            TimeoutError: If no code arrived in time.
            ToonApiAuthError: If the user denied the authorization.

        """
        _LOGGER.info("Waiting for Toon authorization at %s", url)
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending[state] = future
        try:
            async with asyncio.timeout(self._timeout):
                return await future
        finally:
            self._pending.pop(state, None)

    def resolve(self, state: str, code: str) -> bool:
        """Deliver a code, returns False if nobody waits for state."""
        future = self._pending.get(state)
        if future is None or future.done():
            return False
        future.set_result(code)
        return True

    def reject(self, state: str, error: str) -> bool:
        """Fail a pending login, returns False if nobody waits for state."""
        future = self._pending.get(state)
        if future is None or future.done():
            return False
        future.set_exception(ToonApiAuthError(f"Authorization denied: {error}"))
        return True


class ToonOAuth2CallbackView(HomeAssistantView):
    """Receive the OAuth2 redirect of the Toon authorize endpoint."""

    url = OAUTH2_CALLBACK_PATH
    name = "api:toon:oauth2_callback"
    requires_auth = False

    def __init__(self, pending: PendingAuthorizations) -> None:
        self._pending = pending

    async def get(self, request: web.Request) -> web.Response:
        state = request.query.get("state")
        code = request.query.get("code")

        if not state:
            return web.Response(status=400, text="Missing state")

        if not code:
            error = request.query.get("error", "missing code")
            _LOGGER.warning("Toon authorization failed: %s", error)
            self._pending.reject(state, error)
            return web.Response(status=400, text=f"Authorization failed: {error}")

        if not self._pending.resolve(state, code):
            _LOGGER.warning("Received OAuth2 code for unknown state")
            return web.Response(status=404, text="Unknown or expired login")

        return web.Response(
            content_type="text/html",
            text=(
                "<html><body>Toon authorization complete, "
                "you can close this window.</body></html>"
            ),
        )

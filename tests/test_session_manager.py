"""Tests for the session manager."""

from typing import Any
from unittest.mock import AsyncMock, Mock, patch

import pytest

from custom_components.toon.api import (
    ToonApiAuthError,
    ToonMigrationError,
    ToonSessionError,
    ToonSessionIntegrityError,
)
from custom_components.toon.client import ToonClientConfig, ToonOAuth2Client
from custom_components.toon.const import (
    EVENT_AUTHORIZED,
    EVENT_ERROR,
    EVENT_URL,
    MESSAGE_LOGGED_OUT,
)
from custom_components.toon.models import (
    OAuth2Token,
    SessionInformation,
    SessionStatus,
)
from custom_components.toon.session_manager import SessionManager

TOKEN_RECORD = {
    "access_token": "a",
    "refresh_token": "r",
    "expires_at": None,
    "token_type": "bearer",
}


def _record(title: str = "Toon") -> dict[str, Any]:
    return {"config_id": "default", "title": title, "token": dict(TOKEN_RECORD)}


@pytest.fixture
def mock_store() -> Mock:
    """Create a store holding no sessions."""
    store = Mock()
    store.async_load = AsyncMock(return_value=None)
    store.async_save = AsyncMock()
    return store


@pytest.fixture
def manager(client_config: ToonClientConfig, mock_store: Mock) -> SessionManager:
    """Create a session manager with a mocked store."""
    return SessionManager(Mock(), client_config, mock_store)


class TestAsyncIsAuthenticated:
    """Tests for async_is_authenticated method."""

    @pytest.mark.asyncio
    async def test_false_without_sessions(self, manager: SessionManager) -> None:
        """Test that an empty store is not authenticated."""
        assert await manager.async_is_authenticated() is False

    @pytest.mark.asyncio
    async def test_true_with_one_session(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that a single stored session is authenticated."""
        mock_store.async_load.return_value = {"s1": _record()}
        assert await manager.async_is_authenticated() is True

    @pytest.mark.asyncio
    async def test_raises_with_two_sessions(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that more than one stored session is an integrity error."""
        mock_store.async_load.return_value = {"s1": _record(), "s2": _record()}
        with pytest.raises(ToonSessionIntegrityError, match="Multiple"):
            await manager.async_is_authenticated()


class TestAsyncGetSavedClient:
    """Tests for async_get_saved_client method."""

    @pytest.mark.asyncio
    async def test_returns_same_client_for_session(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that the saved session maps to one reused client."""
        mock_store.async_load.return_value = {"s1": _record()}

        client = await manager.async_get_saved_client()

        assert client is await manager.async_get_saved_client()
        assert client.token.access_token == "a"
        assert manager.has_client("s1", "default")
        assert manager.get_client("s1", "default") is client
        assert manager.state is SessionStatus.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_none_without_session(self, manager: SessionManager) -> None:
        """Test that no client exists when logged out."""
        assert await manager.async_get_saved_client() is None
        with pytest.raises(ToonSessionError):
            manager.get_client("s1", "default")

    @pytest.mark.asyncio
    async def test_client_for_session_requires_session(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that the session client lookup fails when logged out."""
        with pytest.raises(ToonSessionError, match="No OAuth2 session"):
            await manager.async_get_client_for_session()

        mock_store.async_load.return_value = {"s1": _record()}
        client = await manager.async_get_client_for_session()
        assert client.session_id == "s1"

    @pytest.mark.asyncio
    async def test_refreshed_token_is_persisted(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that a token refresh writes the new token to the store."""
        mock_store.async_load.return_value = {"s1": _record()}
        client = await manager.async_get_saved_client()

        client.set_token(OAuth2Token(access_token="b", refresh_token="r2"))
        await manager._async_on_token_update(client)

        saved = mock_store.async_save.await_args.args[0]
        assert saved["s1"]["token"]["access_token"] == "b"


class TestAsyncLogin:
    """Tests for async_login method."""

    @pytest.mark.asyncio
    async def test_login_stores_session_and_rebinds_devices(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test a successful login end to end."""
        device = Mock()
        device.async_reset_client = AsyncMock()
        manager.register_device(device)
        urls: list[str] = []
        authorized = Mock()
        manager.register_listener(EVENT_URL, urls.append)
        manager.register_listener(EVENT_AUTHORIZED, authorized)
        callback = AsyncMock(return_value="code1")

        async def _get_token(self: ToonOAuth2Client, code: str) -> OAuth2Token:
            token = OAuth2Token(access_token="a", refresh_token="r")
            self.set_token(token)
            return token

        with (
            patch.object(ToonOAuth2Client, "async_get_token_by_code", _get_token),
            patch.object(
                ToonOAuth2Client,
                "async_get_session_information",
                AsyncMock(return_value=SessionInformation(id="s9", title="Toon")),
            ),
        ):
            assert await manager.async_login(callback) is True

        url, state = callback.await_args.args
        assert urls == [url]
        assert f"state={state}" in url
        authorized.assert_called_once()
        saved = mock_store.async_save.await_args.args[0]
        assert list(saved) == ["s9"]
        assert saved["s9"]["token"]["access_token"] == "a"
        assert manager.state is SessionStatus.AUTHENTICATED
        assert manager.has_client("s9", "default")
        device.async_reset_client.assert_awaited_once_with("s9", "default")

    @pytest.mark.asyncio
    async def test_login_failure_emits_error(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that a rejected code leaves the manager unauthenticated."""
        errors: list[Exception] = []
        manager.register_listener(EVENT_ERROR, errors.append)

        with patch.object(
            ToonOAuth2Client,
            "async_get_token_by_code",
            AsyncMock(side_effect=ToonApiAuthError("Token request failed")),
        ):
            assert await manager.async_login(AsyncMock(return_value="bad")) is False

        assert manager.state is SessionStatus.UNAUTHENTICATED
        assert isinstance(errors[0], ToonApiAuthError)
        mock_store.async_save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_relogin_keeps_stored_session(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that a failed login leaves an existing session authenticated."""
        mock_store.async_load.return_value = {"s1": _record()}

        with patch.object(
            ToonOAuth2Client,
            "async_get_token_by_code",
            AsyncMock(side_effect=ToonApiAuthError("Token request failed")),
        ):
            assert await manager.async_login(AsyncMock(return_value="bad")) is False

        assert manager.state is SessionStatus.AUTHENTICATED
        assert await manager.async_is_authenticated() is True
        mock_store.async_save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rebind_continues_after_device_failure(
        self, manager: SessionManager
    ) -> None:
        """Test that one failing device does not stop the others from rebinding."""
        bad = Mock(id="bad")
        bad.async_reset_client = AsyncMock(side_effect=RuntimeError("boom"))
        good = Mock(id="good")
        good.async_reset_client = AsyncMock()
        manager.register_device(bad)
        manager.register_device(good)
        errors: list[Exception] = []
        manager.register_listener(EVENT_ERROR, errors.append)

        async def _get_token(self: ToonOAuth2Client, code: str) -> OAuth2Token:
            token = OAuth2Token(access_token="a", refresh_token="r")
            self.set_token(token)
            return token

        with (
            patch.object(ToonOAuth2Client, "async_get_token_by_code", _get_token),
            patch.object(
                ToonOAuth2Client,
                "async_get_session_information",
                AsyncMock(return_value=SessionInformation(id="s9", title="Toon")),
            ),
        ):
            assert await manager.async_login(AsyncMock(return_value="code1")) is True

        bad.async_reset_client.assert_awaited_once_with("s9", "default")
        good.async_reset_client.assert_awaited_once_with("s9", "default")
        assert len(errors) == 1
        assert isinstance(errors[0], ToonSessionError)
        assert "boom" in str(errors[0])

    @pytest.mark.asyncio
    async def test_login_timeout_emits_error(self, manager: SessionManager) -> None:
        """Test that a callback timing out fails the login."""
        errors: list[Exception] = []
        manager.register_listener(EVENT_ERROR, errors.append)
        assert await manager.async_login(AsyncMock(side_effect=TimeoutError())) is False
        assert len(errors) == 1


class TestAsyncLogout:
    """Tests for async_logout method."""

    @pytest.mark.asyncio
    async def test_logout_clears_store_and_disables_devices(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that logout removes the session and marks devices unavailable."""
        mock_store.async_load.return_value = {"s1": _record()}
        client = await manager.async_get_saved_client()
        device = Mock()
        device.async_set_unavailable = AsyncMock()
        manager.register_device(device)

        await manager.async_logout()

        mock_store.async_save.assert_awaited_once_with({})
        assert client.closed
        assert not manager.has_client("s1", "default")
        assert manager.state is SessionStatus.UNAUTHENTICATED
        device.async_set_unavailable.assert_awaited_once_with(MESSAGE_LOGGED_OUT)

    @pytest.mark.asyncio
    async def test_logout_without_session_raises(self, manager: SessionManager) -> None:
        """Test that logging out while logged out fails."""
        with pytest.raises(ToonSessionError):
            await manager.async_logout()

    @pytest.mark.asyncio
    async def test_logout_with_two_sessions_raises_integrity_error(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that logout refuses corrupted storage."""
        mock_store.async_load.return_value = {"s1": _record(), "s2": _record()}
        with pytest.raises(ToonSessionIntegrityError):
            await manager.async_logout()
        mock_store.async_save.assert_not_awaited()


class TestAsyncMigrateLegacyAccount:
    """Tests for async_migrate_legacy_account method."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("account", "message"),
        [
            (None, "Missing OAuth2 Account"),
            ({"refreshToken": "r"}, "Missing Access Token"),
            ({"accessToken": "a"}, "Missing Refresh Token"),
        ],
    )
    async def test_rejects_incomplete_account(
        self, manager: SessionManager, account: Any, message: str
    ) -> None:
        """Test that accounts without tokens are rejected."""
        with pytest.raises(ToonMigrationError, match=message):
            await manager.async_migrate_legacy_account(account)

    @pytest.mark.asyncio
    async def test_migrates_account(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that a legacy account becomes the stored session."""
        session = await manager.async_migrate_legacy_account(
            {"accessToken": "a", "refreshToken": "r"}
        )
        saved = mock_store.async_save.await_args.args[0]
        assert list(saved) == [session.session_id]
        assert saved[session.session_id]["token"]["refresh_token"] == "r"
        assert manager.state is SessionStatus.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_keeps_existing_session(
        self, manager: SessionManager, mock_store: Mock
    ) -> None:
        """Test that an existing session wins over the legacy account."""
        mock_store.async_load.return_value = {"s1": _record()}
        session = await manager.async_migrate_legacy_account(
            {"accessToken": "x", "refreshToken": "y"}
        )
        assert session.session_id == "s1"
        mock_store.async_save.assert_not_awaited()

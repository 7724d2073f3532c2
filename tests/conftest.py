"""Pytest configuration and fixtures for Toon tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from custom_components.toon.client import ToonClientConfig, ToonOAuth2Client
from custom_components.toon.models import Agreement, DeviceInfo, OAuth2Token, Session

AGREEMENT_ID = "agreement1"
COMMON_NAME = "eneco-001-123456"


class FakeTimer:
    """Cancellable handle returned by FakeScheduler.call_later."""

    def __init__(self, due: float, callback: Callable[[], Any]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Virtual clock scheduler.

    Timers only fire on advance() and sleeps return immediately after
    moving the clock forward.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.time = start
        self.timers: list[FakeTimer] = []
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback: Callable[[], Any]) -> FakeTimer:
        timer = FakeTimer(self.time + delay, callback)
        self.timers.append(timer)
        return timer

    async def async_sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.time += delay

    @property
    def active_timers(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Move the clock forward and fire every timer that became due."""
        self.time += seconds
        due = [t for t in self.active_timers if t.due <= self.time + 1e-9]
        for timer in sorted(due, key=lambda t: t.due):
            timer.cancelled = True
            timer.callback()


@pytest.fixture
def scheduler() -> FakeScheduler:
    """Fixture providing a virtual clock scheduler."""
    return FakeScheduler()


@pytest.fixture
def client_config() -> ToonClientConfig:
    """Fixture providing an OAuth2 application configuration."""
    return ToonClientConfig(
        client_id="test_client_id",
        client_secret="test_client_secret",
        redirect_uri="https://example.com/api/toon/oauth2/callback",
        callback_url="https://example.com/api/webhook/abc",
    )


@pytest.fixture
def sample_token() -> OAuth2Token:
    """Fixture providing a token without expiry."""
    return OAuth2Token(access_token="access1", refresh_token="refresh1")


@pytest.fixture
def sample_token_response() -> dict[str, Any]:
    """Fixture providing a token endpoint response body."""
    return {
        "access_token": "new_access",
        "refresh_token": "new_refresh",
        "expires_in": 3600,
        "token_type": "bearer",
    }


@pytest.fixture
def sample_agreements_response() -> list[dict[str, Any]]:
    """Fixture providing an agreements API response with one agreement."""
    return [
        {
            "agreementId": AGREEMENT_ID,
            "displayCommonName": COMMON_NAME,
            "street": "Main street",
            "houseNumber": "1",
            "postalCode": "1234AB",
            "city": "AMSTERDAM",
        }
    ]


@pytest.fixture
def sample_status() -> dict[str, Any]:
    """Fixture providing a polled status object."""
    return {
        "thermostatStates": {
            "state": [
                {"id": 0, "tempValue": 2000},
                {"id": 1, "tempValue": 1950},
                {"id": 2, "tempValue": 1600},
                {"id": 3, "tempValue": 1200},
            ]
        },
        "thermostatInfo": {
            "currentDisplayTemp": 2034,
            "currentSetpoint": 2000,
            "activeState": 0,
            "programState": 1,
        },
        "powerUsage": {"value": 350, "dayUsage": 500, "dayLowUsage": 300},
        "gasUsage": {"dayUsage": 1000},
    }


@pytest.fixture
def device_info() -> DeviceInfo:
    """Fixture providing a pairing descriptor."""
    return DeviceInfo(
        name="Toon", display_common_name=COMMON_NAME, agreement_id=AGREEMENT_ID
    )


@pytest.fixture
def mock_client() -> Mock:
    """Fixture providing a mocked OAuth2 client."""
    client = Mock(spec=ToonOAuth2Client)
    client.session_id = "session1"
    client.config_id = "default"
    client.async_get_status = AsyncMock(return_value={})
    client.async_update_state = AsyncMock(return_value=None)
    client.async_get_agreements = AsyncMock(
        return_value=[Agreement(agreement_id=AGREEMENT_ID, display_common_name=COMMON_NAME)]
    )
    client.async_register_webhook_subscription = AsyncMock(return_value=None)
    client.async_unregister_webhook_subscription = AsyncMock(return_value=None)
    client.async_get_registered_webhook_subscriptions = AsyncMock(return_value=[])
    return client


@pytest.fixture
def mock_session_manager(mock_client: Mock) -> Mock:
    """Fixture providing a session manager that knows mock_client."""
    manager = Mock()
    manager.has_client = Mock(return_value=True)
    manager.get_client = Mock(return_value=mock_client)
    return manager


@pytest.fixture
def session(sample_token: OAuth2Token) -> Session:
    """Fixture providing a persisted session."""
    return Session(session_id="session1", token=sample_token, title="Toon")

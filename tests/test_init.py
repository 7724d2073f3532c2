"""Tests for the Toon integration setup helpers."""

from unittest.mock import AsyncMock, Mock

import pytest

from custom_components.toon import ToonRuntimeData, _build_webhook_handler
from custom_components.toon.http import PendingAuthorizations


def _device(common_name: str) -> Mock:
    device = Mock()
    device.display_common_name = common_name
    return device


@pytest.fixture
def runtime() -> ToonRuntimeData:
    """Create runtime data with two devices."""
    return ToonRuntimeData(
        session_manager=Mock(),
        pending=PendingAuthorizations(),
        devices={"a1": _device("cn1"), "a2": _device("cn2")},
    )


class TestWebhookHandler:
    """Tests for the webhook handler."""

    @pytest.mark.asyncio
    async def test_routes_by_common_name(self, runtime: ToonRuntimeData) -> None:
        """Test that a push reaches only the device it names."""
        body = {"commonName": "cn2", "updateDataSet": {"gasUsage": {"dayUsage": 1}}}
        request = Mock()
        request.json = AsyncMock(return_value=body)

        await _build_webhook_handler(runtime)(Mock(), "hook1", request)

        runtime.devices["a1"].process_status_update.assert_not_called()
        runtime.devices["a2"].process_status_update.assert_called_once_with(
            {"body": body}
        )

    @pytest.mark.asyncio
    async def test_without_common_name_reaches_all(
        self, runtime: ToonRuntimeData
    ) -> None:
        """Test that a push without a display name goes to every device."""
        request = Mock()
        request.json = AsyncMock(return_value={"updateDataSet": {}})

        await _build_webhook_handler(runtime)(Mock(), "hook1", request)

        for device in runtime.devices.values():
            device.process_status_update.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalid_json_is_ignored(self, runtime: ToonRuntimeData) -> None:
        """Test that a body that is not JSON is dropped."""
        request = Mock()
        request.json = AsyncMock(side_effect=ValueError("bad"))

        await _build_webhook_handler(runtime)(Mock(), "hook1", request)

        for device in runtime.devices.values():
            device.process_status_update.assert_not_called()

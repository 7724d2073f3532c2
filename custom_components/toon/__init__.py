from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
import voluptuous as vol
from homeassistant.components import persistent_notification, webhook
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.network import get_url
from homeassistant.helpers.storage import Store

from .api import (
    ToonError,
    ToonMigrationError,
    ToonSessionError,
    ToonSessionIntegrityError,
    build_device_infos,
    create_session_client,
)
from .client import ToonClientConfig
from .const import (
    CONF_CALLBACK_URL,
    CONF_CLIENT_ID,
    CONF_CLIENT_SECRET,
    CONF_LEGACY_ACCOUNT,
    CONF_REDIRECT_URI,
    CONF_TENANT_ID,
    CONF_WEBHOOK_ID,
    DEFAULT_TENANT_ID,
    DOMAIN,
    EVENT_AUTHORIZED,
    EVENT_ERROR,
    EVENT_URL,
    OAUTH2_CALLBACK_PATH,
    SERVICE_LOGIN,
    SERVICE_LOGOUT,
    STORAGE_KEY,
    STORAGE_VERSION,
)
from .device import ToonDevice
from .http import PendingAuthorizations, ToonOAuth2CallbackView
from .session_manager import SessionManager

if TYPE_CHECKING:
    from aiohttp import web
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant, ServiceCall

    from .client import ToonOAuth2Client

_LOGGER = logging.getLogger(__name__)

NOTIFICATION_ID = f"{DOMAIN}_login"
DATA_PENDING = f"{DOMAIN}_pending_authorizations"


@dataclass
class ToonRuntimeData:
    """Objects shared by a Toon config entry."""

    session_manager: SessionManager
    pending: PendingAuthorizations
    devices: dict[str, ToonDevice] = field(default_factory=dict)
    unsubscribers: list[Any] = field(default_factory=list)


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Setting up Toon integration for entry %s", entry.entry_id)

    session = create_session_client(hass)
    webhook_id = entry.data[CONF_WEBHOOK_ID]
    config = ToonClientConfig(
        client_id=entry.data[CONF_CLIENT_ID],
        client_secret=entry.data[CONF_CLIENT_SECRET],
        redirect_uri=entry.data.get(CONF_REDIRECT_URI)
        or f"{get_url(hass)}{OAUTH2_CALLBACK_PATH}",
        tenant_id=entry.data.get(CONF_TENANT_ID) or DEFAULT_TENANT_ID,
        callback_url=entry.data.get(CONF_CALLBACK_URL)
        or webhook.async_generate_url(hass, webhook_id),
    )
    manager = SessionManager(session, config, Store(hass, STORAGE_VERSION, STORAGE_KEY))
    pending = hass.data.get(DATA_PENDING)
    if pending is None:
        # Views cannot be unregistered, one view serves every entry reload
        pending = hass.data[DATA_PENDING] = PendingAuthorizations()
        hass.http.register_view(ToonOAuth2CallbackView(pending))
    runtime = ToonRuntimeData(session_manager=manager, pending=pending)

    if CONF_LEGACY_ACCOUNT in entry.data:
        await _async_migrate_legacy_account(hass, entry, manager)

    try:
        client = await manager.async_get_saved_client()
    except ToonSessionIntegrityError:
        _LOGGER.exception("Invalid stored Toon sessions for entry %s", entry.entry_id)
        return False

    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = runtime
    _register_login_notifications(hass, runtime)

    webhook.async_register(
        hass,
        DOMAIN,
        "Toon",
        webhook_id,
        _build_webhook_handler(runtime),
    )
    _register_services(hass)

    if client is None:
        _LOGGER.info("Not logged in to Toon, call %s.%s", DOMAIN, SERVICE_LOGIN)
        return True

    try:
        await _async_setup_devices(hass, entry, runtime, client)
    except (ToonError, httpx.HTTPError) as err:
        _LOGGER.error("Could not set up Toon devices for %s: %s", entry.entry_id, err)

    return True


async def _async_migrate_legacy_account(
    hass: HomeAssistant, entry: ConfigEntry, manager: SessionManager
) -> None:
    try:
        await manager.async_migrate_legacy_account(entry.data[CONF_LEGACY_ACCOUNT])
    except ToonMigrationError as err:
        _LOGGER.error("Could not migrate legacy Toon account: %s", err)
        return

    data = {k: v for k, v in entry.data.items() if k != CONF_LEGACY_ACCOUNT}
    hass.config_entries.async_update_entry(entry, data=data)


async def _async_setup_devices(
    hass: HomeAssistant,
    entry: ConfigEntry,
    runtime: ToonRuntimeData,
    client: ToonOAuth2Client,
) -> None:
    agreements = await client.async_get_agreements()
    _LOGGER.info("Retrieved %d Toon agreements", len(agreements))

    manager = runtime.session_manager
    for info in build_device_infos(agreements):
        if info.agreement_id in runtime.devices:
            continue
        device = ToonDevice(manager, info, client.session_id, client.config_id)
        runtime.devices[info.agreement_id] = device
        runtime.unsubscribers.append(manager.register_device(device))
        entry.async_create_background_task(
            hass, device.async_init(), f"{DOMAIN}_init_{info.agreement_id}"
        )


def _build_webhook_handler(runtime: ToonRuntimeData) -> Any:
    async def _async_handle_webhook(
        hass: HomeAssistant, webhook_id: str, request: web.Request
    ) -> None:
        try:
            body = await request.json()
        except ValueError:
            _LOGGER.warning("Received webhook %s without JSON body", webhook_id)
            return

        common_name = body.get("commonName") if isinstance(body, dict) else None
        envelope = {"body": body}
        for device in runtime.devices.values():
            if common_name is None or device.display_common_name == common_name:
                device.process_status_update(envelope)

    return _async_handle_webhook


def _register_login_notifications(
    hass: HomeAssistant, runtime: ToonRuntimeData
) -> None:
    manager = runtime.session_manager

    def _on_url(url: str) -> None:
        persistent_notification.async_create(
            hass,
            f"[Log in to Toon]({url})",
            title="Toon",
            notification_id=NOTIFICATION_ID,
        )

    def _on_authorized(_: Any) -> None:
        persistent_notification.async_dismiss(hass, NOTIFICATION_ID)

    def _on_error(err: Exception) -> None:
        persistent_notification.async_create(
            hass, str(err), title="Toon", notification_id=NOTIFICATION_ID
        )

    runtime.unsubscribers.extend(
        [
            manager.register_listener(EVENT_URL, _on_url),
            manager.register_listener(EVENT_AUTHORIZED, _on_authorized),
            manager.register_listener(EVENT_ERROR, _on_error),
        ]
    )


def _register_services(hass: HomeAssistant) -> None:
    if hass.services.has_service(DOMAIN, SERVICE_LOGIN):
        return

    def _entries() -> list[tuple[str, ToonRuntimeData]]:
        return list(hass.data.get(DOMAIN, {}).items())

    async def _async_login(call: ServiceCall) -> None:
        for entry_id, runtime in _entries():
            entry = hass.config_entries.async_get_entry(entry_id)
            hass.async_create_background_task(
                _async_run_login(hass, entry, runtime), f"{DOMAIN}_login"
            )

    async def _async_logout(call: ServiceCall) -> None:
        for _, runtime in _entries():
            try:
                await runtime.session_manager.async_logout()
            except ToonSessionError as err:
                raise HomeAssistantError(f"Toon logout failed: {err}") from err

    hass.services.async_register(
        DOMAIN, SERVICE_LOGIN, _async_login, schema=vol.Schema({})
    )
    hass.services.async_register(
        DOMAIN, SERVICE_LOGOUT, _async_logout, schema=vol.Schema({})
    )


async def _async_run_login(
    hass: HomeAssistant, entry: ConfigEntry | None, runtime: ToonRuntimeData
) -> None:
    manager = runtime.session_manager
    if not await manager.async_login(runtime.pending.async_wait_for_code):
        return
    if entry is None or runtime.devices:
        return

    # First login, no devices yet to rebind
    try:
        client = await manager.async_get_client_for_session()
        await _async_setup_devices(hass, entry, runtime, client)
    except (ToonError, httpx.HTTPError) as err:
        _LOGGER.error("Could not set up Toon devices after login: %s", err)


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Unloading Toon integration for entry %s", entry.entry_id)

    runtime: ToonRuntimeData | None = hass.data.get(DOMAIN, {}).pop(
        entry.entry_id, None
    )
    webhook.async_unregister(hass, entry.data[CONF_WEBHOOK_ID])
    if runtime is None:
        return True

    for device in runtime.devices.values():
        await device.async_removed()
    for unsubscribe in runtime.unsubscribers:
        unsubscribe()
    runtime.session_manager.close()

    if not hass.data.get(DOMAIN):
        hass.services.async_remove(DOMAIN, SERVICE_LOGIN)
        hass.services.async_remove(DOMAIN, SERVICE_LOGOUT)

    _LOGGER.debug("Cleaned up data for entry %s", entry.entry_id)
    return True

"""
Configuration flow for the Toon thermostat integration.

This module handles the setup of the Toon OAuth2 application through
Home Assistant's config flow system. Logging in to a Toon account is done
afterwards with the toon.login service.
"""

import logging
from typing import Any

import voluptuous as vol
from homeassistant.components import webhook
from homeassistant.config_entries import ConfigFlow, ConfigFlowResult

from .api import normalize_redirect_uri
from .const import (
    CONF_CALLBACK_URL,
    CONF_CLIENT_ID,
    CONF_CLIENT_SECRET,
    CONF_REDIRECT_URI,
    CONF_TENANT_ID,
    CONF_WEBHOOK_ID,
    DEFAULT_TENANT_ID,
    DOMAIN,
    ERROR_INVALID_AUTH,
)

_LOGGER = logging.getLogger(__name__)


class ToonConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle configuration flow for the Toon integration."""

    VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """
        Handle the initial step of the config flow.

        Args:
            user_input: User input data containing the OAuth2 application.

        Returns:
            ConfigFlowResult indicating the next step or errors.

        """
        errors: dict[str, str] = {}

        if user_input is not None:
            client_id = user_input[CONF_CLIENT_ID].strip()
            client_secret = user_input[CONF_CLIENT_SECRET].strip()

            if not client_id or not client_secret:
                _LOGGER.warning("Missing client credentials (%s)", ERROR_INVALID_AUTH)
                errors["base"] = ERROR_INVALID_AUTH
            else:
                # One session per installation, so one entry per installation
                await self.async_set_unique_id(DOMAIN)
                self._abort_if_unique_id_configured()

                data = {
                    CONF_CLIENT_ID: client_id,
                    CONF_CLIENT_SECRET: client_secret,
                    CONF_TENANT_ID: user_input.get(CONF_TENANT_ID) or DEFAULT_TENANT_ID,
                    CONF_WEBHOOK_ID: webhook.async_generate_id(),
                }
                if user_input.get(CONF_REDIRECT_URI):
                    data[CONF_REDIRECT_URI] = normalize_redirect_uri(
                        user_input[CONF_REDIRECT_URI]
                    )
                if user_input.get(CONF_CALLBACK_URL):
                    data[CONF_CALLBACK_URL] = user_input[CONF_CALLBACK_URL]

                return self.async_create_entry(title="Toon", data=data)

        return self.async_show_form(
            step_id="user",
            data_schema=vol.Schema(
                {
                    vol.Required(CONF_CLIENT_ID): str,
                    vol.Required(CONF_CLIENT_SECRET): str,
                    vol.Optional(CONF_TENANT_ID, default=DEFAULT_TENANT_ID): str,
                    vol.Optional(CONF_REDIRECT_URI): str,
                    vol.Optional(CONF_CALLBACK_URL): str,
                }
            ),
            errors=errors,
        )

"""Constants for the Toon thermostat integration.

This module contains all the constants used throughout the integration,
including API endpoints, configuration keys, and wire values.
"""

DOMAIN = "toon"

API_URL = "https://api.toon.eu/toon/v3/"
TOKEN_URL = "https://api.toon.eu/token"
AUTHORIZATION_URL = "https://api.toon.eu/authorize"
ISSUER = "identity.toon.eu"
DEFAULT_TENANT_ID = "eneco"
DEFAULT_SCOPES: list[str] = []
DEFAULT_CONFIG_ID = "default"

SUBSCRIBED_ACTIONS = ["Thermostat", "PowerUsage", "GasUsage"]

OAUTH2_CALLBACK_PATH = "/api/toon/oauth2/callback"

STORAGE_KEY = f"{DOMAIN}.sessions"
STORAGE_VERSION = 1

TOKEN_EXPIRY_MARGIN = 60  # Seconds before real expiry a token counts as expired

SUBSCRIPTION_MAX_RETRIES = 10
SUBSCRIPTION_RETRY_BASE = 6  # Seconds, doubled per retry
DEBOUNCE_DELAY = 0.5

CONF_CLIENT_ID = "client_id"
CONF_CLIENT_SECRET = "client_secret"
CONF_TENANT_ID = "tenant_id"
CONF_REDIRECT_URI = "redirect_uri"
CONF_WEBHOOK_ID = "webhook_id"
CONF_CALLBACK_URL = "callback_url"
CONF_LEGACY_ACCOUNT = "oauth2_account"

SERVICE_LOGIN = "login"
SERVICE_LOGOUT = "logout"

EVENT_URL = "url"
EVENT_AUTHORIZED = "authorized"
EVENT_ERROR = "error"

CAPABILITY_MEASURE_TEMPERATURE = "measure_temperature"
CAPABILITY_TARGET_TEMPERATURE = "target_temperature"
CAPABILITY_TEMPERATURE_STATE = "temperature_state"
CAPABILITY_MEASURE_HUMIDITY = "measure_humidity"
CAPABILITY_MEASURE_POWER = "measure_power"
CAPABILITY_METER_POWER = "meter_power"
CAPABILITY_METER_GAS = "meter_gas"

DEFAULT_CAPABILITIES = frozenset(
    {
        CAPABILITY_MEASURE_TEMPERATURE,
        CAPABILITY_TARGET_TEMPERATURE,
        CAPABILITY_TEMPERATURE_STATE,
        CAPABILITY_MEASURE_POWER,
        CAPABILITY_METER_POWER,
        CAPABILITY_METER_GAS,
    }
)

ERROR_INVALID_AUTH = "invalid_auth"

MESSAGE_CONNECTING = "Connecting to Toon..."
MESSAGE_RELOGIN_FAILED = "Re-login failed, please log in again"
MESSAGE_DEVICE_NOT_FOUND = "This Toon was not found in the logged in account"
MESSAGE_LOGGED_OUT = "Logged out of Toon"
MESSAGE_WEBHOOK_REGISTRATION_FAILED = (
    "Could not subscribe to Toon updates, data may be outdated"
)
MESSAGE_SET_TARGET_TEMPERATURE_FAILED = "Could not set target temperature ({error})"
MESSAGE_SET_TEMPERATURE_STATE_FAILED = "Could not set temperature state ({error})"
MESSAGE_ENABLE_PROGRAM_FAILED = "Could not enable program ({error})"
MESSAGE_DISABLE_PROGRAM_FAILED = "Could not disable program ({error})"
MESSAGE_LOGIN_FAILED = "Login failed ({error})"

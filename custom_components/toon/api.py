"""API client for the Toon thermostat cloud.

This module provides functions to interact with the Toon API,
including the OAuth2 handshake, agreements, status, thermostat writes,
and webhook subscription management.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx
from homeassistant.helpers.httpx_client import create_async_httpx_client
from httpx_retries import Retry, RetryTransport

from .const import (
    API_URL,
    AUTHORIZATION_URL,
    DEFAULT_TENANT_ID,
    ISSUER,
    SUBSCRIBED_ACTIONS,
    TOKEN_URL,
)
from .models import Agreement, DeviceInfo, OAuth2Token

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

_LOGGER = logging.getLogger(__name__)

# HTTP status codes
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403


class ToonError(Exception):
    """Base exception for the Toon integration."""


class ToonApiClientError(ToonError):
    """Exception raised when a request to the Toon API fails."""


class ToonApiAuthError(ToonApiClientError):
    """Exception raised for authentication errors."""


class ToonSessionError(ToonError):
    """Exception raised when no usable session exists for an operation."""


class ToonSessionIntegrityError(ToonSessionError):
    """Exception raised when more than one persisted session is found."""


class ToonMigrationError(ToonSessionError):
    """Exception raised when legacy account data cannot be migrated."""


class ToonSubscriptionError(ToonError):
    """Exception raised when webhook subscription registration gave up."""


class ToonWriteError(ToonError):
    """Exception raised when a thermostat write failed, with a user message."""


def normalize_redirect_uri(redirect_uri: str) -> str:
    """Strip trailing slashes, the token endpoint rejects them."""
    return redirect_uri.rstrip("/")


def create_token_headers() -> dict[str, str]:
    """Create HTTP headers for token endpoint requests."""
    return {
        "accept": "application/json",
        "issuer": ISSUER,
    }


def create_headers(access_token: str) -> dict[str, str]:
    """Create HTTP headers for authenticated API requests.

    Args:
        access_token: OAuth2 access token.

    Returns:
        Dictionary containing HTTP headers for API requests.

    """
    return {
        "accept": "application/json",
        "authorization": f"Bearer {access_token}",
    }


def is_http_error(status: int) -> bool:
    """Check if HTTP status code indicates an error."""
    return status >= HTTP_BAD_REQUEST


def is_auth_error(status: int) -> bool:
    """Check if HTTP status code indicates an authentication error."""
    return status in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN)


def validate_response(response: httpx.Response) -> Any:
    """Validate HTTP response and return parsed JSON data.

    Args:
        response: HTTP response object to validate.

    Returns:
        Parsed JSON data from response, or None for an empty body.

    Raises:
        ToonApiAuthError: If authentication error is detected.
        ToonApiClientError: If the request failed.

    """
    if is_http_error(response.status_code):
        if is_auth_error(response.status_code):
            auth_error = f"Authentication error: {response.status_code}"
            raise ToonApiAuthError(auth_error)
        client_error = f"Request failed: {response.status_code}"
        raise ToonApiClientError(client_error)

    if not response.content:
        return None

    try:
        return response.json()
    except ValueError as err:
        invalid_body = f"Invalid JSON in response: {err}"
        raise ToonApiClientError(invalid_body) from err


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    state: str,
    scopes: list[str] | None = None,
    tenant_id: str | None = None,
) -> str:
    """Build the authorization URL the user has to visit.

    The Toon authorize endpoint requires the tenant_id and issuer query
    parameters in addition to the standard OAuth2 ones.
    """
    query = {
        "state": state,
        "tenant_id": tenant_id or DEFAULT_TENANT_ID,
        "client_id": client_id,
        "issuer": ISSUER,
        "response_type": "code",
        "scope": " ".join(scopes or []),
        "redirect_uri": normalize_redirect_uri(redirect_uri),
    }
    return f"{AUTHORIZATION_URL}?{urlencode(query)}"


def extract_agreements(data: Any) -> list[Agreement]:
    """Extract agreements from the agreements API response."""
    if not isinstance(data, list):
        return []
    return [
        Agreement(
            agreement_id=str(a["agreementId"]),
            display_common_name=str(a.get("displayCommonName", "")),
            street=str(a.get("street", "")),
            house_number=str(a.get("houseNumber", "")),
            postal_code=str(a.get("postalCode", "")),
            city=str(a.get("city", "")),
        )
        for a in data
        if isinstance(a, dict) and "agreementId" in a
    ]


def build_device_infos(agreements: list[Agreement]) -> list[DeviceInfo]:
    """Build pairing descriptors for a list of agreements.

    A single agreement is simply named "Toon", multiple agreements are told
    apart by their address.
    """

    def _name(agreement: Agreement) -> str:
        if len(agreements) <= 1:
            return "Toon"
        city = agreement.city[:1] + agreement.city[1:].lower()
        return (
            f"Toon: {agreement.street} {agreement.house_number} , "
            f"{agreement.postal_code} {city}"
        )

    return [
        DeviceInfo(
            name=_name(agreement),
            display_common_name=agreement.display_common_name,
            agreement_id=agreement.agreement_id,
        )
        for agreement in agreements
    ]


def create_session_client(hass: HomeAssistant) -> httpx.AsyncClient:
    """Create HTTP client with retry logic for the Toon API.

    Args:
        hass: Home Assistant instance.

    Returns:
        Configured httpx AsyncClient with retry transport.

    """
    base_client = create_async_httpx_client(hass, timeout=10.0)
    # Application code owns retries, subscription registration uses RetryRunner
    retry = Retry(total=0)
    base_client._transport = RetryTransport(  # noqa: SLF001
        transport=base_client._transport,  # noqa: SLF001
        retry=retry,
    )
    return base_client


async def async_get_token_by_code(
    session: httpx.AsyncClient,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    code: str,
    tenant_id: str | None = None,
) -> OAuth2Token:
    """Exchange an authorization code for a token.

    Raises:
        ToonApiAuthError: If the exchange was rejected.

    """
    form = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uri": normalize_redirect_uri(redirect_uri),
        "code": code,
        "tenant_id": tenant_id or DEFAULT_TENANT_ID,
    }

    _LOGGER.debug("Exchanging authorization code for token")
    return await _async_token_request(session, form)


async def async_refresh_token(
    session: httpx.AsyncClient,
    client_id: str,
    client_secret: str,
    refresh_token: str,
    tenant_id: str | None = None,
) -> OAuth2Token:
    """Obtain a new token with a refresh token.

    Raises:
        ToonApiAuthError: If the refresh was rejected.

    """
    form = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "tenant_id": tenant_id or DEFAULT_TENANT_ID,
    }

    _LOGGER.debug("Refreshing Toon access token")
    token = await _async_token_request(session, form)
    if token.refresh_token is None:
        token = OAuth2Token(
            access_token=token.access_token,
            refresh_token=refresh_token,
            expires_at=token.expires_at,
            token_type=token.token_type,
        )
    return token


async def _async_token_request(
    session: httpx.AsyncClient, form: dict[str, str]
) -> OAuth2Token:
    response = await session.post(TOKEN_URL, data=form, headers=create_token_headers())
    try:
        data = validate_response(response)
    except ToonApiClientError as err:
        token_error = f"Token request failed: {err}"
        raise ToonApiAuthError(token_error) from err

    if not isinstance(data, dict) or "access_token" not in data:
        token_error = "Token response did not contain an access token"
        raise ToonApiAuthError(token_error)
    return OAuth2Token.from_response(data)


async def async_request(
    session: httpx.AsyncClient,
    access_token: str,
    method: str,
    path: str,
    json: Any = None,
) -> Any:
    """Perform an authenticated request relative to the API base URL.

    Raises:
        ToonApiAuthError: If authentication fails.
        ToonApiClientError: If API request fails.

    """
    url = f"{API_URL}{path}"
    _LOGGER.debug("%s %s", method, url)
    response = await session.request(
        method, url, headers=create_headers(access_token), json=json
    )
    return validate_response(response)


async def async_get_agreements(
    session: httpx.AsyncClient, access_token: str
) -> list[Agreement]:
    """Fetch all agreements (registered Toon devices) of the account."""
    data = await async_request(session, access_token, "GET", "agreements")
    agreements = extract_agreements(data)
    _LOGGER.debug("Retrieved %d agreements from Toon API", len(agreements))
    return agreements


async def async_get_status(
    session: httpx.AsyncClient, access_token: str, agreement_id: str
) -> dict[str, Any]:
    """Fetch the status object of an agreement."""
    return await async_request(session, access_token, "GET", f"{agreement_id}/status")


async def async_update_thermostat(
    session: httpx.AsyncClient,
    access_token: str,
    agreement_id: str,
    data: dict[str, Any],
) -> Any:
    """Write a full thermostat info object."""
    return await async_request(
        session, access_token, "PUT", f"{agreement_id}/thermostat", json=data
    )


async def async_subscribe_webhook(
    session: httpx.AsyncClient,
    access_token: str,
    agreement_id: str,
    application_id: str,
    callback_url: str,
) -> Any:
    """Subscribe to webhook events for an agreement."""
    payload = {
        "applicationId": application_id,
        "callbackUrl": callback_url,
        "subscribedActions": SUBSCRIBED_ACTIONS,
    }
    return await async_request(
        session, access_token, "POST", f"{agreement_id}/webhooks", json=payload
    )


async def async_unsubscribe_webhook(
    session: httpx.AsyncClient,
    access_token: str,
    agreement_id: str,
    application_id: str,
) -> Any:
    """Cancel the webhook subscription of an application."""
    return await async_request(
        session,
        access_token,
        "DELETE",
        f"{agreement_id}/webhooks/{application_id}",
    )


async def async_get_webhooks(
    session: httpx.AsyncClient, access_token: str, agreement_id: str
) -> Any:
    """Return the currently registered webhook subscriptions."""
    return await async_request(
        session, access_token, "GET", f"{agreement_id}/webhooks"
    )

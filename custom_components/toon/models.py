"""Data models for Toon thermostat integration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import IntEnum, StrEnum
from typing import Any

from .const import DEFAULT_CAPABILITIES, DEFAULT_CONFIG_ID, TOKEN_EXPIRY_MARGIN


class TemperatureState(IntEnum):
    """Thermostat presets as identified by the Toon API."""

    COMFORT = 0
    HOME = 1
    SLEEP = 2
    AWAY = 3
    NONE = -1

    @property
    def preset(self) -> str:
        """Return the preset name used for the temperature_state capability."""
        return self.name.lower()

    @classmethod
    def from_preset(cls, preset: str) -> TemperatureState:
        """Return the state for a preset name, raising KeyError when unknown."""
        return cls[preset.upper()]

    @classmethod
    def preset_for(cls, state_id: Any) -> str | None:
        """Return the preset name for a wire value, None when unmapped."""
        try:
            return cls(state_id).preset
        except ValueError:
            return None


class ProgramState(IntEnum):
    """Values of the thermostat programState field."""

    OFF = 0
    ON = 1
    OVERRIDE = 2


class SessionStatus(StrEnum):
    """Authentication state of the session manager."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class SubscriptionStatus(StrEnum):
    """State of a device's webhook subscription."""

    IDLE = "idle"
    REGISTERING = "registering"
    ACTIVE = "active"


@dataclass(frozen=True)
class OAuth2Token:
    """Represents an OAuth2 token with its expiration timestamp."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "bearer"

    @classmethod
    def from_response(
        cls, data: dict[str, Any], now: datetime | None = None
    ) -> OAuth2Token:
        """Create a token from a token endpoint response body."""
        now = now or datetime.now(UTC)
        expires_in = data.get("expires_in")
        expires_at = (
            now + timedelta(seconds=int(expires_in)) if expires_in is not None else None
        )
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            token_type=data.get("token_type", "bearer"),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuth2Token:
        """Create a token from its stored representation."""
        expires_at = data.get("expires_at")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=(
                datetime.fromtimestamp(expires_at, UTC)
                if expires_at is not None
                else None
            ),
            token_type=data.get("token_type", "bearer"),
        )

    def as_dict(self) -> dict[str, Any]:
        """Return the stored representation of this token."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": (
                int(self.expires_at.timestamp()) if self.expires_at else None
            ),
            "token_type": self.token_type,
        }

    def is_expired(
        self, now: datetime | None = None, margin: int = TOKEN_EXPIRY_MARGIN
    ) -> bool:
        """Return True if the token is expired or about to expire."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        return now + timedelta(seconds=margin) >= self.expires_at


@dataclass
class Session:
    """One authenticated credential set tied to a single Toon account."""

    session_id: str
    config_id: str = DEFAULT_CONFIG_ID
    token: OAuth2Token | None = None
    title: str | None = None

    @classmethod
    def from_record(cls, session_id: str, record: dict[str, Any]) -> Session:
        """Create a session from a persisted store record."""
        token = record.get("token")
        return cls(
            session_id=session_id,
            config_id=record.get("config_id", DEFAULT_CONFIG_ID),
            token=OAuth2Token.from_dict(token) if token else None,
            title=record.get("title"),
        )

    def as_record(self) -> dict[str, Any]:
        """Return the persisted store record for this session."""
        return {
            "config_id": self.config_id,
            "title": self.title,
            "token": self.token.as_dict() if self.token else None,
        }


@dataclass(frozen=True)
class SessionInformation:
    """Session metadata derived from the provider after authorization."""

    id: str
    title: str | None


@dataclass(frozen=True)
class Agreement:
    """Represents a Toon agreement (one physical installation)."""

    agreement_id: str
    display_common_name: str
    street: str = ""
    house_number: str = ""
    postal_code: str = ""
    city: str = ""


@dataclass(frozen=True)
class DeviceInfo:
    """Pairing descriptor for a Toon device."""

    name: str
    display_common_name: str
    agreement_id: str


@dataclass
class DeviceState:
    """In-memory state of a Toon device, mutated by reconciliation."""

    display_common_name: str
    agreement_id: str
    thermostat_info: dict[str, Any] = field(default_factory=dict)
    power_usage: dict[str, Any] = field(default_factory=dict)
    gas_usage: dict[str, Any] = field(default_factory=dict)
    temperature_states: dict[int, int] = field(default_factory=dict)
    capabilities: set[str] = field(default_factory=lambda: set(DEFAULT_CAPABILITIES))


@dataclass
class SubscriptionState:
    """Per-device webhook subscription state, written only by the scheduler."""

    status: SubscriptionStatus = SubscriptionStatus.IDLE
    expires_at: datetime | None = None
    retry_count: int = 0

    @property
    def registering(self) -> bool:
        """Return True while a registration attempt is in flight."""
        return self.status is SubscriptionStatus.REGISTERING


@dataclass(frozen=True)
class CapabilityUpdate:
    """A single capability value change produced by reconciliation."""

    capability: str
    value: Any


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of merging one status payload into device state."""

    state: DeviceState
    updates: list[CapabilityUpdate]
    time_to_live: float | None = None
    ignored: bool = False

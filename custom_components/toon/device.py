"""Toon device: state, capabilities, write path and subscription upkeep.

A device is bound to one agreement. It holds a non-owning reference to
the OAuth2 client of the current session, which the session manager
swaps out after a new login.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from .api import ToonError, ToonSessionError, ToonWriteError
from .const import (
    CAPABILITY_TARGET_TEMPERATURE,
    CAPABILITY_TEMPERATURE_STATE,
    DEBOUNCE_DELAY,
    MESSAGE_CONNECTING,
    MESSAGE_DEVICE_NOT_FOUND,
    MESSAGE_DISABLE_PROGRAM_FAILED,
    MESSAGE_ENABLE_PROGRAM_FAILED,
    MESSAGE_RELOGIN_FAILED,
    MESSAGE_SET_TARGET_TEMPERATURE_FAILED,
    MESSAGE_SET_TEMPERATURE_STATE_FAILED,
)
from .models import DeviceInfo, DeviceState, ProgramState, TemperatureState
from .reconciler import hundredths_to_celsius, reconcile, round_half_up, wrap_status
from .scheduler import Debouncer, Scheduler
from .subscription import SubscriptionScheduler

if TYPE_CHECKING:
    from collections.abc import Callable

    from .client import ToonOAuth2Client
    from .session_manager import SessionManager

_LOGGER = logging.getLogger(__name__)

# Errors a provider call can end in
REQUEST_ERRORS = (ToonError, httpx.HTTPError)


class ToonDevice:
    """A Toon thermostat bound to one agreement."""

    def __init__(
        self,
        session_manager: SessionManager,
        info: DeviceInfo,
        session_id: str,
        config_id: str,
        scheduler: Scheduler | None = None,
        debounce_delay: float = DEBOUNCE_DELAY,
    ) -> None:
        self._session_manager = session_manager
        self._scheduler = scheduler or Scheduler()
        self.name = info.name
        self.session_id = session_id
        self.config_id = config_id
        self.state = DeviceState(
            display_common_name=info.display_common_name,
            agreement_id=info.agreement_id,
        )
        self.client: ToonOAuth2Client | None = (
            session_manager.get_client(session_id, config_id)
            if session_manager.has_client(session_id, config_id)
            else None
        )

        self.available = False
        self.unavailable_reason: str | None = None
        self.warning: str | None = None
        self._values: dict[str, Any] = {}
        self._listeners: list[Callable[[ToonDevice], None]] = []

        self.subscription = SubscriptionScheduler(
            info.agreement_id,
            lambda: self.client,
            self._scheduler,
            self.async_set_warning,
        )
        self._target_temperature_debouncer = Debouncer(
            self._scheduler, debounce_delay, self._async_on_target_temperature
        )
        self._temperature_state_debouncer = Debouncer(
            self._scheduler, debounce_delay, self._async_on_temperature_state
        )

    @property
    def id(self) -> str:
        """Return the agreement id of this device."""
        return self.state.agreement_id

    @property
    def display_common_name(self) -> str:
        return self.state.display_common_name

    def register_listener(
        self, callback: Callable[[ToonDevice], None]
    ) -> Callable[[], None]:
        """Register a callback for capability, availability and warning changes.

        Returns:
            A function to unregister the callback.

        """
        self._listeners.append(callback)

        def unregister() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    def _notify(self) -> None:
        for callback in self._listeners:
            try:
                callback(self)
            except Exception:
                _LOGGER.exception("Error in device listener")

    def has_capability(self, capability: str) -> bool:
        return capability in self.state.capabilities

    def get_capability_value(self, capability: str) -> Any:
        return self._values.get(capability)

    def set_capability_value(self, capability: str, value: Any) -> None:
        """Set a capability value.

        Raises:
            ValueError: If the device does not have the capability.

        """
        if capability not in self.state.capabilities:
            missing = f"Device {self.id} has no capability {capability}"
            raise ValueError(missing)
        self._values[capability] = value
        self._notify()

    async def async_set_available(self) -> None:
        self.available = True
        self.unavailable_reason = None
        self._notify()

    async def async_set_unavailable(self, reason: str | None = None) -> None:
        self.available = False
        self.unavailable_reason = reason
        self._notify()

    async def async_set_warning(self, warning: str | None) -> None:
        self.warning = warning
        self._notify()

    def _require_client(self) -> ToonOAuth2Client:
        if self.client is None:
            no_client = f"Device {self.id} has no OAuth2 client"
            raise ToonSessionError(no_client)
        return self.client

    async def async_init(self) -> None:
        """Fetch initial status and start the webhook subscription."""
        _LOGGER.debug("async_init() %s", self.id)
        await self.async_set_unavailable(MESSAGE_CONNECTING)

        results = await asyncio.gather(
            self.async_get_status_update(),
            self.subscription.async_register_subscription(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                _LOGGER.error(
                    "Error while fetching status or registering subscription "
                    "for %s: %s",
                    self.id,
                    result,
                )

        await self.async_set_available()
        _LOGGER.debug("async_init() %s -> success", self.id)

    async def async_reset_client(self, session_id: str, config_id: str) -> None:
        """Bind the client of another session to this device.

        The device stays available only if its agreement is part of the
        account the new session belongs to.
        """
        self.session_id = session_id
        self.config_id = config_id

        if not self._session_manager.has_client(session_id, config_id):
            _LOGGER.error("OAuth2 client reset failed for %s", self.id)
            await self.async_set_unavailable(MESSAGE_RELOGIN_FAILED)
            return

        self.client = self._session_manager.get_client(session_id, config_id)

        agreements = await self.client.async_get_agreements()
        if any(a.agreement_id == self.id for a in agreements):
            await self.async_set_available()
            return

        _LOGGER.warning("Agreement %s not found in new session", self.id)
        await self.async_set_unavailable(MESSAGE_DEVICE_NOT_FOUND)

    async def async_get_status_update(self) -> None:
        """Poll the status endpoint and process the result."""
        _LOGGER.debug("async_get_status_update() %s", self.id)
        try:
            data = await self._require_client().async_get_status(self.id)
        except REQUEST_ERRORS as err:
            _LOGGER.error("Failed to retrieve status update for %s: %s", self.id, err)
            return
        self.process_status_update(wrap_status(data))

    def process_status_update(self, envelope: Any) -> None:
        """Merge a polled or pushed status envelope into this device."""
        try:
            result = reconcile(self.state, envelope)
        except Exception:
            _LOGGER.exception("Failed to reconcile status for %s", self.id)
            return

        if result.ignored:
            return

        if result.time_to_live is not None:
            self.subscription.schedule_renewal(result.time_to_live)

        self.state = result.state
        for update in result.updates:
            self._values[update.capability] = update.value
        self._notify()

    async def async_set_target_temperature(self, temperature: Any) -> float:
        """Set a target temperature, coalescing rapid calls."""
        return await self._target_temperature_debouncer(temperature)

    async def async_set_temperature_state(
        self, state: str, resume_program: bool = False
    ) -> str:
        """Activate a preset, coalescing rapid calls."""
        return await self._temperature_state_debouncer(state, resume_program)

    async def _async_on_target_temperature(self, temperature: Any) -> float:
        _LOGGER.debug("Target temperature requested for %s: %s", self.id, temperature)
        if not isinstance(temperature, (int, float)) or isinstance(temperature, bool):
            _LOGGER.error("Invalid target temperature: %s", temperature)
            raise ToonWriteError(
                MESSAGE_SET_TARGET_TEMPERATURE_FAILED.format(
                    error="invalid_temperature"
                )
            )
        return await self.async_write_target_temperature(
            round_half_up(temperature, 0.5)
        )

    async def async_write_target_temperature(self, temperature: float) -> float:
        """Override the program with a manual target temperature.

        The new value is shown right away and kept even if the write fails.
        """
        data = {
            **self.state.thermostat_info,
            "currentSetpoint": round(temperature * 100),
            "programState": int(ProgramState.OVERRIDE),
            "activeState": int(TemperatureState.NONE),
        }
        _LOGGER.debug("Setting target temperature of %s to %s", self.id, temperature)

        self.set_capability_value(CAPABILITY_TARGET_TEMPERATURE, temperature)

        try:
            await self._require_client().async_update_state(self.id, data)
        except REQUEST_ERRORS as err:
            _LOGGER.error(
                "Failed to set target temperature of %s to %s: %s",
                self.id,
                temperature,
                err,
            )
            raise ToonWriteError(
                MESSAGE_SET_TARGET_TEMPERATURE_FAILED.format(error=err)
            ) from err

        self.set_capability_value(
            CAPABILITY_TEMPERATURE_STATE, TemperatureState.NONE.preset
        )
        _LOGGER.debug("Target temperature of %s set to %s", self.id, temperature)
        return temperature

    async def _async_on_temperature_state(
        self, state: str, resume_program: bool = False
    ) -> str:
        try:
            state_id = TemperatureState.from_preset(state)
        except (KeyError, AttributeError) as err:
            raise ToonWriteError(
                MESSAGE_SET_TEMPERATURE_STATE_FAILED.format(error=f"unknown {state}")
            ) from err

        program_state = ProgramState.OVERRIDE if resume_program else ProgramState.OFF
        data = {
            **self.state.thermostat_info,
            "activeState": int(state_id),
            "programState": int(program_state),
        }
        _LOGGER.debug(
            "Setting temperature state of %s to %s (%d, temp: %s)",
            self.id,
            state,
            state_id,
            self.state.temperature_states.get(int(state_id)),
        )

        try:
            await self._require_client().async_update_state(self.id, data)
        except REQUEST_ERRORS as err:
            _LOGGER.error(
                "Failed to set temperature state of %s to %s: %s", self.id, state, err
            )
            raise ToonWriteError(
                MESSAGE_SET_TEMPERATURE_STATE_FAILED.format(error=err)
            ) from err

        setpoint = self.state.temperature_states.get(int(state_id))
        if state_id is not TemperatureState.NONE and setpoint is not None:
            self.set_capability_value(
                CAPABILITY_TARGET_TEMPERATURE, hundredths_to_celsius(setpoint)
            )
        self.set_capability_value(CAPABILITY_TEMPERATURE_STATE, state_id.preset)
        return state

    async def async_enable_program(self) -> None:
        """Enable the temperature program."""
        await self._async_write_program_state(
            ProgramState.ON, MESSAGE_ENABLE_PROGRAM_FAILED
        )

    async def async_disable_program(self) -> None:
        """Disable the temperature program."""
        await self._async_write_program_state(
            ProgramState.OFF, MESSAGE_DISABLE_PROGRAM_FAILED
        )

    async def _async_write_program_state(
        self, program_state: ProgramState, message: str
    ) -> None:
        data = {**self.state.thermostat_info, "programState": int(program_state)}
        _LOGGER.debug("Setting program state of %s to %s", self.id, program_state.name)
        try:
            await self._require_client().async_update_state(self.id, data)
        except REQUEST_ERRORS as err:
            _LOGGER.error("Failed to set program state of %s: %s", self.id, err)
            raise ToonWriteError(message.format(error=err)) from err

    async def async_removed(self) -> None:
        """Tear down the device: drop pending writes and unsubscribe."""
        _LOGGER.debug("async_removed() %s", self.id)
        self._target_temperature_debouncer.cancel()
        self._temperature_state_debouncer.cancel()
        await self.subscription.async_teardown()

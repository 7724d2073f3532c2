"""Merge Toon status payloads into device state.

Polled status and webhook pushes share the envelope
{"body": {"updateDataSet": {...}, "commonName": ..., "timeToLiveSeconds": ...}}.
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from .const import (
    CAPABILITY_MEASURE_HUMIDITY,
    CAPABILITY_MEASURE_POWER,
    CAPABILITY_MEASURE_TEMPERATURE,
    CAPABILITY_METER_GAS,
    CAPABILITY_METER_POWER,
    CAPABILITY_TARGET_TEMPERATURE,
    CAPABILITY_TEMPERATURE_STATE,
)
from .models import CapabilityUpdate, DeviceState, ReconcileResult, TemperatureState

if TYPE_CHECKING:
    from collections.abc import Callable

_LOGGER = logging.getLogger(__name__)


def round_half_up(value: float, step: float) -> float:
    """Round value to the nearest multiple of step, halves rounding up."""
    factor = 1 / step
    return math.floor(value * factor + 0.5) / factor


def hundredths_to_celsius(value: float) -> float:
    """Convert a value in hundredths of a degree, rounded to 0.1."""
    return round_half_up(value / 100, 0.1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def wrap_status(data: Any) -> dict[str, Any]:
    """Wrap a polled status object in the webhook envelope."""
    return {"body": {"updateDataSet": data}}


def reconcile(state: DeviceState, envelope: Any) -> ReconcileResult:
    """Merge an incoming status envelope into device state.

    Returns a new state with the capability updates it implies. The input
    state is never mutated and the function never raises.
    """
    body = envelope.get("body") if isinstance(envelope, dict) else None
    if not isinstance(body, dict) or body.get("updateDataSet") is None:
        _LOGGER.debug("Ignoring payload without update data: %s", envelope)
        return ReconcileResult(state=state, updates=[], ignored=True)

    common_name = body.get("commonName")
    if isinstance(common_name, str) and common_name != state.display_common_name:
        _LOGGER.debug(
            "Ignoring payload for %s on device %s",
            common_name,
            state.display_common_name,
        )
        return ReconcileResult(state=state, updates=[], ignored=True)

    ttl = body.get("timeToLiveSeconds")
    time_to_live = ttl if _is_number(ttl) else None

    data = body["updateDataSet"]
    if not isinstance(data, dict):
        _LOGGER.warning("Ignoring malformed update data: %s", data)
        return ReconcileResult(
            state=state, updates=[], time_to_live=time_to_live, ignored=True
        )

    new_state = replace(
        state,
        temperature_states=dict(state.temperature_states),
        capabilities=set(state.capabilities),
    )
    updates: list[CapabilityUpdate] = []

    thermostat_states = data.get("thermostatStates")
    if isinstance(thermostat_states, dict) and isinstance(
        thermostat_states.get("state"), list
    ):
        _guard("thermostatStates", _merge_thermostat_states, new_state, thermostat_states)

    if data.get("powerUsage"):
        _guard("powerUsage", _merge_power_usage, new_state, data["powerUsage"], updates)

    if data.get("gasUsage"):
        _guard("gasUsage", _merge_gas_usage, new_state, data["gasUsage"], updates)

    if data.get("thermostatInfo"):
        _guard(
            "thermostatInfo",
            _merge_thermostat_info,
            new_state,
            data["thermostatInfo"],
            updates,
        )

    return ReconcileResult(
        state=new_state, updates=updates, time_to_live=time_to_live
    )


def _guard(section: str, merge: Callable[..., None], *args: Any) -> None:
    try:
        merge(*args)
    except Exception:
        _LOGGER.exception("Failed to process %s", section)


def _field(
    updates: list[CapabilityUpdate],
    capability: str,
    compute: Callable[[], Any],
) -> None:
    """Append one capability update, logging instead of raising on failure."""
    try:
        updates.append(CapabilityUpdate(capability, compute()))
    except Exception:
        _LOGGER.exception("Failed to compute %s", capability)


def _merge_thermostat_states(state: DeviceState, data: dict[str, Any]) -> None:
    for entry in data["state"]:
        try:
            state.temperature_states[int(entry["id"])] = entry["tempValue"]
        except (KeyError, TypeError, ValueError):
            _LOGGER.warning("Skipping malformed thermostat state: %s", entry)


def _merge_power_usage(
    state: DeviceState, data: dict[str, Any], updates: list[CapabilityUpdate]
) -> None:
    state.power_usage = copy.deepcopy(data)

    if _is_number(data.get("value")):
        _LOGGER.debug("powerUsage -> measure_power -> value: %s", data["value"])
        _field(updates, CAPABILITY_MEASURE_POWER, lambda: data["value"])

    if _is_number(data.get("dayUsage")) and _is_number(data.get("dayLowUsage")):
        # Wh -> kWh
        _field(
            updates,
            CAPABILITY_METER_POWER,
            lambda: (data["dayUsage"] + data["dayLowUsage"]) / 1000,
        )


def _merge_gas_usage(
    state: DeviceState, data: dict[str, Any], updates: list[CapabilityUpdate]
) -> None:
    state.gas_usage = copy.deepcopy(data)

    if _is_number(data.get("dayUsage")):
        _field(updates, CAPABILITY_METER_GAS, lambda: data["dayUsage"] / 1000)


def _merge_thermostat_info(
    state: DeviceState, data: dict[str, Any], updates: list[CapabilityUpdate]
) -> None:
    # Writes merge into this object, the API expects a full thermostat info
    state.thermostat_info = copy.deepcopy(data)

    if _is_number(data.get("currentDisplayTemp")):
        _field(
            updates,
            CAPABILITY_MEASURE_TEMPERATURE,
            lambda: hundredths_to_celsius(data["currentDisplayTemp"]),
        )

    if _is_number(data.get("currentSetpoint")):
        _field(
            updates,
            CAPABILITY_TARGET_TEMPERATURE,
            lambda: hundredths_to_celsius(data["currentSetpoint"]),
        )

    if _is_number(data.get("activeState")):
        _field(
            updates,
            CAPABILITY_TEMPERATURE_STATE,
            lambda: TemperatureState.preset_for(data["activeState"]),
        )

    if _is_number(data.get("currentHumidity")):
        state.capabilities.add(CAPABILITY_MEASURE_HUMIDITY)
        _field(updates, CAPABILITY_MEASURE_HUMIDITY, lambda: data["currentHumidity"])

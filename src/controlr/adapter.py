"""Accessory-facing states derived from Control-R device properties.

The adapter is stateless: every call reads the device properties again,
so consecutive calls may observe different device states.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from controlr._constants import (
    PROPERTY_OUTLET_TEMP,
    PROPERTY_RECIRCULATE_MODE,
    PROPERTY_TEMPERATURE,
    PROPERTY_WATER_FLOWING,
)
from controlr.session import ProtocolError

_LOGGER = logging.getLogger(__name__)

MIN_TEMPERATURE_C = 35
MAX_TEMPERATURE_C = 85


class HeaterState(enum.Enum):
    """Current heating activity."""

    IDLE = "idle"
    HEATING = "heating"


class TargetHeaterState(enum.Enum):
    """Requested heating mode.  Control-R heaters only heat."""

    HEAT = "heat"


VALID_CURRENT_STATES: tuple[HeaterState, ...] = (HeaterState.IDLE, HeaterState.HEATING)
VALID_TARGET_STATES: tuple[TargetHeaterState, ...] = (TargetHeaterState.HEAT,)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def fahrenheit_to_celsius(value: float) -> int:
    """Convert °F to the nearest whole °C."""
    return _round_half_up((value - 32.0) * 5.0 / 9.0)


def celsius_to_fahrenheit(value: float) -> int:
    """Convert °C to the nearest whole °F."""
    return _round_half_up(value * 9.0 / 5.0 + 32.0)


class PropertyGateway(Protocol):
    """Anything that reads and writes device properties by serial."""

    async def get_property(self, serial: str, name: str) -> Any: ...

    async def set_property(self, serial: str, name: str, value: Any) -> None: ...


@dataclass(frozen=True)
class WaterHeaterStatus:
    """Snapshot of every derived state of one water heater."""

    serial: str
    heater_active: bool
    current_heater_state: HeaterState
    target_heater_state: TargetHeaterState
    target_temperature: int
    water_in_use: bool
    water_is_ready: bool

    def as_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["current_heater_state"] = self.current_heater_state.value
        data["target_heater_state"] = self.target_heater_state.value
        return data


class StateAdapter:
    """Maps raw device properties to and from accessory states.

    Each operation is a sequence of gateway calls; the first failure
    propagates to the caller unchanged.
    """

    def __init__(self, gateway: PropertyGateway) -> None:
        self._gateway = gateway

    async def get_heater_active(self, serial: str) -> bool:
        return bool(await self._gateway.get_property(serial, PROPERTY_RECIRCULATE_MODE))

    async def set_heater_active(self, serial: str, active: bool) -> None:
        await self._gateway.set_property(serial, PROPERTY_RECIRCULATE_MODE, int(bool(active)))

    async def get_current_heater_state(self, serial: str) -> HeaterState:
        if await self.get_heater_active(serial):
            return HeaterState.HEATING
        return HeaterState.IDLE

    def get_target_heater_state(self) -> TargetHeaterState:
        return TargetHeaterState.HEAT

    async def get_temperature(self, serial: str) -> int:
        """Target temperature in °C."""
        return fahrenheit_to_celsius(await self._read_number(serial, PROPERTY_TEMPERATURE))

    async def set_target_temperature(self, serial: str, celsius: float) -> None:
        """Set the target temperature, given in °C."""
        await self._gateway.set_property(
            serial, PROPERTY_TEMPERATURE, celsius_to_fahrenheit(celsius)
        )

    async def get_water_in_use(self, serial: str) -> bool:
        return bool(await self._gateway.get_property(serial, PROPERTY_WATER_FLOWING))

    async def get_water_is_ready(self, serial: str) -> bool:
        """True when recirculating and the outlet has reached the target temperature.

        Inactive recirculation yields ``False`` without reading the
        temperatures.  The three reads are not atomic.
        """
        if not await self.get_heater_active(serial):
            return False
        target = await self._read_number(serial, PROPERTY_TEMPERATURE)
        outlet = await self._read_number(serial, PROPERTY_OUTLET_TEMP)
        ready: bool = outlet >= target
        _LOGGER.debug("%s outlet %s°F, target %s°F, ready=%s", serial, outlet, target, ready)
        return ready

    async def _read_number(self, serial: str, name: str) -> float:
        value = await self._gateway.get_property(serial, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ProtocolError(f"Property '{name}' of {serial} has no numeric value")
        return value

    async def get_status(self, serial: str) -> WaterHeaterStatus:
        """Read every derived state of *serial*, one property read at a time."""
        active = await self.get_heater_active(serial)
        return WaterHeaterStatus(
            serial=serial,
            heater_active=active,
            current_heater_state=HeaterState.HEATING if active else HeaterState.IDLE,
            target_heater_state=self.get_target_heater_state(),
            target_temperature=await self.get_temperature(serial),
            water_in_use=await self.get_water_in_use(serial),
            water_is_ready=await self.get_water_is_ready(serial),
        )

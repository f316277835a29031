"""Glue between an accessory host and the Control-R state adapter.

The host owns accessory registration and presentation.  The controller
signs in, hands the host the current device list, returns per-device
handler bundles, and keeps the session renewed in the background::

    controller = AccessoryController(client, host, settings)
    devices = await controller.start()
    handlers = controller.handlers(devices[0])
    ready = await handlers.get_water_is_ready()
    ...
    await controller.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from controlr._constants import MANUFACTURER
from controlr.adapter import (
    MAX_TEMPERATURE_C,
    MIN_TEMPERATURE_C,
    VALID_CURRENT_STATES,
    VALID_TARGET_STATES,
    HeaterState,
    StateAdapter,
    TargetHeaterState,
)
from controlr.client import Client, Device
from controlr.config import Settings
from controlr.session import ControlRError

_LOGGER = logging.getLogger(__name__)


class AccessoryHost(Protocol):
    """The smart-home platform the devices are exposed to."""

    def sync_accessories(self, devices: list[Device]) -> None:
        """Register new devices and unregister vanished ones."""


@dataclass(frozen=True)
class AccessoryInfo:
    """Identification shown by the host for one accessory."""

    manufacturer: str
    name: str
    serial: str
    model: str


@dataclass(frozen=True)
class AccessoryHandlers:
    """Get/set callables for one accessory, bound to its serial.

    Every callable resolves exactly once, with a value or by raising the
    adapter's error.
    """

    info: AccessoryInfo
    get_active: Callable[[], Awaitable[bool]]
    set_active: Callable[[bool], Awaitable[None]]
    get_current_heater_state: Callable[[], Awaitable[HeaterState]]
    get_target_heater_state: Callable[[], Awaitable[TargetHeaterState]]
    get_current_temperature: Callable[[], Awaitable[int]]
    get_heating_threshold: Callable[[], Awaitable[int]]
    set_heating_threshold: Callable[[float], Awaitable[None]]
    get_water_in_use: Callable[[], Awaitable[bool]]
    get_water_is_ready: Callable[[], Awaitable[bool]]
    valid_current_states: tuple[HeaterState, ...] = VALID_CURRENT_STATES
    valid_target_states: tuple[TargetHeaterState, ...] = VALID_TARGET_STATES
    min_temperature: int = MIN_TEMPERATURE_C
    max_temperature: int = MAX_TEMPERATURE_C


class AccessoryController:
    """Connects an :class:`AccessoryHost` to one Control-R account."""

    def __init__(self, client: Client, host: AccessoryHost, settings: Settings) -> None:
        self._client = client
        self._host = host
        self._settings = settings
        self._adapter = StateAdapter(client)
        self._renewal: asyncio.Task[None] | None = None

    @property
    def adapter(self) -> StateAdapter:
        return self._adapter

    @property
    def is_running(self) -> bool:
        """True while the renewal task is active."""
        return self._renewal is not None and not self._renewal.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> list[Device]:
        """Sign in, sync the host's accessories, and start token renewal.

        Returns the devices handed to the host.  Start-up errors are
        logged and re-raised; renewal is then not started.
        """
        try:
            await self._client.session.authenticate(
                self._settings.email, self._settings.password
            )
            devices = await self._client.fetch_devices()
        except ControlRError as e:
            _LOGGER.error("Start-up failed: %s", e)
            raise

        self._host.sync_accessories(devices)
        if not self.is_running:
            self._renewal = asyncio.create_task(self._run_renewal_loop())
        return devices

    async def stop(self) -> None:
        """Cancel token renewal and wait for it to finish."""
        task, self._renewal = self._renewal, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def renew(self) -> None:
        """Run one renewal check, logging instead of raising on failure."""
        try:
            await self._client.session.refresh_if_needed()
        except ControlRError as e:
            _LOGGER.error("Token renewal failed: %s", e)
        except Exception:
            _LOGGER.exception("Unexpected error during token renewal")

    async def _run_renewal_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.refresh_interval)
            await self.renew()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def handlers(self, device: Device) -> AccessoryHandlers:
        """Return the handler bundle for *device*."""
        serial = device.serial
        _LOGGER.info("Configuring accessory: %s", device.name)
        bind = functools.partial
        return AccessoryHandlers(
            info=AccessoryInfo(
                manufacturer=MANUFACTURER,
                name=device.name,
                serial=serial,
                model=self._settings.model,
            ),
            get_active=bind(self._handle_active_get, serial),
            set_active=bind(self._handle_active_set, serial),
            get_current_heater_state=bind(self._handle_current_state_get, serial),
            get_target_heater_state=self._handle_target_state_get,
            get_current_temperature=bind(self._handle_threshold_get, serial),
            get_heating_threshold=bind(self._handle_threshold_get, serial),
            set_heating_threshold=bind(self._handle_threshold_set, serial),
            get_water_in_use=bind(self._handle_water_in_use_get, serial),
            get_water_is_ready=bind(self._handle_water_is_ready_get, serial),
        )

    async def _handle_active_get(self, serial: str) -> bool:
        _LOGGER.debug("Triggered GET HeaterActive for %s", serial)
        return await self._adapter.get_heater_active(serial)

    async def _handle_active_set(self, serial: str, value: bool) -> None:
        _LOGGER.debug("Triggered SET HeaterActive for %s: %s", serial, value)
        await self._adapter.set_heater_active(serial, value)

    async def _handle_current_state_get(self, serial: str) -> HeaterState:
        _LOGGER.debug("Triggered GET CurrentHeaterState for %s", serial)
        return await self._adapter.get_current_heater_state(serial)

    async def _handle_target_state_get(self) -> TargetHeaterState:
        _LOGGER.debug("Triggered GET TargetHeaterState")
        return self._adapter.get_target_heater_state()

    async def _handle_threshold_get(self, serial: str) -> int:
        _LOGGER.debug("Triggered GET HeatingThresholdTemperature for %s", serial)
        return await self._adapter.get_temperature(serial)

    async def _handle_threshold_set(self, serial: str, value: float) -> None:
        _LOGGER.debug("Triggered SET HeatingThresholdTemperature for %s: %s", serial, value)
        await self._adapter.set_target_temperature(serial, value)

    async def _handle_water_in_use_get(self, serial: str) -> bool:
        _LOGGER.debug("Triggered GET WaterInUse for %s", serial)
        return await self._adapter.get_water_in_use(serial)

    async def _handle_water_is_ready_get(self, serial: str) -> bool:
        _LOGGER.debug("Triggered GET WaterIsReady for %s", serial)
        return await self._adapter.get_water_is_ready(serial)

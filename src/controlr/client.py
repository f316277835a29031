"""Rinnai Control-R cloud client.

Provides device discovery and property access on top of a
:class:`~controlr.session.Session`.  :meth:`Client.login` is the usual
entry point::

    import asyncio
    from controlr import Client

    client = await Client.login("email@example.com", "password", app_id=..., app_secret=...)
    devices = await client.fetch_devices()

    heater = devices[0]
    temp_f = await heater.get_property("domestic_temperature")
    await heater.set_property("recirculation_enabled", 1)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from controlr._constants import (
    PATH_DATAPOINTS,
    PATH_DEVICE,
    PATH_DEVICES,
    PATH_PROPERTY,
    PATH_USER_PROFILE,
)
from controlr.session import ProtocolError, Session

_LOGGER = logging.getLogger(__name__)


class Device:
    """A water heater registered on the account.

    Obtained from :meth:`Client.list_devices` or :meth:`Client.get_device`.
    The record is read-only and reflects the listing that produced it;
    property reads always go back to the cloud.

    Example::

        device = (await client.fetch_devices())[0]
        active = await device.get_property("recirculation_enabled")
    """

    def __init__(self, client: Client, dev_info: Mapping[str, Any]) -> None:
        self._client = client
        self._serial = str(dev_info["dsn"])
        self._name = str(dev_info.get("product_name") or self._serial)
        self._metadata: Mapping[str, Any] = MappingProxyType(dict(dev_info))

    def __repr__(self) -> str:
        return f"Device(serial={self._serial!r}, name={self._name!r})"

    @property
    def serial(self) -> str:
        """Device serial number (DSN), the routing key for properties."""
        return self._serial

    @property
    def name(self) -> str:
        """Display name of this device."""
        return self._name

    @property
    def metadata(self) -> Mapping[str, Any]:
        """Raw vendor record from the cloud."""
        return self._metadata

    async def get_property(self, name: str) -> Any:
        """Read a property of this device.  See :meth:`Client.get_property`."""
        return await self._client.get_property(self._serial, name)

    async def set_property(self, name: str, value: Any) -> None:
        """Write a property of this device.  See :meth:`Client.set_property`."""
        await self._client.set_property(self._serial, name, value)


class Client:
    """Device directory and property gateway for one account.

    The client references a :class:`Session` but does not own its tokens;
    the same session can be shared with other collaborators such as the
    renewal task of :class:`~controlr.controller.AccessoryController`.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    async def login(cls, email: str, password: str, **session_kwargs: Any) -> Client:
        """Sign in and return a new client.

        *session_kwargs* are passed to :class:`Session`.  The session is
        closed again if signing in fails.
        """
        session = Session(**session_kwargs)
        try:
            await session.authenticate(email, password)
        except BaseException:
            await session.close()
            raise
        return cls(session)

    @property
    def session(self) -> Session:
        """The underlying cloud session."""
        return self._session

    async def close(self) -> None:
        """Close the underlying session."""
        await self._session.close()

    # ------------------------------------------------------------------
    # Device directory
    # ------------------------------------------------------------------

    async def resolve_account_handle(self) -> str:
        """Return the account's user UUID from the profile endpoint."""
        data = await self._session.authorized_request("GET", PATH_USER_PROFILE)
        uuid = data.get("uuid") if isinstance(data, dict) else None
        if not isinstance(uuid, str) or not uuid:
            raise ProtocolError("User profile has no uuid")
        _LOGGER.debug("Account handle: %s", uuid)
        return uuid

    async def list_devices(self, handle: str) -> list[Device]:
        """List the devices belonging to *handle*.

        An account without devices yields an empty list.
        """
        data = await self._session.authorized_request(
            "GET", PATH_DEVICES, query={"user_uuid": handle}
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise ProtocolError("Device listing is not a list")
        devices = [Device(self, _unwrap_device(item)) for item in data]
        _LOGGER.debug("Found %d device(s)", len(devices))
        return devices

    async def fetch_devices(self) -> list[Device]:
        """Resolve the account handle and list its devices."""
        return await self.list_devices(await self.resolve_account_handle())

    async def get_device(self, serial: str) -> Device:
        """Fetch a single device record by serial."""
        data = await self._session.authorized_request(
            "GET", PATH_DEVICE, path_vars={"dsn": serial}
        )
        return Device(self, _unwrap_device(data))

    def device(self, serial: str) -> Device:
        """Return a :class:`Device` handle for *serial* without a network call."""
        return Device(self, {"dsn": serial})

    # ------------------------------------------------------------------
    # Property gateway
    # ------------------------------------------------------------------

    async def get_property(self, serial: str, name: str) -> Any:
        """Read the current value of property *name* on device *serial*.

        Raises:
            ProtocolError: The response is not ``{"property": {"value": ...}}``.
            ApiError: The request failed.
        """
        data = await self._session.authorized_request(
            "GET", PATH_PROPERTY, path_vars={"dsn": serial, "name": name}
        )
        prop = data.get("property") if isinstance(data, dict) else None
        if not isinstance(prop, dict) or "value" not in prop:
            raise ProtocolError(f"Unexpected payload for property '{name}' of {serial}")
        value = prop["value"]
        _LOGGER.debug("Property %s/%s = %r", serial, name, value)
        return value

    async def set_property(self, serial: str, name: str, value: Any) -> None:
        """Create a data point setting property *name* on device *serial*.

        Only HTTP 201 counts as success.

        Raises:
            HttpError: Any other status, with the cloud's error message.
            ApiError: The request failed.
        """
        _LOGGER.debug("Setting %s/%s to %r", serial, name, value)
        await self._session.authorized_request(
            "POST",
            PATH_DATAPOINTS,
            path_vars={"dsn": serial, "name": name},
            body={"datapoint": {"value": value}},
            expected_status=201,
        )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _unwrap_device(item: Any) -> Mapping[str, Any]:
    """Return the inner ``device`` record of a ``{"device": {...}}`` entry."""
    dev = item.get("device") if isinstance(item, dict) else None
    if not isinstance(dev, dict) or not dev.get("dsn"):
        raise ProtocolError("Device entry has no dsn")
    return dev

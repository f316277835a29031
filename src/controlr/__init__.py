"""Python API and CLI for Rinnai Control-R water heaters on the Ayla device cloud."""

from controlr.adapter import HeaterState, StateAdapter, TargetHeaterState, WaterHeaterStatus
from controlr.client import Client, Device
from controlr.config import Settings
from controlr.controller import AccessoryController, AccessoryHandlers, AccessoryHost
from controlr.properties import PROPERTIES, Setting
from controlr.session import (
    ApiError,
    AuthError,
    ControlRError,
    HttpError,
    MissingTokenError,
    ProtocolError,
    RefreshTokenRejectedError,
    Session,
)

__all__ = [
    "AccessoryController",
    "AccessoryHandlers",
    "AccessoryHost",
    "ApiError",
    "AuthError",
    "Client",
    "ControlRError",
    "Device",
    "HeaterState",
    "HttpError",
    "MissingTokenError",
    "PROPERTIES",
    "ProtocolError",
    "RefreshTokenRejectedError",
    "Session",
    "Setting",
    "Settings",
    "StateAdapter",
    "TargetHeaterState",
    "WaterHeaterStatus",
]

"""Runtime settings consumed by the controller and the CLI."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from controlr._constants import (
    DEFAULT_MODEL,
    DEFAULT_REGION,
    REFRESH_TOKEN_INTERVAL,
    SERVICE_DOMAINS,
)

ENV_PREFIX = "CONTROLR_"


@dataclass(frozen=True)
class Settings:
    """Account credentials and tuning values.

    Values only: nothing here is loaded or persisted by the library.
    """

    email: str
    password: str
    model: str = DEFAULT_MODEL
    """Model label reported to the accessory host."""

    region: str = DEFAULT_REGION
    refresh_interval: float = REFRESH_TOKEN_INTERVAL
    """Seconds between token renewal checks."""

    poll_interval: float = 60
    """Seconds between status polls of ``controlr watch``."""

    app_id: str = ""
    app_secret: str = ""

    def __post_init__(self) -> None:
        if self.region not in SERVICE_DOMAINS:
            raise ValueError(
                f"Unknown region '{self.region}'. Expected: {' | '.join(SERVICE_DOMAINS)}"
            )
        for field in ("refresh_interval", "poll_interval"):
            if getattr(self, field) <= 0:
                raise ValueError(f"{field} must be positive.")

    @property
    def session_kwargs(self) -> dict[str, str]:
        """Keyword arguments for :class:`~controlr.session.Session`."""
        return {"region": self.region, "app_id": self.app_id, "app_secret": self.app_secret}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``CONTROLR_*`` environment variables.

        Raises :class:`KeyError` if email or password is missing and
        :class:`ValueError` for malformed values.
        """
        values = env_overrides(environ)
        for field in ("email", "password"):
            if field not in values:
                raise KeyError(f"Environment variable {ENV_PREFIX}{field.upper()} is not set.")
        return cls(**values)  # type: ignore[arg-type]


_ENV_FIELDS = ("email", "password", "model", "region", "app_id", "app_secret")
_ENV_INTERVALS = ("refresh_interval", "poll_interval")


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, str | float]:
    """Return the :class:`Settings` fields set through ``CONTROLR_*`` variables.

    Unset or empty variables are left out; intervals are parsed as seconds.
    """
    env = os.environ if environ is None else environ
    values: dict[str, str | float] = {}
    for field in _ENV_FIELDS:
        raw = env.get(ENV_PREFIX + field.upper(), "")
        if raw:
            values[field] = raw
    for field in _ENV_INTERVALS:
        name = ENV_PREFIX + field.upper()
        raw = env.get(name, "")
        if raw:
            try:
                values[field] = float(raw)
            except ValueError:
                raise ValueError(f"{name} must be a number of seconds, got '{raw}'.") from None
    return values

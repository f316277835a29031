"""Device property definitions, the single source of truth for Control-R property names."""

from __future__ import annotations

from dataclasses import dataclass

from controlr._constants import (
    PROPERTY_OUTLET_TEMP,
    PROPERTY_RECIRCULATE_MODE,
    PROPERTY_TEMPERATURE,
    PROPERTY_WATER_FLOWING,
)


@dataclass
class Setting:
    """A device property definition.

    Maps between raw cloud property names (e.g. ``domestic_temperature``),
    CLI-friendly slugs (e.g. ``temperature``), and human-readable labels.
    """

    id: str
    """Raw property name on the cloud (``recirculation_enabled``)."""

    slug: str
    """CLI name (``recirculation``, ``temperature``)."""

    name: str
    """Human-readable label."""

    writable: bool = False
    """Whether a data point can be created for this property."""

    values: list[str] | None = None
    """Enum labels (index = int value); ``None`` = numeric."""

    unit: str = ""
    """Suffix for display (``F``)."""

    def format_value(self, raw: object) -> str:
        """Format a raw property value for human display."""
        if self.values is not None:
            try:
                idx = int(raw)  # type: ignore[call-overload]
                if 0 <= idx < len(self.values):
                    label: str = self.values[idx]
                    if set(self.values) == {"on", "off"}:
                        return label.upper()
                    return label
            except (ValueError, TypeError):
                pass
            return str(raw)
        if isinstance(raw, (int, float)) and self.unit:
            return f"{raw}{self.unit}"
        return str(raw)


PROPERTIES: list[Setting] = [
    Setting(
        PROPERTY_RECIRCULATE_MODE,
        "recirculation",
        "Recirculation",
        writable=True,
        values=["off", "on"],
    ),
    Setting(PROPERTY_TEMPERATURE, "temperature", "Target temperature", writable=True, unit="F"),
    Setting(PROPERTY_WATER_FLOWING, "water-flowing", "Water flowing", values=["no", "yes"]),
    Setting(PROPERTY_OUTLET_TEMP, "outlet-temperature", "Outlet temperature", unit="F"),
]

_by_slug: dict[str, Setting] = {s.slug: s for s in PROPERTIES}
_by_id: dict[str, Setting] = {s.id: s for s in PROPERTIES}


def resolve(name: str) -> Setting | None:
    """Look up a Setting by slug or raw property name."""
    return _by_slug.get(name) or _by_id.get(name)

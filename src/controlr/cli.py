"""Thin CLI wrapper over :class:`controlr.Client`."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

import typer
from rich.console import Console
from rich.syntax import Syntax

from controlr._constants import DEFAULT_MODEL, DEFAULT_REGION
from controlr.adapter import (
    MAX_TEMPERATURE_C,
    MIN_TEMPERATURE_C,
    StateAdapter,
    celsius_to_fahrenheit,
)
from controlr.client import Client, Device
from controlr.config import Settings, env_overrides
from controlr.controller import AccessoryController
from controlr.properties import PROPERTIES, Setting, resolve
from controlr.session import ApiError, ControlRError, Session

app = typer.Typer(help="Control Rinnai Control-R water heaters.", invoke_without_command=True)

T = TypeVar("T")


@app.callback()
def main(
    ctx: typer.Context,
    email: str | None = typer.Option(None, help="Account email [env: CONTROLR_EMAIL]"),
    password: str | None = typer.Option(
        None, help="Account password [env: CONTROLR_PASSWORD]"
    ),
    region: str | None = typer.Option(
        None, help=f"Cloud region: us | eu | cn [default: {DEFAULT_REGION}]"
    ),
    model: str | None = typer.Option(
        None, help=f"Model label shown for accessories [default: {DEFAULT_MODEL}]"
    ),
    app_id: str | None = typer.Option(None, help="Ayla application id"),
    app_secret: str | None = typer.Option(None, help="Ayla application secret"),
    poll_interval: float | None = typer.Option(
        None, help="Seconds between polls of `watch` [default: 60]"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log HTTP traffic"),
) -> None:
    """Control Rinnai Control-R water heaters.

    \b
    Options not given on the command line are read from the matching
    CONTROLR_* environment variable (CONTROLR_REGION, CONTROLR_APP_ID, ...).
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)
    ctx.obj = {
        "email": email,
        "password": password,
        "region": region,
        "model": model,
        "app_id": app_id,
        "app_secret": app_secret,
        "poll_interval": poll_interval,
    }


def _print_json(obj: object) -> None:
    """Print JSON: syntax-highlighted when stdout is a TTY, compact otherwise."""
    if sys.stdout.isatty():
        Console().print(Syntax(json.dumps(obj, indent=2), "json"))
    else:
        typer.echo(json.dumps(obj))


def _settings(ctx: typer.Context) -> Settings:
    """Build settings from the options and environment, prompting for missing credentials."""
    try:
        opts = env_overrides()
        opts.update({k: v for k, v in (ctx.obj or {}).items() if v is not None})
        if not opts.get("email"):
            opts["email"] = typer.prompt("Email")
        if not opts.get("password"):
            opts["password"] = typer.prompt("Password", hide_input=True)
        return Settings(**opts)  # type: ignore[arg-type]
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None


def _run(settings: Settings, action: Callable[[Client], Awaitable[T]]) -> T:
    """Sign in, run *action* with the client, and map errors to exit code 1."""

    async def runner() -> T:
        client = await Client.login(settings.email, settings.password, **settings.session_kwargs)
        try:
            return await action(client)
        finally:
            await client.close()

    try:
        return asyncio.run(runner())
    except ControlRError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None


def _label(s: Setting) -> str:
    return f"{s.name} ({s.slug})"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def devices(ctx: typer.Context) -> None:
    """List the water heaters on the account."""
    settings = _settings(ctx)
    typer.echo("Fetching devices...")
    found = _run(settings, lambda client: client.fetch_devices())
    if not found:
        typer.echo("No devices found.", err=True)
        raise typer.Exit(1)
    for i, dev in enumerate(found):
        typer.echo(f"  [{i}] {dev.name} — {settings.model}")
        typer.echo(f"      SN: {dev.serial}")


@app.command("get", context_settings={"help_option_names": ["-h", "--help"]})
def get_property(
    ctx: typer.Context,
    serial: str = typer.Argument(..., help="Device serial (DSN)"),
    name: str | None = typer.Argument(None, help="Property name or raw key"),
    as_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Query device properties.

    \b
    Without a property name, shows every known property.
    Accepts CLI names (recirculation, temperature) and raw keys.
    """
    selected: list[Setting] = PROPERTIES
    if name is not None:
        s = resolve(name)
        if s is None:
            typer.echo(f"Unknown property '{name}'.", err=True)
            raise typer.Exit(1)
        selected = [s]

    settings = _settings(ctx)

    async def fetch(client: Client) -> dict[str, object]:
        device = client.device(serial)
        return {s.id: await device.get_property(s.id) for s in selected}

    values = _run(settings, fetch)

    if as_json:
        _print_json(values)
        return
    if name is not None:
        s = selected[0]
        typer.echo(f"{s.name}: {s.format_value(values[s.id])}")
        return

    is_tty = sys.stdout.isatty()
    typer.echo(typer.style(serial, bold=True) if is_tty else serial)
    for s in selected:
        formatted = s.format_value(values[s.id])
        if is_tty:
            typer.echo(f"    {typer.style(_label(s), fg='cyan')}: {formatted}")
        else:
            typer.echo(f"    {_label(s)}: {formatted}")


@app.command("set", context_settings={"help_option_names": ["-h", "--help"]})
def set_setting(
    ctx: typer.Context,
    serial: str = typer.Argument(..., help="Device serial (DSN)"),
    setting: str = typer.Argument(..., help="Setting name"),
    value: str = typer.Argument(..., help="Value to set"),
) -> None:
    """Change a device setting.

    \b
    Settings:
      recirculation    on | off
      temperature      target in °C (35-85)
    """
    s = resolve(setting)
    if s is None or not s.writable:
        names = ", ".join(p.slug for p in PROPERTIES if p.writable)
        if s is not None:
            typer.echo(f"Property '{setting}' is read-only. Writable: {names}", err=True)
        else:
            typer.echo(f"Unknown setting '{setting}'. Available: {names}", err=True)
        raise typer.Exit(1)

    if s.slug == "recirculation":
        if value not in ("on", "off"):
            typer.echo(f"Invalid value '{value}' for {s.slug}. Expected: on | off", err=True)
            raise typer.Exit(1)
        active = value == "on"

        def action(adapter: StateAdapter) -> Awaitable[None]:
            return adapter.set_heater_active(serial, active)

        typer.echo(f"Setting {s.slug} to {value}...")
    else:
        try:
            celsius = int(value)
        except ValueError:
            typer.echo(f"Invalid value '{value}' for {s.slug}. Expected an integer.", err=True)
            raise typer.Exit(1) from None
        if not MIN_TEMPERATURE_C <= celsius <= MAX_TEMPERATURE_C:
            typer.echo(
                f"Temperature must be between {MIN_TEMPERATURE_C} and {MAX_TEMPERATURE_C}°C.",
                err=True,
            )
            raise typer.Exit(1)

        def action(adapter: StateAdapter) -> Awaitable[None]:
            return adapter.set_target_temperature(serial, celsius)

        typer.echo(f"Setting {s.slug} to {celsius}°C ({celsius_to_fahrenheit(celsius)}°F)...")

    settings = _settings(ctx)
    _run(settings, lambda client: action(StateAdapter(client)))
    typer.echo(f"Command sent to {serial}.")


@app.command()
def status(
    ctx: typer.Context,
    serial: str = typer.Argument(..., help="Device serial (DSN)"),
    as_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the accessory states derived from the device properties."""
    settings = _settings(ctx)
    result = _run(settings, lambda client: StateAdapter(client).get_status(serial))

    if as_json:
        _print_json(result.as_dict())
        return
    typer.echo(serial)
    typer.echo(f"  Active: {'yes' if result.heater_active else 'no'}")
    typer.echo(f"  State: {result.current_heater_state.value}")
    typer.echo(f"  Target temperature: {result.target_temperature}°C")
    typer.echo(f"  Water in use: {'yes' if result.water_in_use else 'no'}")
    typer.echo(f"  Water ready: {'yes' if result.water_is_ready else 'no'}")


class _ConsoleHost:
    """Accessory host that prints the accessories it is given."""

    def __init__(self) -> None:
        self.devices: list[Device] = []

    def sync_accessories(self, devices: list[Device]) -> None:
        self.devices = list(devices)
        for dev in devices:
            typer.echo(f"Accessory: {dev.name} (SN: {dev.serial})")


@app.command()
def watch(
    ctx: typer.Context,
    serial: str = typer.Argument(..., help="Device serial (DSN)"),
    count: int = typer.Option(0, "--count", "-n", help="Stop after N polls (0 = forever)"),
) -> None:
    """Poll the accessory states of a device, renewing the session as needed.

    \b
    Press Ctrl+C to stop.
    """
    settings = _settings(ctx)
    with contextlib.suppress(KeyboardInterrupt):
        try:
            asyncio.run(_watch_async(settings, serial, count))
        except ControlRError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(1) from None


async def _watch_async(settings: Settings, serial: str, count: int) -> None:
    """Async implementation of the watch command."""
    client = Client(Session(**settings.session_kwargs))
    host = _ConsoleHost()
    controller = AccessoryController(client, host, settings)
    try:
        found = await controller.start()
        device = next((d for d in found if d.serial == serial), None)
        if device is None:
            typer.echo(f"No device with SN '{serial}' on this account.", err=True)
            raise typer.Exit(1)
        handlers = controller.handlers(device)
        typer.echo(f"Watching {device.name}... (Ctrl+C to stop)")

        polls = 0
        while True:
            ts = datetime.now().strftime("%H:%M:%S")
            try:
                active = await handlers.get_active()
                target = await handlers.get_heating_threshold()
                in_use = await handlers.get_water_in_use()
                ready = await handlers.get_water_is_ready()
            except ApiError as e:
                typer.echo(f"[{ts}] {serial} poll failed: {e}", err=True)
            else:
                typer.echo(
                    f"[{ts}] {serial} active={'yes' if active else 'no'}"
                    f" target={target}°C in-use={'yes' if in_use else 'no'}"
                    f" ready={'yes' if ready else 'no'}"
                )
            polls += 1
            if count and polls >= count:
                break
            await asyncio.sleep(settings.poll_interval)
    finally:
        await controller.stop()
        await client.close()

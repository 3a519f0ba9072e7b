"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from webosctl.api import Client
from webosctl.core.codec import COMMAND_TABLE
from webosctl.core.errors import SessionError, WebosctlError
from webosctl.core.events import InputChannelReady, RequestFailed, SessionEvent
from webosctl.core.model import ConnectionPhase, DeviceDescriptor, RemoteCommand
from webosctl.core.settings import load_settings

app = typer.Typer(help="Discover, pair with, and control LG webOS TVs over the local network")

_SETTLED_PHASES = (
    ConnectionPhase.PAIRED,
    ConnectionPhase.AWAITING_PIN,
    ConnectionPhase.AWAITING_PAIRING_PROMPT,
    ConnectionPhase.DISCONNECTED,
)


class _Observer:
    """Echoes device-reported failures and tracks input channel readiness."""

    def __init__(self) -> None:
        self.input_ready = asyncio.Event()

    def __call__(self, event: SessionEvent) -> None:
        if isinstance(event, RequestFailed):
            typer.echo(f"{event.status.value}: {event.message}", err=True)
        elif isinstance(event, InputChannelReady):
            self.input_ready.set()


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    ctx.obj = {"config": config}


def _build_client(ctx: typer.Context, observer: _Observer | None = None) -> Client:
    config = (ctx.obj or {}).get("config")
    settings = load_settings(config)
    return Client(settings=settings, on_event=observer or _Observer())


def _fail(exc: WebosctlError) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


async def _connect_paired(client: Client, address: str, timeout_s: float) -> None:
    if not await client.connect(address):
        raise SessionError(f"{client.status.value}: {client.last_error}")
    phase = await client.wait_for_phase(*_SETTLED_PHASES, timeout_s=timeout_s)
    if phase is not ConnectionPhase.PAIRED:
        raise SessionError(
            f"Device at {address} is not paired ({client.status.value}). Run 'webosctl pair {address}' first."
        )


@app.command("scan")
def scan(ctx: typer.Context) -> None:
    """Scan the local subnet for TVs."""

    def _found(device: DeviceDescriptor) -> None:
        typer.echo(f"{device.address}:{device.port} {device.name}")

    try:
        client = _build_client(ctx)
        result = asyncio.run(client.scan(on_found=_found))
    except WebosctlError as exc:
        raise _fail(exc) from None

    typer.echo(f"{result.status.value} ({len(result.devices)})")
    if not result.devices:
        raise typer.Exit(code=1)


@app.command("pair")
def pair(
    ctx: typer.Context,
    address: str,
    pin: str | None = typer.Option(None, "--pin", help="PIN shown on the TV (prompted if omitted)"),
    timeout: float = typer.Option(60.0, "--timeout", help="Seconds to wait for the TV"),
) -> None:
    """Pair with the TV at ADDRESS and store the client key."""

    async def _pair(client: Client) -> None:
        try:
            if not await client.connect(address):
                raise SessionError(f"{client.status.value}: {client.last_error}")
            phase = await client.wait_for_phase(*_SETTLED_PHASES, timeout_s=timeout)
            if phase is ConnectionPhase.AWAITING_PAIRING_PROMPT:
                typer.echo("Accept the pairing request on the TV")
            elif phase is ConnectionPhase.AWAITING_PIN:
                code = pin or typer.prompt("PIN shown on the TV")
                await client.submit_pin(code.strip())
            phase = await client.wait_for_phase(
                ConnectionPhase.PAIRED, ConnectionPhase.DISCONNECTED, timeout_s=timeout
            )
            if phase is not ConnectionPhase.PAIRED:
                raise SessionError(f"Pairing failed: {client.status.value}")
        finally:
            await client.disconnect()

    try:
        client = _build_client(ctx)
        asyncio.run(_pair(client))
    except WebosctlError as exc:
        raise _fail(exc) from None
    typer.echo(f"Paired with {address}")


@app.command("send")
def send(
    ctx: typer.Context,
    address: str,
    command: RemoteCommand,
    argument: str | None = typer.Argument(None, help="App id for launch_app, input id for select_input"),
    timeout: float = typer.Option(10.0, "--timeout", help="Seconds to wait for the TV"),
) -> None:
    """Send COMMAND to the paired TV at ADDRESS."""
    observer = _Observer()

    async def _send(client: Client) -> None:
        try:
            await _connect_paired(client, address, timeout)
            if COMMAND_TABLE[command].is_key:
                try:
                    await asyncio.wait_for(observer.input_ready.wait(), timeout)
                except asyncio.TimeoutError:
                    raise SessionError("Input channel did not open in time") from None
            await client.send_command(command, argument)
        finally:
            await client.disconnect()

    try:
        client = _build_client(ctx, observer)
        asyncio.run(_send(client))
    except WebosctlError as exc:
        raise _fail(exc) from None
    typer.echo(f"Sent {command.value} to {address}")


@app.command("inputs")
def inputs(
    ctx: typer.Context,
    address: str,
    timeout: float = typer.Option(10.0, "--timeout", help="Seconds to wait for the TV"),
) -> None:
    """List external inputs of the paired TV at ADDRESS."""

    async def _inputs(client: Client) -> list[dict]:
        try:
            await _connect_paired(client, address, timeout)
            return await client.list_inputs()
        finally:
            await client.disconnect()

    try:
        client = _build_client(ctx)
        devices = asyncio.run(_inputs(client))
    except WebosctlError as exc:
        raise _fail(exc) from None

    if not devices:
        typer.echo("No inputs reported")
        return
    for device in devices:
        typer.echo(f"{device.get('id', '?')}: {device.get('label', '')}")


@app.command("commands")
def list_commands() -> None:
    """List supported remote commands."""
    for command, route in COMMAND_TABLE.items():
        target = f"key {route.button}" if route.is_key else route.uri
        needs = f" <{route.argument_field}>" if route.argument_field else ""
        typer.echo(f"{command.value}{needs}: {target}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()

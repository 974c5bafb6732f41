"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging

import typer

from garagectl.core.errors import GaragectlError
from garagectl.core.model import TRIGGER_COMMAND, CommandResult, PeripheralIdentity
from garagectl.core.service import GarageService

app = typer.Typer(help="Garage door control over Bluetooth Low Energy")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log radio and state-machine activity"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> GarageService:
    service = GarageService()
    for warning in getattr(service, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _describe(peripheral: PeripheralIdentity) -> str:
    saved = " [saved]" if peripheral.is_saved else ""
    return f"{peripheral.address} {peripheral.label}{saved}"


@app.command("scan")
def scan(
    window: float | None = typer.Option(None, "--window", help="Scan window in seconds"),
) -> None:
    """Scan for nearby garage door controllers."""
    try:
        service = _build_service()
        results = asyncio.run(_scan(service, window))
        if not results:
            typer.echo("No garage door controllers found")
            return
        for peripheral in results:
            typer.echo(_describe(peripheral))
    except GaragectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


async def _scan(service: GarageService, window: float | None) -> tuple[PeripheralIdentity, ...]:
    try:
        return await service.scan(window)
    finally:
        await service.aclose()


@app.command("devices")
def list_devices() -> None:
    """List saved and bonded garage door controllers."""
    try:
        service = _build_service()
        bonded = service.list_bonded()
        saved = service.list_saved()
        if not bonded and not saved:
            typer.echo("No saved or bonded devices")
            return

        listed = set()
        for peripheral in bonded:
            typer.echo(_describe(peripheral))
            listed.add(peripheral.address)
        for peripheral in saved:
            if peripheral.address not in listed:
                typer.echo(_describe(peripheral))
    except GaragectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("trigger")
def trigger(
    device: str | None = typer.Option(None, "--device", help="Address or partial name"),
) -> None:
    """Press the garage door button."""
    _send(TRIGGER_COMMAND, device)


@app.command("send")
def send(
    command: str,
    device: str | None = typer.Option(None, "--device", help="Address or partial name"),
) -> None:
    """Send an arbitrary text command to the controller."""
    _send(command, device)


def _send(command: str, device: str | None) -> None:
    try:
        service = _build_service()
        peripheral = service.resolve_peripheral(device)
        result = asyncio.run(_connect_and_send(service, peripheral, command))
        typer.echo(
            f"Sent {result.command} to {result.address} (acknowledged in {result.elapsed_s:.2f}s)"
        )
    except GaragectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


async def _connect_and_send(service: GarageService, peripheral: PeripheralIdentity, command: str) -> CommandResult:
    try:
        await service.connect(peripheral)
        return await service.send(command)
    finally:
        await service.aclose()


@app.command("forget")
def forget() -> None:
    """Forget the last connected device."""
    try:
        service = _build_service()
        address = service.forget_device()
        if address is None:
            typer.echo("No last connected device recorded")
            return
        typer.echo(f"Forgot {address}")
    except GaragectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()

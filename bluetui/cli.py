"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer

from bluetui.core.config import load_config
from bluetui.core.errors import BluetuiError
from bluetui.core.events import (
    AdapterChanged,
    AdapterRemoved,
    DeviceChanged,
    DeviceRemoved,
    DevicesAdded,
    Event,
    MediaChanged,
)
from bluetui.core.model import Adapter, Device, Transfer, TransferStatus
from bluetui.core.operations import Operation
from bluetui.core.service import BluetoothService

app = typer.Typer(help="Bluetooth adapter, device, and file transfer management")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _prompt(question: str) -> str:
    return typer.prompt(question, default="n", show_default=False)


def _build_service(
    *,
    adapter: str | None = None,
    receive_dir: Path | None = None,
    interactive: bool = False,
) -> BluetoothService:
    config = load_config(adapter=adapter, receive_dir=receive_dir)
    service = BluetoothService.open(config, prompt=_prompt if interactive else None)
    for warning in getattr(service, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


@contextmanager
def _service(**kwargs: Any) -> Iterator[BluetoothService]:
    service = _build_service(**kwargs)
    try:
        yield service
    finally:
        service.stop()


def _wait(service: BluetoothService, operation: Operation) -> Any:
    try:
        return operation.result()
    except KeyboardInterrupt:
        future = service.cancel()
        if future is not None:
            future.result()
        typer.echo("Cancelled", err=True)
        raise typer.Exit(code=130) from None


def _adapter_line(adapter: Adapter, current: Adapter | None) -> str:
    marker = "*" if current is not None and current.path == adapter.path else " "
    states = [
        name
        for name, on in (
            ("powered", adapter.powered),
            ("discoverable", adapter.discoverable),
            ("pairable", adapter.pairable),
            ("scanning", adapter.discovering),
        )
        if on
    ]
    return f"{marker} {adapter.id} {adapter.address} {adapter.alias or adapter.name} ({', '.join(states) or 'off'})"


def _device_line(device: Device) -> str:
    states = [
        name
        for name, on in (
            ("connected", device.connected),
            ("bonded" if device.bonded else "paired", device.paired),
            ("trusted", device.trusted),
            ("blocked", device.blocked),
        )
        if on
    ]
    if device.connected and device.percentage > 0:
        states.append(f"battery {device.percentage}%")
    props = f"({', '.join(states)})" if states else "[new]"
    return f"{device.address} {device.display_name} <{device.type}> {props}"


def _event_line(event: Event) -> str | None:
    if isinstance(event, AdapterChanged):
        return f"adapter {_adapter_line(event.adapter, None).strip()}"
    if isinstance(event, AdapterRemoved):
        suffix = " (was current)" if event.was_current else ""
        return f"adapter removed {event.path}{suffix}"
    if isinstance(event, DevicesAdded):
        return "\n".join(f"device added {_device_line(d)}" for d in event.devices)
    if isinstance(event, DeviceChanged):
        return f"device {_device_line(event.device)}"
    if isinstance(event, DeviceRemoved):
        return f"device removed {event.path}"
    if isinstance(event, MediaChanged):
        track = event.media.track
        return f"media {event.media.status or '-'} {track.title} - {track.artist}"
    return None


def _progress(transfer: Transfer) -> None:
    typer.echo(f"{transfer.name}: {transfer.status.value} {transfer.progress:.0%}")


@app.command("adapters")
def list_adapters() -> None:
    """List Bluetooth adapters; the current one is marked with '*'."""
    try:
        with _service() as service:
            current = service.current_adapter
            for adapter in service.list_adapters():
                typer.echo(_adapter_line(adapter, current))
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices(
    adapter: str | None = typer.Option(None, "--adapter", "-a", help="Adapter id, e.g. hci0"),
) -> None:
    """List devices known to an adapter, paired/trusted/blocked first."""
    try:
        with _service(adapter=adapter) as service:
            devices = service.list_devices()
            if not devices:
                typer.echo("No Bluetooth devices found")
                return
            for device in devices:
                typer.echo(_device_line(device))
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("info")
def device_info(device: str = typer.Argument(..., help="Address, path or partial name")) -> None:
    """Show the properties of one device."""
    try:
        with _service() as service:
            target = service.resolve_device(device)
            typer.echo(f"Name: {target.display_name}")
            typer.echo(f"Address: {target.address} ({target.address_type or 'unknown'})")
            typer.echo(f"Type: {target.type}")
            typer.echo(f"Adapter: {target.adapter}")
            typer.echo(f"Connected: {'yes' if target.connected else 'no'}")
            typer.echo(f"Paired: {'yes' if target.paired else 'no'}")
            typer.echo(f"Trusted: {'yes' if target.trusted else 'no'}")
            typer.echo(f"Blocked: {'yes' if target.blocked else 'no'}")
            if target.percentage:
                typer.echo(f"Battery: {target.percentage}%")
            if target.rssi:
                typer.echo(f"RSSI: {target.rssi}")
            for uuid in target.uuids:
                typer.echo(f"  {uuid}")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("pair")
def pair(device: str = typer.Argument(..., help="Address, path or partial name")) -> None:
    """Pair with a device, answering pairing prompts interactively."""
    try:
        with _service(interactive=True) as service:
            target = service.resolve_device(device)
            typer.echo(f"Pairing with {target.display_name}..")
            _wait(service, service.pair(target))
            typer.echo(f"Paired with {target.display_name}")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("connect")
def connect(device: str = typer.Argument(..., help="Address, path or partial name")) -> None:
    """Connect to a device."""
    try:
        with _service() as service:
            target = service.resolve_device(device)
            if target.connected:
                typer.echo(f"{target.display_name} is already connected")
                return
            typer.echo(f"Connecting to {target.display_name}..")
            _wait(service, service.connect(target))
            typer.echo(f"Connected to {target.display_name}")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("disconnect")
def disconnect(device: str = typer.Argument(..., help="Address, path or partial name")) -> None:
    """Disconnect a device."""
    try:
        with _service() as service:
            target = service.resolve_device(device)
            service.disconnect(target).result()
            typer.echo(f"Disconnected from {target.display_name}")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("trust")
def trust(
    device: str = typer.Argument(..., help="Address, path or partial name"),
    off: bool = typer.Option(False, "--off", help="Remove trust instead"),
) -> None:
    """Mark a device as trusted (or untrusted with --off)."""
    try:
        with _service() as service:
            target = service.resolve_device(device)
            service.trust(target, not off).result()
            typer.echo(f"{target.display_name} is {'no longer ' if off else ''}trusted")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("remove")
def remove(device: str = typer.Argument(..., help="Address, path or partial name")) -> None:
    """Remove a device from its adapter."""
    try:
        with _service() as service:
            target = service.resolve_device(device)
            service.remove_device(target).result()
            typer.echo(f"Removed {target.display_name}")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("power")
def power(
    state: str = typer.Argument(..., help="on or off"),
    adapter: str | None = typer.Option(None, "--adapter", "-a", help="Adapter id, e.g. hci0"),
) -> None:
    """Power an adapter on or off."""
    if state not in ("on", "off"):
        typer.echo("Error: state must be 'on' or 'off'", err=True)
        raise typer.Exit(code=1)
    try:
        with _service(adapter=adapter) as service:
            service.set_powered(state == "on").result()
            typer.echo(f"{service.current_adapter.id} powered {state}")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    duration: float = typer.Option(10.0, "--duration", "-d", min=0.0, help="Seconds to scan"),
    adapter: str | None = typer.Option(None, "--adapter", "-a", help="Adapter id, e.g. hci0"),
) -> None:
    """Discover nearby devices for a while, then list them."""
    try:
        with _service(adapter=adapter) as service:
            service.start_discovery().result()
            try:
                time.sleep(duration)
            except KeyboardInterrupt:
                pass
            finally:
                service.stop_discovery().result()
            for device in service.list_devices():
                typer.echo(_device_line(device))
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send(
    device: str = typer.Argument(..., help="Address, path or partial name"),
    files: list[Path] = typer.Argument(..., exists=True, dir_okay=False, readable=True),
) -> None:
    """Send one or more files to a paired, connected device."""
    try:
        with _service() as service:
            target = service.resolve_device(device)
            results = _wait(service, service.send_files(target, files, on_progress=_progress))
            failed = [t for t in results if t.status is not TransferStatus.COMPLETE]
            if failed or len(results) != len(files):
                typer.echo(f"Error: {len(files) - len(results) + len(failed)} file(s) not sent", err=True)
                raise typer.Exit(code=1)
            typer.echo(f"Sent {len(results)} file(s) to {target.display_name}")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("network")
def network(
    device: str = typer.Argument(..., help="Address, path or partial name"),
    conn_type: str = typer.Option("panu", "--type", "-t", help="panu or dun"),
    down: bool = typer.Option(False, "--down", help="Deactivate instead"),
) -> None:
    """Bring a Bluetooth tethering connection up (or down with --down)."""
    try:
        with _service() as service:
            target = service.resolve_device(device)
            if down:
                service.disconnect_network(target).result()
                typer.echo(f"Disconnected network on {target.display_name}")
                return
            _wait(service, service.connect_network(target, conn_type))
            typer.echo(f"{conn_type.upper()} connection to {target.display_name} is active")
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("watch")
def watch(
    adapter: str | None = typer.Option(None, "--adapter", "-a", help="Adapter id, e.g. hci0"),
    receive_dir: Path | None = typer.Option(None, "--receive-dir", file_okay=False, help="Where received files go"),
) -> None:
    """Print adapter and device changes until interrupted; accepts incoming requests."""

    def show(event: Event) -> None:
        line = _event_line(event)
        if line:
            typer.echo(line)

    try:
        with _service(adapter=adapter, receive_dir=receive_dir, interactive=True) as service:
            service.subscribe(show)
            typer.echo(f"Watching {service.current_adapter.id}, press Ctrl+C to stop")
            try:
                while True:
                    time.sleep(1.0)
            except KeyboardInterrupt:
                return
    except BluetuiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()

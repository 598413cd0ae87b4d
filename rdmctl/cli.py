"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

import typer

from rdmctl.core.errors import MessageBuildError, RdmctlError
from rdmctl.core.model import Uid
from rdmctl.core.rdm import ESTA_MANUFACTURER_ID
from rdmctl.core.service import RdmService

app = typer.Typer(help="Get and set RDM parameters on lighting devices through an RDM gateway")

_UID_HELP = "The UID of the device to control, as xxxx:yyyyyyyy"
_PID_LOCATION_HELP = "Directory to read PID definitions from"


def _build_service(pid_location: Path | None) -> RdmService:
    service = RdmService(pid_location=pid_location)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _perform(
    is_set: bool,
    pid: str,
    args: list[str] | None,
    uid: str | None,
    universe: int | None,
    sub_device: int,
    pid_location: Path | None,
    host: str | None,
    port: int | None,
    timeout: float | None,
) -> None:
    try:
        target = Uid.from_string(uid or "")
        service = _build_service(pid_location)
        code = service.perform(
            target,
            pid,
            args or [],
            is_set=is_set,
            universe=universe,
            sub_device=sub_device,
            host=host,
            port=port,
            timeout_s=timeout,
        )
    except MessageBuildError as exc:
        typer.echo(f"Error: {exc}", err=True)
        typer.echo(exc.schema, nl=False)
        raise typer.Exit(code=exc.exit_code) from None
    except RdmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=exc.exit_code) from None
    if code:
        raise typer.Exit(code=int(code))


@app.command("get")
def get_pid(
    pid: str = typer.Argument(..., help="PID name or value"),
    args: list[str] | None = typer.Argument(None, help="PID arguments"),
    uid: str | None = typer.Option(None, "--uid", help=_UID_HELP),
    universe: int | None = typer.Option(None, "--universe", "-u", help="Universe number"),
    sub_device: int = typer.Option(0, "--sub-device", "-d", help="Target a particular sub device"),
    pid_location: Path | None = typer.Option(None, "--pid-location", "-p", help=_PID_LOCATION_HELP),
    host: str | None = typer.Option(None, "--host", help="RDM gateway address"),
    port: int | None = typer.Option(None, "--port", help="RDM gateway UDP port"),
    timeout: float | None = typer.Option(None, "--timeout", help="Abort the transaction after this many seconds"),
) -> None:
    """Get the value of a PID for a device."""
    _perform(False, pid, args, uid, universe, sub_device, pid_location, host, port, timeout)


@app.command("set")
def set_pid(
    pid: str = typer.Argument(..., help="PID name or value"),
    args: list[str] | None = typer.Argument(None, help="PID arguments"),
    uid: str | None = typer.Option(None, "--uid", help=_UID_HELP),
    universe: int | None = typer.Option(None, "--universe", "-u", help="Universe number"),
    sub_device: int = typer.Option(0, "--sub-device", "-d", help="Target a particular sub device"),
    pid_location: Path | None = typer.Option(None, "--pid-location", "-p", help=_PID_LOCATION_HELP),
    host: str | None = typer.Option(None, "--host", help="RDM gateway address"),
    port: int | None = typer.Option(None, "--port", help="RDM gateway UDP port"),
    timeout: float | None = typer.Option(None, "--timeout", help="Abort the transaction after this many seconds"),
) -> None:
    """Set the value of a PID for a device."""
    _perform(True, pid, args, uid, universe, sub_device, pid_location, host, port, timeout)


@app.command("pids")
def list_pids(
    uid: str | None = typer.Option(None, "--uid", help="Include manufacturer PIDs for this UID"),
    pid_location: Path | None = typer.Option(None, "--pid-location", "-p", help=_PID_LOCATION_HELP),
) -> None:
    """List the known PIDs."""
    try:
        manufacturer_id = Uid.from_string(uid).manufacturer_id if uid else ESTA_MANUFACTURER_ID
        service = _build_service(pid_location)
        for name in service.list_pids(manufacturer_id):
            typer.echo(name)
    except RdmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=exc.exit_code) from None


@app.command("describe")
def describe_pid(
    pid: str = typer.Argument(..., help="PID name or value"),
    uid: str | None = typer.Option(None, "--uid", help="Resolve manufacturer PIDs for this UID"),
    pid_location: Path | None = typer.Option(None, "--pid-location", "-p", help=_PID_LOCATION_HELP),
) -> None:
    """Show the GET and SET arguments a PID takes."""
    try:
        manufacturer_id = Uid.from_string(uid).manufacturer_id if uid else ESTA_MANUFACTURER_ID
        service = _build_service(pid_location)
        descriptor, schemas = service.describe_pid(pid, manufacturer_id)
        typer.echo(f"{descriptor.name.lower()} (0x{descriptor.value:04x})")
        for command, schema in schemas.items():
            if schema is None:
                typer.echo(f"{command}: not supported")
                continue
            typer.echo(f"{command}:")
            for line in schema.splitlines():
                typer.echo(f"  {line}")
    except RdmctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=exc.exit_code) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()

"""Command line interface for natupnp."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from natupnp.client import NatUpnpClient
from natupnp.config import ConfigManager, LogLevel, NatUpnpConfig
from natupnp.exceptions import NatUpnpError
from natupnp.logging_config import setup_logging
from natupnp.models import MappingRequest

logger = logging.getLogger(__name__)


def _build_client(config: NatUpnpConfig) -> NatUpnpClient:
    return NatUpnpClient(config=config)


def _run(coro: Any) -> Any:
    """Run a coroutine, turning library errors into click errors."""
    try:
        return asyncio.run(coro)
    except NatUpnpError as e:
        raise click.ClickException(str(e)) from e


def external_url(protocol: str, ip: str | None, port: int) -> str:
    return f"{protocol.lower()}://{ip or 'unknown'}:{port}"


async def run_mapping(
    client: NatUpnpClient,
    request: MappingRequest,
    console: Console,
    check_interval: float,
    stop: asyncio.Event,
) -> None:
    """Map a port, watch the external IP until ``stop`` is set, then unmap."""
    await client.map_port(request)
    try:
        current_ip = await client.get_external_ip()
        console.print(
            f"[green]Mapped[/green] {external_url(request.protocol, current_ip, request.public.port)}"
            f" -> port {request.private.port}"
        )

        while not stop.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=check_interval)
                break
            try:
                new_ip = await client.get_external_ip()
            except NatUpnpError as e:
                logger.warning("External IP check failed: %s", e)
                continue
            if new_ip != current_ip:
                current_ip = new_ip
                console.print(
                    f"[yellow]External IP changed:[/yellow] "
                    f"{external_url(request.protocol, current_ip, request.public.port)}"
                )
    finally:
        await client.unmap_port(request)
        console.print(
            f"[dim]Removed mapping for {request.protocol} port {request.public.port}[/dim]"
        )


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - Windows
            logger.debug("Signal handler for %s not supported", sig)


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to natupnp.toml",
)
@click.option("--timeout", type=int, default=None, help="Discovery timeout in ms")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity")
@click.pass_context
def main(ctx: click.Context, config_file: Path | None, timeout: int | None, verbose: int) -> None:
    """Manage NAT port mappings on a UPnP Internet Gateway Device."""
    try:
        config = ConfigManager(config_file).config
    except NatUpnpError as e:
        raise click.ClickException(str(e)) from e

    if timeout is not None:
        config = config.model_copy(update={"discovery_timeout_ms": timeout})
    if verbose:
        level = LogLevel.DEBUG if verbose > 1 else LogLevel.INFO
        config.logging = config.logging.model_copy(update={"log_level": level})

    setup_logging(config.logging)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command("map")
@click.argument("port_arg", metavar="[PORT]", required=False, type=int)
@click.argument("protocol_arg", metavar="[PROTOCOL]", required=False)
@click.argument("description_arg", metavar="[DESCRIPTION]", required=False)
@click.argument("ttl_arg", metavar="[TTL]", required=False, type=int)
@click.option("--port", "-p", type=int, default=None, help="Public port to map")
@click.option("--private-port", type=int, default=None, help="Internal port (default: same as public)")
@click.option(
    "--protocol",
    type=click.Choice(["tcp", "udp"], case_sensitive=False),
    default=None,
    help="Protocol (tcp or udp)",
)
@click.option("--description", "-d", default=None, help="Mapping description")
@click.option("--ttl", type=int, default=None, help="Lease duration in seconds (0 = indefinite)")
@click.option("--check-interval", type=float, default=None, help="External IP re-check interval in seconds")
@click.pass_context
def map_command(
    ctx: click.Context,
    port_arg: int | None,
    protocol_arg: str | None,
    description_arg: str | None,
    ttl_arg: int | None,
    port: int | None,
    private_port: int | None,
    protocol: str | None,
    description: str | None,
    ttl: int | None,
    check_interval: float | None,
) -> None:
    """Map a port until interrupted, then remove the mapping."""
    config: NatUpnpConfig = ctx.obj["config"]
    public_port = port if port is not None else port_arg
    if public_port is None:
        raise click.UsageError("A port is required (positional PORT or --port)")

    try:
        request = MappingRequest.from_options(
            public=public_port,
            private=private_port,
            protocol=protocol or protocol_arg,
            description=description or description_arg,
            ttl=ttl if ttl is not None else ttl_arg,
            default_description=config.default_description,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    console = Console()
    client = _build_client(config)
    interval = check_interval or config.check_interval

    async def _map_until_stopped() -> None:
        stop = asyncio.Event()
        _install_stop_handlers(stop)
        await run_mapping(client, request, console, interval, stop)

    _run(_map_until_stopped())


@main.command("unmap")
@click.argument("port", type=int)
@click.option(
    "--protocol",
    type=click.Choice(["tcp", "udp"], case_sensitive=False),
    default="tcp",
    help="Protocol (tcp or udp)",
)
@click.pass_context
def unmap_command(ctx: click.Context, port: int, protocol: str) -> None:
    """Remove a port mapping."""
    client = _build_client(ctx.obj["config"])
    _run(client.unmap_port(public=port, protocol=protocol))
    Console().print(f"[green]Removed[/green] {protocol.upper()} port {port}")


@main.command("list")
@click.option("--local", is_flag=True, help="Only mappings pointing at this host")
@click.option("--description", "-d", default=None, help="Only mappings whose description contains this text")
@click.pass_context
def list_command(ctx: click.Context, local: bool, description: str | None) -> None:
    """List the gateway's port mappings."""
    console = Console()
    client = _build_client(ctx.obj["config"])
    mappings = _run(client.get_mappings(local=local, description=description))

    if not mappings:
        console.print("[dim]No port mappings[/dim]")
        return

    table = Table()
    table.add_column("Protocol", style="cyan")
    table.add_column("Public", style="yellow")
    table.add_column("Private", style="magenta")
    table.add_column("Enabled", style="green")
    table.add_column("Description")
    table.add_column("TTL", style="blue")
    for mapping in mappings:
        table.add_row(
            mapping.protocol.upper(),
            f"{mapping.public.host or '*'}:{mapping.public.port}",
            f"{mapping.private.host}:{mapping.private.port}",
            "yes" if mapping.enabled else "no",
            mapping.description,
            str(mapping.ttl) if mapping.ttl else "Permanent",
        )
    console.print(table)


@main.command("ip")
@click.pass_context
def ip_command(ctx: click.Context) -> None:
    """Print the gateway's external IP address."""
    client = _build_client(ctx.obj["config"])
    external_ip = _run(client.get_external_ip())
    if external_ip is None:
        raise click.ClickException("Gateway did not report an external IP address")
    click.echo(external_ip)

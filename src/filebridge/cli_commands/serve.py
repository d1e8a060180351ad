"""``filebridge serve``: run the gateway over stdio."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from filebridge.cli_commands._output import err_console
from filebridge.server.config import GatewaySettings, SettingsLoader
from filebridge.server.errors import ConfigurationError

if TYPE_CHECKING:
    from filebridge.server.compose import Gateway

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def load_settings(config: str | None) -> GatewaySettings:
    """Settings from *config*, or the defaults; exits with status 1 on bad config."""
    if config is None:
        return GatewaySettings()
    try:
        return SettingsLoader(Path(config)).load()
    except ConfigurationError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(1)


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Settings YAML file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the configured log level.",
)
@click.option("--telemetry", is_flag=True, help="Enable OpenTelemetry export.")
@click.option("--no-cache", is_flag=True, help="Disable the response cache.")
@click.option("--check", is_flag=True, help="Validate configuration and exit.")
def serve(
    config: str | None,
    log_level: str | None,
    telemetry: bool,
    no_cache: bool,
    check: bool,
) -> None:
    """Serve JSON-RPC requests on stdin/stdout."""
    from filebridge.server.compose import build_gateway

    settings = load_settings(config)
    if telemetry:
        settings.telemetry.enabled = True
    if no_cache:
        settings.cache.enabled = False

    level = (log_level or settings.logging.level).upper()
    logging.basicConfig(stream=sys.stderr, level=level, format=_LOG_FORMAT)

    if settings.telemetry.enabled:
        from filebridge.utils.telemetry import configure_telemetry

        try:
            configure_telemetry(
                service_name=settings.server.name,
                otlp_endpoint=settings.telemetry.otlp_endpoint,
            )
        except ImportError as exc:
            err_console.print(f"[red]Telemetry error:[/red] {exc}")
            sys.exit(1)

    gateway = build_gateway(settings)

    if check:
        err_console.print("[green]Configuration valid.[/green]")
        err_console.print(f"  Server: {settings.server.name} {settings.server.version}")
        err_console.print(f"  Tools: {', '.join(gateway.catalog.names())}")
        return

    try:
        asyncio.run(_serve(gateway))
    except KeyboardInterrupt:
        err_console.print("Interrupted, shutting down.")


async def _serve(gateway: Gateway) -> None:
    from filebridge.protocol.transport import StdioServer, open_stdio_streams

    reader, writer = await open_stdio_streams()
    await StdioServer(gateway.handle, reader, writer).serve()

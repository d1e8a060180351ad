"""``filebridge tools``: list and call the built-in tools without a client."""

from __future__ import annotations

import asyncio
import json
import sys

import click

from filebridge.cli_commands._output import (
    console,
    err_console,
    print_response,
    print_tools_table,
)
from filebridge.cli_commands.serve import load_settings


@click.group()
def tools() -> None:
    """List and call tools."""


@tools.command("list")
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--json", "as_json", is_flag=True, help="Print tool descriptors as JSON.")
def list_tools(config: str | None, as_json: bool) -> None:
    """List registered tools and their execution policies."""
    from filebridge.server.compose import build_gateway

    gateway = build_gateway(load_settings(config))
    registered = list(gateway.catalog)

    if as_json:
        console.print_json(json.dumps([tool.descriptor.to_wire() for tool in registered]))
        return
    if not registered:
        console.print("[yellow]No tools registered.[/yellow]")
        return
    print_tools_table(registered)


@tools.command("call")
@click.argument("name")
@click.option("--args", "args_json", default="{}", help="Tool arguments as a JSON object.")
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--user", default=None, help="Caller user id (defaults to the configured one).")
@click.option(
    "--permission",
    "-p",
    "permissions",
    multiple=True,
    help="Caller permission; repeat to grant several (defaults to the configured ones).",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON-RPC response.")
def call_tool(
    name: str,
    args_json: str,
    config: str | None,
    user: str | None,
    permissions: tuple[str, ...],
    as_json: bool,
) -> None:
    """Call tool NAME once through the full dispatch path."""
    from filebridge.server.compose import build_gateway

    try:
        arguments = json.loads(args_json)
    except ValueError as exc:
        console.print(f"[red]Invalid --args JSON:[/red] {exc}")
        sys.exit(2)

    gateway = build_gateway(load_settings(config))
    updates: dict[str, object] = {}
    if user is not None:
        updates["user_id"] = user
    if permissions:
        updates["permissions"] = frozenset(permissions)
    context = gateway.context.model_copy(update=updates)

    request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    }
    response = asyncio.run(gateway.handle(request, context))
    if response is None:
        err_console.print("[red]No response received for tools/call.[/red]")
        sys.exit(1)

    print_response(response, as_json=as_json)
    if response.error is not None:
        sys.exit(1)

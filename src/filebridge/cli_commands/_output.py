"""Shared CLI output formatters."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from filebridge.protocol.models import JsonRpcResponse
    from filebridge.runtime.models import RegisteredTool

console = Console()
# stdout carries the protocol while serving; diagnostics go here.
err_console = Console(stderr=True)


def print_tools_table(tools: list[RegisteredTool]) -> None:
    """Pretty-print registered tools with their policies."""
    table = Table(title="Registered Tools")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Permissions")
    table.add_column("Timeout", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Description")

    for tool in tools:
        policy = tool.policy
        table.add_row(
            tool.name,
            ", ".join(sorted(policy.required_permissions)) or "-",
            f"{policy.timeout:g}s",
            str(policy.max_retries),
            _truncate(tool.descriptor.description),
        )

    console.print(table)


def print_response(response: JsonRpcResponse, *, as_json: bool = False) -> None:
    """Print a ``tools/call`` response: text parts verbatim, errors in red."""
    if as_json:
        console.print_json(json.dumps(response.to_wire(), default=str))
        return

    if response.error is not None:
        console.print(f"[red]Error {response.error.code}:[/red] {response.error.message}")
        if response.error.data is not None:
            console.print(response.error.data)
        return

    result: Any = response.result
    parts = result.get("content", []) if isinstance(result, dict) else []
    for part in parts:
        if part.get("type") == "text":
            console.print(part.get("text", ""), markup=False, highlight=False)
        else:
            console.print(f"[dim]<{part.get('type')} content, {part.get('mimeType', '?')}>[/dim]")


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."

"""Error types raised by the catalog and the execution supervisor."""

from __future__ import annotations

from filebridge.protocol.errors import ProcessingError


class CatalogError(Exception):
    """Base error for tool registration failures."""


class DuplicateToolError(CatalogError):
    """A tool with the same name is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool {name} is already registered")


class InvalidToolDescriptorError(CatalogError):
    """The descriptor is missing a name, description or input schema."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("Invalid tool descriptor" + (f": {detail}" if detail else ""))


class ToolTimeoutError(ProcessingError):
    """A single attempt exceeded the tool's configured timeout."""

    def __init__(self, tool_name: str, timeout: float) -> None:
        self.tool_name = tool_name
        self.timeout = timeout
        super().__init__(
            f"Tool execution timed out after {timeout}s: {tool_name}",
            data={"tool": tool_name, "reason": "timeout", "timeout": timeout},
        )

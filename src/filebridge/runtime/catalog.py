"""ToolCatalog: the in-memory registry of tools, their policies and handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from filebridge.protocol.models import ToolDescriptor
from filebridge.runtime.errors import DuplicateToolError, InvalidToolDescriptorError
from filebridge.runtime.models import ExecutionPolicy, RegisteredTool
from filebridge.runtime.permissions import PermissionGate

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from filebridge.runtime.models import SecurityContext, ToolHandler

logger = logging.getLogger(__name__)

_CATEGORY_HINTS: list[tuple[str, tuple[str, ...]]] = [
    ("file_operations", ("file", "directory", "search")),
    ("image_processing", ("image", "analyze", "download")),
    ("system", ("server", "health", "ping")),
]


class ToolCatalog:
    """Name-keyed map of :class:`RegisteredTool` entries.

    Built once at startup and read-mostly afterwards.  Iteration follows
    registration order.

    Usage::

        catalog = ToolCatalog()
        catalog.register(descriptor, handler, ExecutionPolicy(timeout=5.0))
        tool = catalog.lookup("read_file")
    """

    def __init__(self, gate: PermissionGate | None = None) -> None:
        self._gate = gate or PermissionGate()
        self._tools: dict[str, RegisteredTool] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[RegisteredTool]:
        return iter(list(self._tools.values()))

    def register(
        self,
        descriptor: ToolDescriptor | Mapping[str, Any],
        handler: ToolHandler,
        policy: ExecutionPolicy | None = None,
    ) -> RegisteredTool:
        """Insert a tool with zeroed counters.

        Raises:
            InvalidToolDescriptorError: If name, description or input schema is missing.
            DuplicateToolError: If a tool with the same name is already registered.
        """
        if not isinstance(descriptor, ToolDescriptor):
            try:
                descriptor = ToolDescriptor.model_validate(descriptor)
            except ValidationError as exc:
                raise InvalidToolDescriptorError(str(exc)) from exc

        if descriptor.name in self._tools:
            raise DuplicateToolError(descriptor.name)

        entry = RegisteredTool(
            descriptor=descriptor,
            handler=handler,
            policy=policy or ExecutionPolicy(),
        )
        self._tools[descriptor.name] = entry
        logger.debug("Tool registered: %s", descriptor.name)
        return entry

    def unregister(self, name: str) -> bool:
        """Remove *name*; return ``False`` when it was not registered."""
        removed = self._tools.pop(name, None) is not None
        if removed:
            logger.debug("Tool unregistered: %s", name)
        return removed

    def lookup(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_available(self, context: SecurityContext) -> list[ToolDescriptor]:
        """Descriptors of the tools *context* may call, in registration order."""
        allowed = self._gate.filter(context, self._tools.values(), lambda t: t.policy)
        return [tool.descriptor for tool in allowed]

    def statistics(self) -> dict[str, Any]:
        """Per-category counts and per-tool execution counters."""
        by_category: dict[str, int] = {}
        executions: list[dict[str, Any]] = []
        for tool in self._tools.values():
            category = tool_category(tool.name)
            by_category[category] = by_category.get(category, 0) + 1
            executions.append(
                {
                    "name": tool.name,
                    "execution_count": tool.execution_count,
                    "last_executed": (
                        tool.last_executed_at.isoformat() if tool.last_executed_at else None
                    ),
                }
            )
        return {
            "total_tools": len(self._tools),
            "tools_by_category": by_category,
            "execution_stats": executions,
        }


def tool_category(name: str) -> str:
    """Coarse category from the tool name (first matching hint wins)."""
    for category, hints in _CATEGORY_HINTS:
        if any(hint in name for hint in hints):
            return category
    return "other"

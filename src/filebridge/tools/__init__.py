"""Built-in tools shipped with filebridge."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from filebridge.runtime.models import ExecutionPolicy
from filebridge.tools.base import BuiltinTool, describe, parse_arguments
from filebridge.tools.file_tools import FileTools
from filebridge.tools.image_tools import ImageTools
from filebridge.tools.system_tools import SystemTools

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    import httpx

    from filebridge.protocol.models import ServerInfo
    from filebridge.runtime.catalog import ToolCatalog
    from filebridge.server.config import ToolOverride
    from filebridge.utils.metrics import InMemoryMetricsSink

__all__ = [
    "BuiltinTool",
    "FileTools",
    "ImageTools",
    "SystemTools",
    "builtin_tools",
    "describe",
    "parse_arguments",
    "register_builtin_tools",
]

logger = logging.getLogger(__name__)


def builtin_tools(
    catalog: ToolCatalog,
    metrics: InMemoryMetricsSink,
    server_info: ServerInfo,
    *,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> list[BuiltinTool]:
    """Every built-in tool in listing order: files, images, then system."""
    return [
        *FileTools().definitions(),
        *ImageTools(transport=http_transport).definitions(),
        *SystemTools(catalog, metrics, server_info).definitions(),
    ]


def register_builtin_tools(
    catalog: ToolCatalog,
    tools: Iterable[BuiltinTool],
    overrides: Mapping[str, ToolOverride] | None = None,
) -> list[str]:
    """Register *tools*, applying per-tool policy *overrides*.

    Returns the names actually registered; tools overridden with
    ``enabled: false`` are skipped.
    """
    tools = list(tools)
    overrides = overrides or {}
    unknown = set(overrides) - {tool.name for tool in tools}
    if unknown:
        logger.warning("Overrides for unknown tools ignored: %s", ", ".join(sorted(unknown)))

    registered: list[str] = []
    for tool in tools:
        override = overrides.get(tool.name)
        policy = tool.policy
        if override is not None:
            if not override.enabled:
                logger.info("Tool disabled by configuration: %s", tool.name)
                continue
            updates = override.model_dump(exclude_none=True, exclude={"enabled"})
            if updates:
                policy = ExecutionPolicy.model_validate({**policy.model_dump(), **updates})
        catalog.register(tool.descriptor, tool.handler, policy)
        registered.append(tool.name)
    return registered

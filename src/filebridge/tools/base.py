"""Shared plumbing for built-in tools: descriptors from pydantic argument models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from filebridge.protocol.errors import ToolValidationError
from filebridge.protocol.models import ToolDescriptor
from filebridge.runtime.models import ExecutionPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping

    from filebridge.runtime.models import ToolHandler

ArgsT = TypeVar("ArgsT", bound=BaseModel)


@dataclass(frozen=True)
class BuiltinTool:
    """A tool ready for :meth:`~filebridge.runtime.catalog.ToolCatalog.register`."""

    descriptor: ToolDescriptor
    handler: ToolHandler
    policy: ExecutionPolicy = field(default_factory=ExecutionPolicy)

    @property
    def name(self) -> str:
        return self.descriptor.name


def describe(name: str, description: str, args_model: type[BaseModel]) -> ToolDescriptor:
    """Build a descriptor whose ``inputSchema`` is the JSON Schema of *args_model*."""
    schema = args_model.model_json_schema()
    schema.pop("title", None)
    return ToolDescriptor(name=name, description=description, inputSchema=schema)


def parse_arguments(args_model: type[ArgsT], arguments: Mapping[str, Any], tool: str) -> ArgsT:
    """Validate *arguments*; failures become :class:`ToolValidationError` (-32005)."""
    try:
        return args_model.model_validate(dict(arguments))
    except ValidationError as exc:
        problems = [
            f"{'.'.join(map(str, err['loc'])) or '(root)'}: {err['msg']}" for err in exc.errors()
        ]
        raise ToolValidationError(
            f"Invalid arguments for tool {tool}",
            data={"tool": tool, "errors": problems},
        ) from exc

"""ResourceRegistry: read-only resources exposed through ``resources/*``."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from filebridge.protocol.errors import ResourceNotFoundError
from filebridge.runtime.permissions import PermissionGate

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from filebridge.runtime.models import SecurityContext

    ResourceReader = Callable[[], Awaitable[str] | str]

logger = logging.getLogger(__name__)


class Resource(BaseModel):
    """A resource descriptor as returned by ``resources/list``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    uri: str = Field(..., min_length=1)
    name: str
    description: str = ""
    mime_type: str = Field(default="text/plain", alias="mimeType")
    requires_auth: bool = Field(default=False, exclude=True)
    required_permissions: frozenset[str] = Field(default=frozenset(), exclude=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass
class _Entry:
    resource: Resource
    reader: ResourceReader


class ResourceRegistry:
    """URI-keyed map of resources and the callables that produce their text."""

    def __init__(self, gate: PermissionGate | None = None) -> None:
        self._gate = gate or PermissionGate()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, resource: Resource, reader: ResourceReader) -> None:
        """Add or replace the resource at ``resource.uri``."""
        self._entries[resource.uri] = _Entry(resource=resource, reader=reader)
        logger.debug("Resource registered: %s", resource.uri)

    def unregister(self, uri: str) -> bool:
        return self._entries.pop(uri, None) is not None

    def lookup(self, uri: str) -> Resource | None:
        entry = self._entries.get(uri)
        return entry.resource if entry else None

    def list_available(self, context: SecurityContext) -> list[Resource]:
        resources = [entry.resource for entry in self._entries.values()]
        return self._gate.filter(context, resources, lambda r: r)

    async def read(self, uri: str) -> list[dict[str, Any]]:
        """Produce the ``contents`` list for *uri*.

        Raises:
            ResourceNotFoundError: If nothing is registered under *uri*.
        """
        entry = self._entries.get(uri)
        if entry is None:
            raise ResourceNotFoundError(uri)

        text = entry.reader()
        if inspect.isawaitable(text):
            text = await text
        return [{"uri": uri, "mimeType": entry.resource.mime_type, "text": text}]

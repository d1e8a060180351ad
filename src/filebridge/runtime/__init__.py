"""Execution runtime: catalog, permission gate, supervisor, cache and dispatcher."""

from filebridge.runtime.cache import CacheGateway, CacheStore, InMemoryCacheStore, make_cache_key
from filebridge.runtime.catalog import ToolCatalog
from filebridge.runtime.dispatcher import CACHEABLE_METHODS, RequestDispatcher
from filebridge.runtime.errors import (
    CatalogError,
    DuplicateToolError,
    InvalidToolDescriptorError,
    ToolTimeoutError,
)
from filebridge.runtime.extensions import ExtensionRegistry
from filebridge.runtime.models import ExecutionPolicy, RegisteredTool, SecurityContext
from filebridge.runtime.permissions import PermissionGate
from filebridge.runtime.resources import Resource, ResourceRegistry
from filebridge.runtime.supervisor import ExecutionSupervisor, backoff_delay

__all__ = [
    "CACHEABLE_METHODS",
    "CacheGateway",
    "CacheStore",
    "CatalogError",
    "DuplicateToolError",
    "ExecutionPolicy",
    "ExecutionSupervisor",
    "ExtensionRegistry",
    "InMemoryCacheStore",
    "InvalidToolDescriptorError",
    "PermissionGate",
    "RegisteredTool",
    "RequestDispatcher",
    "Resource",
    "ResourceRegistry",
    "SecurityContext",
    "ToolCatalog",
    "ToolTimeoutError",
    "backoff_delay",
    "make_cache_key",
]

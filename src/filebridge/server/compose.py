"""Composition root: turns :class:`GatewaySettings` into a running dispatcher."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from filebridge.protocol.models import ServerInfo
from filebridge.runtime.cache import CacheGateway, InMemoryCacheStore
from filebridge.runtime.catalog import ToolCatalog
from filebridge.runtime.dispatcher import RequestDispatcher
from filebridge.runtime.extensions import ExtensionRegistry
from filebridge.runtime.models import SecurityContext
from filebridge.runtime.permissions import PermissionGate
from filebridge.runtime.resources import Resource, ResourceRegistry
from filebridge.runtime.supervisor import ExecutionSupervisor
from filebridge.server.config import GatewaySettings
from filebridge.tools import builtin_tools, register_builtin_tools
from filebridge.utils.metrics import FanoutMetricsSink, InMemoryMetricsSink, OpenTelemetryMetricsSink

if TYPE_CHECKING:
    import httpx

    from filebridge.protocol.models import JsonRpcResponse
    from filebridge.utils.metrics import MetricsSink

logger = logging.getLogger(__name__)

STATUS_URI = "filebridge://server/status"
STATISTICS_URI = "filebridge://tools/statistics"


@dataclass
class Gateway:
    """Everything ``build_gateway`` wired together."""

    settings: GatewaySettings
    dispatcher: RequestDispatcher
    catalog: ToolCatalog
    resources: ResourceRegistry
    extensions: ExtensionRegistry
    cache: CacheGateway
    stats: InMemoryMetricsSink
    context: SecurityContext

    async def handle(
        self,
        raw_request: Any,
        context: SecurityContext | None = None,
    ) -> JsonRpcResponse | None:
        """Dispatch with *context*, defaulting to the configured local caller."""
        return await self.dispatcher.dispatch(raw_request, context or self.context)


def build_gateway(
    settings: GatewaySettings | None = None,
    *,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Gateway:
    """Construct every component in dependency order.

    ``http_transport`` is forwarded to ``download_image`` (tests inject an
    :class:`httpx.MockTransport`).
    """
    settings = settings or GatewaySettings()
    server_info = ServerInfo(name=settings.server.name, version=settings.server.version)

    stats = InMemoryMetricsSink()
    metrics: MetricsSink = stats
    if settings.telemetry.enabled:
        metrics = FanoutMetricsSink([stats, OpenTelemetryMetricsSink()])

    gate = PermissionGate()
    cache = CacheGateway(
        InMemoryCacheStore(max_entries=settings.cache.max_entries),
        metrics,
        default_ttl=settings.cache.ttl,
        enabled=settings.cache.enabled,
        coalesce=settings.cache.coalesce,
    )
    catalog = ToolCatalog(gate)
    supervisor = ExecutionSupervisor(
        metrics,
        backoff_base=settings.execution.backoff_base,
        max_backoff=settings.execution.max_backoff,
    )
    resources = ResourceRegistry(gate)
    extensions = ExtensionRegistry()

    dispatcher = RequestDispatcher(
        catalog,
        supervisor,
        cache,
        metrics,
        gate=gate,
        resources=resources,
        extensions=extensions,
        server_info=server_info,
        instructions=settings.server.instructions,
    )

    registered = register_builtin_tools(
        catalog,
        builtin_tools(catalog, stats, server_info, http_transport=http_transport),
        settings.tools,
    )
    _register_builtin_resources(resources, catalog, stats, dispatcher)
    extensions.register("notifications/initialized", _acknowledge)

    context = SecurityContext(
        user_id=settings.security.user_id,
        roles=frozenset(settings.security.roles),
        permissions=frozenset(settings.security.permissions),
        ip_address="stdio",
    )
    logger.info(
        "Gateway ready: %d tools, %d resources, cache %s",
        len(registered),
        len(resources),
        "on" if cache.enabled else "off",
    )
    return Gateway(
        settings=settings,
        dispatcher=dispatcher,
        catalog=catalog,
        resources=resources,
        extensions=extensions,
        cache=cache,
        stats=stats,
        context=context,
    )


def _register_builtin_resources(
    resources: ResourceRegistry,
    catalog: ToolCatalog,
    stats: InMemoryMetricsSink,
    dispatcher: RequestDispatcher,
) -> None:
    def server_status() -> str:
        return json.dumps(
            {"uptime": round(dispatcher.uptime, 3), "methods": dispatcher.methods, **stats.summary()},
            indent=2,
        )

    def tool_statistics() -> str:
        return json.dumps(catalog.statistics(), indent=2)

    resources.register(
        Resource(
            uri=STATUS_URI,
            name="Server status",
            description="Uptime and request, tool and cache counters",
            mimeType="application/json",
        ),
        server_status,
    )
    resources.register(
        Resource(
            uri=STATISTICS_URI,
            name="Tool statistics",
            description="Registered tools by category with execution counts",
            mimeType="application/json",
        ),
        tool_statistics,
    )


async def _acknowledge(params: Any, context: SecurityContext) -> None:
    logger.debug("Client %s finished initialization", context.caller_id)

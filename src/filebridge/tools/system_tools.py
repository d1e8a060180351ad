"""System tools: server information, health and connectivity."""

from __future__ import annotations

import json
import platform
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from filebridge.protocol.models import ToolCallResult
from filebridge.runtime.models import ExecutionPolicy
from filebridge.tools.base import BuiltinTool, describe, parse_arguments

if TYPE_CHECKING:
    from filebridge.protocol.models import ServerInfo
    from filebridge.runtime.catalog import ToolCatalog
    from filebridge.runtime.models import SecurityContext
    from filebridge.utils.metrics import InMemoryMetricsSink


class ServerInfoArgs(BaseModel):
    pass


class PingArgs(BaseModel):
    pass


class HealthCheckArgs(BaseModel):
    detailed: bool = Field(default=False, description="Include the metrics summary")


class SystemTools:
    def __init__(
        self,
        catalog: ToolCatalog,
        metrics: InMemoryMetricsSink,
        server_info: ServerInfo,
    ) -> None:
        self._catalog = catalog
        self._metrics = metrics
        self._server_info = server_info

    def definitions(self) -> list[BuiltinTool]:
        policy = ExecutionPolicy(timeout=5.0)
        return [
            BuiltinTool(
                describe(
                    "get_server_info",
                    "Get server information, tool statistics and metrics",
                    ServerInfoArgs,
                ),
                self.get_server_info,
                policy,
            ),
            BuiltinTool(
                describe("health_check", "Report server health and uptime", HealthCheckArgs),
                self.health_check,
                policy,
            ),
            BuiltinTool(
                describe("ping", "Simple connectivity test", PingArgs),
                self.ping,
                policy,
            ),
        ]

    async def get_server_info(
        self, arguments: dict[str, Any], context: SecurityContext
    ) -> ToolCallResult:
        parse_arguments(ServerInfoArgs, arguments, "get_server_info")
        info = {
            "server": self._server_info.model_dump(),
            "runtime": {
                "python": sys.version.split()[0],
                "platform": platform.platform(),
            },
            "caller": context.caller_id,
            "tools": self._catalog.statistics(),
            "metrics": self._metrics.summary(),
        }
        return ToolCallResult.from_text(json.dumps(info, indent=2))

    async def health_check(
        self, arguments: dict[str, Any], context: SecurityContext
    ) -> ToolCallResult:
        args = parse_arguments(HealthCheckArgs, arguments, "health_check")
        health: dict[str, Any] = {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "uptime_seconds": round(self._metrics.uptime, 3),
            "version": self._server_info.version,
            "tools_registered": len(self._catalog),
        }
        if args.detailed:
            health["metrics"] = self._metrics.summary()
        return ToolCallResult.from_text(json.dumps(health, indent=2))

    async def ping(self, arguments: dict[str, Any], context: SecurityContext) -> ToolCallResult:
        parse_arguments(PingArgs, arguments, "ping")
        return ToolCallResult.from_text(
            "Pong!\n"
            f"Server: {self._server_info.name}\n"
            f"Timestamp: {datetime.now(UTC).isoformat()}\n"
            f"Uptime: {self._metrics.uptime:.1f}s"
        )

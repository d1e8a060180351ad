"""Tests for RequestDispatcher."""

from __future__ import annotations

import asyncio
import time
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from filebridge.protocol.errors import ErrorCode, ToolValidationError
from filebridge.protocol.models import ToolCallResult
from filebridge.runtime.cache import CacheGateway, InMemoryCacheStore
from filebridge.runtime.catalog import ToolCatalog
from filebridge.runtime.dispatcher import SUPPORTED_PROTOCOL_VERSIONS, RequestDispatcher
from filebridge.runtime.models import ExecutionPolicy, SecurityContext
from filebridge.runtime.extensions import ExtensionRegistry
from filebridge.runtime.resources import Resource, ResourceRegistry
from filebridge.runtime.supervisor import ExecutionSupervisor, backoff_delay
from filebridge.utils.metrics import InMemoryMetricsSink, ToolMetric

_ECHO = {
    "name": "echo",
    "description": "Echo the arguments back",
    "inputSchema": {"type": "object"},
}

_ALICE = SecurityContext(user_id="alice", permissions=frozenset({"read", "write"}))


class _Harness:
    def __init__(self, *, cache_enabled: bool = True) -> None:
        self.sleeps: list[float] = []
        self.metrics = InMemoryMetricsSink()
        self.catalog = ToolCatalog()
        self.supervisor = ExecutionSupervisor(self.metrics, sleep=self._sleep)
        self.cache = CacheGateway(InMemoryCacheStore(), self.metrics, enabled=cache_enabled)
        self.dispatcher = RequestDispatcher(self.catalog, self.supervisor, self.cache, self.metrics)

    async def _sleep(self, delay: float) -> None:
        self.sleeps.append(delay)

    async def call(
        self,
        method: str,
        params: Any = None,
        *,
        request_id: Any = 1,
        context: SecurityContext = _ALICE,
    ) -> Any:
        request: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            request["params"] = params
        return await self.dispatcher.dispatch(request, context)


def _call_params(name: str = "echo", arguments: Any = None) -> dict[str, Any]:
    return {"name": name, "arguments": arguments or {}}


class TestEnvelopeValidation:
    async def test_wrong_version_is_invalid_request(self) -> None:
        h = _Harness()
        h.catalog.list_available = MagicMock(wraps=h.catalog.list_available)  # type: ignore[method-assign]

        response = await h.dispatcher.dispatch(
            {"jsonrpc": "1.0", "id": 7, "method": "tools/list"}, _ALICE
        )

        assert response.error.code == ErrorCode.INVALID_REQUEST
        assert response.error.message == "Invalid Request: Invalid JSON-RPC version"
        assert response.id == 7
        h.catalog.list_available.assert_not_called()
        assert sum(h.metrics.cache_lookups.values()) == 0
        assert len(h.cache._inflight) == 0

    async def test_missing_method(self) -> None:
        h = _Harness()
        response = await h.dispatcher.dispatch({"jsonrpc": "2.0", "id": "a"}, _ALICE)
        assert response.error.code == ErrorCode.INVALID_REQUEST
        assert response.error.message == "Invalid Request: Invalid or missing method"
        assert response.id == "a"

    async def test_non_object_request(self) -> None:
        h = _Harness()
        response = await h.dispatcher.dispatch(["not", "an", "object"], _ALICE)
        assert response.error.code == ErrorCode.INVALID_REQUEST
        assert response.id is None

    async def test_invalid_request_is_answered_even_without_id(self) -> None:
        h = _Harness()
        response = await h.dispatcher.dispatch({"jsonrpc": "2.0", "method": ""}, _ALICE)
        assert response is not None
        assert response.error.code == ErrorCode.INVALID_REQUEST

    async def test_invalid_request_recorded_as_metric(self) -> None:
        h = _Harness()
        await h.dispatcher.dispatch({"jsonrpc": "1.0", "id": 1, "method": "ping"}, _ALICE)
        assert h.metrics.requests[("ping", "error")] == 1


class TestRouting:
    async def test_unknown_method(self) -> None:
        h = _Harness()
        response = await h.call("foo/bar")
        assert response.error.code == ErrorCode.METHOD_NOT_FOUND
        assert response.error.message == "Method not found: foo/bar"

    async def test_ping_echoes_id(self) -> None:
        h = _Harness()
        for request_id in (1, "req-9", 0, 1.5, -2.25):
            response = await h.call("ping", request_id=request_id)
            assert response.id == request_id
            assert response.result["status"] == "pong"
            assert "timestamp" in response.result

    async def test_boolean_id_is_invalid_request(self) -> None:
        h = _Harness()
        response = await h.call("ping", request_id=True)
        assert response.error.code == ErrorCode.INVALID_REQUEST
        assert response.id is None

    async def test_notification_returns_none(self) -> None:
        h = _Harness()
        assert await h.dispatcher.dispatch({"jsonrpc": "2.0", "method": "ping"}, _ALICE) is None
        assert (
            await h.dispatcher.dispatch({"jsonrpc": "2.0", "id": None, "method": "nope"}, _ALICE)
            is None
        )

    async def test_notification_still_recorded(self) -> None:
        h = _Harness()
        await h.dispatcher.dispatch({"jsonrpc": "2.0", "method": "ping"}, _ALICE)
        assert h.metrics.requests[("ping", "success")] == 1

    async def test_extension_method(self) -> None:
        h = _Harness()
        handler = AsyncMock(return_value={"echo": True})
        h.dispatcher.extensions.register("custom/echo", handler)

        response = await h.call("custom/echo", {"x": 1})

        assert response.result == {"echo": True}
        handler.assert_awaited_once_with({"x": 1}, _ALICE)
        assert "custom/echo" in h.dispatcher.methods

    async def test_extension_returning_none_yields_empty_result(self) -> None:
        h = _Harness()
        h.dispatcher.extensions.register("custom/noop", AsyncMock(return_value=None))
        response = await h.call("custom/noop")
        assert response.result == {}

    async def test_unexpected_exception_is_internal_error(self) -> None:
        h = _Harness()
        h.dispatcher.extensions.register("custom/boom", AsyncMock(side_effect=KeyError("x")))
        response = await h.call("custom/boom")
        assert response.error.code == ErrorCode.INTERNAL_ERROR
        assert response.error.message == "Internal error"


class TestInitialize:
    async def test_echoes_supported_version(self) -> None:
        h = _Harness()
        response = await h.call(
            "initialize",
            {"protocolVersion": "2024-11-05", "clientInfo": {"name": "test"}, "capabilities": {}},
        )
        assert response.result["protocolVersion"] == "2024-11-05"
        assert response.result["serverInfo"]["name"] == "filebridge"
        assert "tools" in response.result["capabilities"]

    async def test_unknown_version_falls_back_to_latest(self) -> None:
        h = _Harness()
        response = await h.call("initialize", {"protocolVersion": "1999-01-01"})
        assert response.result["protocolVersion"] == SUPPORTED_PROTOCOL_VERSIONS[0]

    async def test_params_must_be_object(self) -> None:
        h = _Harness()
        response = await h.call("initialize", ["2024-11-05"])
        assert response.error.code == ErrorCode.INVALID_PARAMS


class TestToolsCall:
    async def test_success_returns_handler_result(self) -> None:
        h = _Harness()
        handler = AsyncMock(return_value=ToolCallResult.from_text("hi"))
        h.catalog.register(_ECHO, handler)

        response = await h.call("tools/call", _call_params(arguments={"a": 1}))

        assert response.result == {"content": [{"type": "text", "text": "hi"}], "isError": False}
        handler.assert_awaited_once_with({"a": 1}, _ALICE)
        assert h.catalog.lookup("echo").execution_count == 1

    async def test_plain_dict_result_passes_through(self) -> None:
        h = _Harness()
        h.catalog.register(_ECHO, AsyncMock(return_value={"content": []}))
        response = await h.call("tools/call", _call_params())
        assert response.result == {"content": []}

    async def test_sync_handler(self) -> None:
        h = _Harness()
        h.catalog.register(_ECHO, lambda arguments, context: {"got": arguments})
        response = await h.call("tools/call", _call_params(arguments={"k": "v"}))
        assert response.result == {"got": {"k": "v"}}

    async def test_unknown_tool(self) -> None:
        h = _Harness()
        response = await h.call("tools/call", _call_params("missing"))
        assert response.error.code == ErrorCode.TOOL_NOT_FOUND
        assert response.error.data == {"tool": "missing"}

    async def test_missing_name(self) -> None:
        h = _Harness()
        response = await h.call("tools/call", {"arguments": {}})
        assert response.error.code == ErrorCode.INVALID_PARAMS

    async def test_arguments_must_be_object(self) -> None:
        h = _Harness()
        h.catalog.register(_ECHO, AsyncMock())
        response = await h.call("tools/call", {"name": "echo", "arguments": [1, 2]})
        assert response.error.code == ErrorCode.INVALID_PARAMS

    async def test_missing_permission_never_reaches_handler(self) -> None:
        h = _Harness()
        handler = AsyncMock()
        h.catalog.register(
            _ECHO, handler, ExecutionPolicy(required_permissions=frozenset({"admin"}))
        )

        response = await h.call("tools/call", _call_params())

        assert response.error.code == ErrorCode.PERMISSION_DENIED
        assert response.error.message == "Access denied for tool: echo"
        handler.assert_not_awaited()
        assert h.catalog.lookup("echo").execution_count == 0
        assert not [e for e in h.metrics.events if isinstance(e, ToolMetric)]

    async def test_anonymous_denied_when_auth_required(self) -> None:
        h = _Harness()
        h.catalog.register(_ECHO, AsyncMock(), ExecutionPolicy(requires_auth=True))
        response = await h.call("tools/call", _call_params(), context=SecurityContext())
        assert response.error.code == ErrorCode.PERMISSION_DENIED

    async def test_handler_failure_is_processing_error(self) -> None:
        h = _Harness()
        h.catalog.register(_ECHO, AsyncMock(side_effect=ValueError("disk on fire")))

        response = await h.call("tools/call", _call_params())

        assert response.error.code == ErrorCode.PROCESSING_ERROR
        assert response.error.message == "Tool execution failed"
        assert response.error.data == {"tool": "echo"}

    async def test_rpc_error_from_handler_keeps_code(self) -> None:
        h = _Harness()
        h.catalog.register(_ECHO, AsyncMock(side_effect=ToolValidationError("bad path")))
        response = await h.call("tools/call", _call_params())
        assert response.error.code == ErrorCode.VALIDATION_ERROR
        assert response.error.message == "bad path"

    async def test_timeout(self) -> None:
        h = _Harness()

        async def slow(arguments: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
            await asyncio.sleep(0.2)
            return {"done": True}

        h.catalog.register(_ECHO, slow, ExecutionPolicy(timeout=0.05))

        started = time.perf_counter()
        response = await h.call("tools/call", _call_params())
        elapsed = time.perf_counter() - started

        assert response.error.code == ErrorCode.PROCESSING_ERROR
        assert response.error.data["reason"] == "timeout"
        assert elapsed < 0.19

    async def test_retries_then_succeeds(self) -> None:
        h = _Harness()
        handler = AsyncMock(
            side_effect=[RuntimeError("one"), RuntimeError("two"), {"ok": True}]
        )
        h.catalog.register(_ECHO, handler, ExecutionPolicy(max_retries=2))

        response = await h.call("tools/call", _call_params())

        assert response.result == {"ok": True}
        assert handler.await_count == 3
        # Waits before the two retries are 0 and 1 second; zero waits are skipped.
        assert [backoff_delay(i) for i in range(2)] == [0.0, 1.0]
        assert h.sleeps == [1.0]
        (metric,) = [e for e in h.metrics.events if isinstance(e, ToolMetric)]
        assert metric.success is True
        assert metric.attempts == 3

    async def test_retries_exhausted(self) -> None:
        h = _Harness()
        handler = AsyncMock(side_effect=RuntimeError("always"))
        h.catalog.register(_ECHO, handler, ExecutionPolicy(max_retries=1))

        response = await h.call("tools/call", _call_params())

        assert response.error.code == ErrorCode.PROCESSING_ERROR
        assert handler.await_count == 2
        assert h.metrics.tool_executions[("echo", "error")] == 1


class TestListingCache:
    async def test_repeated_tools_list_computed_once(self) -> None:
        h = _Harness()
        h.catalog.register(_ECHO, AsyncMock())
        h.catalog.list_available = MagicMock(wraps=h.catalog.list_available)  # type: ignore[method-assign]

        first = await h.call("tools/list", request_id=1)
        second = await h.call("tools/list", request_id=2)

        assert first.result == second.result
        assert second.id == 2
        assert h.catalog.list_available.call_count == 1
        assert h.metrics.cache_lookups["hit"] == 1
        assert h.metrics.cache_lookups["miss"] == 1

    async def test_cache_disabled_recomputes(self) -> None:
        h = _Harness(cache_enabled=False)
        h.catalog.list_available = MagicMock(wraps=h.catalog.list_available)  # type: ignore[method-assign]

        await h.call("tools/list")
        await h.call("tools/list")

        assert h.catalog.list_available.call_count == 2

    async def test_listing_scoped_by_permissions(self) -> None:
        h = _Harness()
        h.catalog.register(_ECHO, AsyncMock(), ExecutionPolicy(required_permissions=frozenset({"admin"})))

        admin = SecurityContext(user_id="root", permissions=frozenset({"admin"}))
        visible = await h.call("tools/list", context=admin)
        hidden = await h.call("tools/list", context=_ALICE)

        assert [t["name"] for t in visible.result["tools"]] == ["echo"]
        assert hidden.result["tools"] == []

    async def test_tools_call_is_never_cached(self) -> None:
        h = _Harness()
        handler = AsyncMock(return_value={"n": 1})
        h.catalog.register(_ECHO, handler)

        await h.call("tools/call", _call_params())
        await h.call("tools/call", _call_params())

        assert handler.await_count == 2
        assert sum(h.metrics.cache_lookups.values()) == 0


class TestResources:
    async def test_list_and_read(self) -> None:
        h = _Harness()
        resource = Resource(uri="mem://greeting", name="Greeting")
        h.dispatcher._resources.register(resource, lambda: "hello")

        listing = await h.call("resources/list")
        read = await h.call("resources/read", {"uri": "mem://greeting"})

        assert listing.result["resources"][0]["uri"] == "mem://greeting"
        assert read.result["contents"] == [
            {"uri": "mem://greeting", "mimeType": "text/plain", "text": "hello"}
        ]

    async def test_unknown_resource(self) -> None:
        h = _Harness()
        response = await h.call("resources/read", {"uri": "mem://nothing"})
        assert response.error.code == ErrorCode.RESOURCE_NOT_FOUND

    async def test_restricted_resource(self) -> None:
        h = _Harness()
        resource = Resource(
            uri="mem://secret", name="Secret", required_permissions=frozenset({"admin"})
        )
        h.dispatcher._resources.register(resource, lambda: "classified")

        response = await h.call("resources/read", {"uri": "mem://secret"})

        assert response.error.code == ErrorCode.PERMISSION_DENIED
        assert response.error.data == {"resource": "mem://secret"}

    async def test_reader_failure(self) -> None:
        h = _Harness()

        def broken() -> str:
            raise OSError("gone")

        h.dispatcher._resources.register(Resource(uri="mem://x", name="X"), broken)
        response = await h.call("resources/read", {"uri": "mem://x"})
        assert response.error.code == ErrorCode.PROCESSING_ERROR

    async def test_uses_injected_empty_registries(self) -> None:
        metrics = InMemoryMetricsSink()
        resources = ResourceRegistry()
        extensions = ExtensionRegistry()
        dispatcher = RequestDispatcher(
            ToolCatalog(),
            ExecutionSupervisor(metrics),
            CacheGateway(InMemoryCacheStore(), metrics),
            metrics,
            resources=resources,
            extensions=extensions,
        )
        resources.register(Resource(uri="mem://late", name="Late"), lambda: "added later")
        extensions.register("custom/echo", AsyncMock(return_value={"ok": True}))

        listing = await dispatcher.dispatch(
            {"jsonrpc": "2.0", "id": 1, "method": "resources/list"}, _ALICE
        )
        custom = await dispatcher.dispatch(
            {"jsonrpc": "2.0", "id": 2, "method": "custom/echo"}, _ALICE
        )

        assert [r["uri"] for r in listing.result["resources"]] == ["mem://late"]
        assert custom.result == {"ok": True}

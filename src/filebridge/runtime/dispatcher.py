"""RequestDispatcher: the entry point for every decoded JSON-RPC request.

Validates the envelope, routes the method through a fixed dispatch table
(falling back to the :class:`ExtensionRegistry`), serves and stores cacheable
responses, and turns every failure into an error envelope.  Nothing raised
while handling one request escapes :meth:`RequestDispatcher.dispatch`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from filebridge.protocol.errors import (
    ErrorCode,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    PermissionDeniedError,
    ProcessingError,
    ResourceNotFoundError,
    RpcError,
    ToolNotFoundError,
)
from filebridge.protocol.models import (
    JSONRPC_VERSION,
    InitializeParams,
    JsonRpcRequest,
    JsonRpcResponse,
    RequestId,
    ServerInfo,
)
from filebridge.runtime.cache import make_cache_key
from filebridge.runtime.extensions import ExtensionRegistry
from filebridge.runtime.permissions import PermissionGate
from filebridge.runtime.resources import ResourceRegistry
from filebridge.utils.metrics import RequestMetric
from filebridge.utils.telemetry import (
    ATTR_CACHE_HIT,
    ATTR_CALLER_ID,
    ATTR_ERROR_CODE,
    ATTR_METHOD,
    ATTR_NOTIFICATION,
    get_tracer,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from filebridge.runtime.cache import CacheGateway
    from filebridge.runtime.catalog import ToolCatalog
    from filebridge.runtime.models import SecurityContext
    from filebridge.runtime.supervisor import ExecutionSupervisor
    from filebridge.utils.metrics import MetricsSink

    MethodHandler = Callable[[Any, SecurityContext], Awaitable[Any]]

logger = logging.getLogger(__name__)

_tracer = get_tracer(__name__)

CACHEABLE_METHODS = frozenset({"tools/list", "resources/list"})

# Newest first; the first entry is offered when the client asks for something else.
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

DEFAULT_INSTRUCTIONS = (
    "filebridge - file and image bridge for LLMs. Use the tools to read files "
    "and inspect images instead of guessing their contents."
)


class RequestDispatcher:
    """Route requests to protocol handlers and govern tool execution.

    Usage::

        dispatcher = RequestDispatcher(catalog, supervisor, cache, metrics)
        response = await dispatcher.dispatch(
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            SecurityContext(user_id="alice"),
        )
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        supervisor: ExecutionSupervisor,
        cache: CacheGateway,
        metrics: MetricsSink,
        *,
        gate: PermissionGate | None = None,
        resources: ResourceRegistry | None = None,
        extensions: ExtensionRegistry | None = None,
        server_info: ServerInfo | None = None,
        instructions: str = DEFAULT_INSTRUCTIONS,
    ) -> None:
        self._catalog = catalog
        self._supervisor = supervisor
        self._cache = cache
        self._metrics = metrics
        self._gate = gate if gate is not None else PermissionGate()
        self._resources = resources if resources is not None else ResourceRegistry(self._gate)
        self._extensions = extensions if extensions is not None else ExtensionRegistry()
        self._server_info = server_info or ServerInfo(name="filebridge", version="0.1.0")
        self._instructions = instructions
        self._started = time.monotonic()

        self._handlers: dict[str, MethodHandler] = {
            "initialize": self._handle_initialize,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
            "resources/list": self._handle_resources_list,
            "resources/read": self._handle_resources_read,
            "ping": self._handle_ping,
        }
        self._extensions.reserve(self._handlers)

    @property
    def methods(self) -> list[str]:
        """Built-in method names followed by extension methods."""
        return [*self._handlers, *self._extensions.methods()]

    @property
    def extensions(self) -> ExtensionRegistry:
        return self._extensions

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    async def dispatch(
        self,
        raw_request: Any,
        context: SecurityContext,
    ) -> JsonRpcResponse | None:
        """Handle one decoded request.

        Returns ``None`` for notifications (``id`` absent or null), otherwise
        a response carrying exactly one of ``result``/``error``.
        """
        started = time.perf_counter()
        with _tracer.start_as_current_span("rpc.dispatch") as span:
            span.set_attribute(ATTR_CALLER_ID, context.caller_id)
            try:
                request = self._parse(raw_request)
            except InvalidRequestError as exc:
                response = self._error_response(_raw_id(raw_request), exc)
                self._record(_raw_method(raw_request), response, context, started)
                span.set_attribute(ATTR_ERROR_CODE, int(exc.code))
                return response

            span.set_attribute(ATTR_METHOD, request.method)
            span.set_attribute(ATTR_NOTIFICATION, request.is_notification)

            try:
                response, cached = await self._route(request, context)
            except Exception:
                logger.exception("Dispatch failed for %s", request.method)
                response = JsonRpcResponse.failure(
                    request.id, int(ErrorCode.INTERNAL_ERROR), "Internal error"
                )
                cached = False

            span.set_attribute(ATTR_CACHE_HIT, cached)
            if response.error is not None:
                span.set_attribute(ATTR_ERROR_CODE, response.error.code)
            if not cached:
                self._record(request.method, response, context, started)

            if request.is_notification:
                if response.error is not None:
                    logger.warning(
                        "Notification %s failed: [%d] %s",
                        request.method,
                        response.error.code,
                        response.error.message,
                    )
                return None
            return response

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _route(
        self,
        request: JsonRpcRequest,
        context: SecurityContext,
    ) -> tuple[JsonRpcResponse, bool]:
        if request.method not in CACHEABLE_METHODS or not self._cache.enabled:
            return await self._execute(request, context), False

        key = make_cache_key(request.method, self._cache_scope(request, context))
        response, cached = await self._cache.fetch(
            request.method, key, lambda: self._execute(request, context)
        )
        if cached:
            logger.debug("Returning cached response for %s", request.method)
        # Cached and shared responses were built for another request.
        if response.id != request.id:
            response = response.with_id(request.id)
        return response, cached

    async def _execute(
        self,
        request: JsonRpcRequest,
        context: SecurityContext,
    ) -> JsonRpcResponse:
        handler = self._handlers.get(request.method) or self._extensions.resolve(request.method)
        try:
            if handler is None:
                raise MethodNotFoundError(request.method)
            result = await handler(request.params, context)
        except RpcError as exc:
            return self._error_response(request.id, exc)
        except Exception:
            logger.exception("Request processing failed for %s", request.method)
            return JsonRpcResponse.failure(
                request.id, int(ErrorCode.INTERNAL_ERROR), "Internal error"
            )
        return JsonRpcResponse.success(request.id, {} if result is None else result)

    # ------------------------------------------------------------------
    # Built-in methods
    # ------------------------------------------------------------------

    async def _handle_initialize(self, params: Any, context: SecurityContext) -> dict[str, Any]:
        try:
            parsed = InitializeParams.model_validate(_optional_mapping(params, "initialize"))
        except ValidationError as exc:
            raise InvalidParamsError(f"Invalid initialize params: {exc.error_count()} error(s)") from exc

        requested = parsed.protocol_version
        version = (
            requested if requested in SUPPORTED_PROTOCOL_VERSIONS else SUPPORTED_PROTOCOL_VERSIONS[0]
        )
        logger.info(
            "Client initialized: %s (protocol %s, negotiated %s)",
            parsed.client_info.get("name", "unknown"),
            requested,
            version,
        )
        return {
            "protocolVersion": version,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
                "logging": {},
            },
            "serverInfo": self._server_info.model_dump(),
            "instructions": self._instructions,
        }

    async def _handle_tools_list(self, params: Any, context: SecurityContext) -> dict[str, Any]:
        tools = self._catalog.list_available(context)
        return {"tools": [tool.to_wire() for tool in tools]}

    async def _handle_tools_call(self, params: Any, context: SecurityContext) -> Any:
        body = _optional_mapping(params, "tools/call")
        name = body.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("Tool name must be a non-empty string")

        arguments = body.get("arguments")
        if arguments is None:
            arguments = {}
        elif not isinstance(arguments, Mapping):
            raise InvalidParamsError("Tool arguments must be an object")

        tool = self._catalog.lookup(name)
        if tool is None:
            raise ToolNotFoundError(name)

        if not self._gate.allow(context, tool.policy):
            logger.warning("Permission denied for tool %s (caller %s)", name, context.caller_id)
            raise PermissionDeniedError(name)

        try:
            result = await self._supervisor.execute(tool, dict(arguments), context)
        except RpcError:
            raise
        except Exception as exc:
            raise ProcessingError("Tool execution failed", data={"tool": name}) from exc
        return _to_wire(result)

    async def _handle_resources_list(self, params: Any, context: SecurityContext) -> dict[str, Any]:
        resources = self._resources.list_available(context)
        return {"resources": [resource.to_wire() for resource in resources]}

    async def _handle_resources_read(self, params: Any, context: SecurityContext) -> dict[str, Any]:
        body = _optional_mapping(params, "resources/read")
        uri = body.get("uri")
        if not isinstance(uri, str) or not uri:
            raise InvalidParamsError("Resource uri must be a non-empty string")

        resource = self._resources.lookup(uri)
        if resource is None:
            raise ResourceNotFoundError(uri)
        if not self._gate.allow(context, resource):
            raise PermissionDeniedError(uri, kind="resource")

        try:
            contents = await self._resources.read(uri)
        except RpcError:
            raise
        except Exception as exc:
            logger.error("Resource read failed for %s: %s", uri, exc)
            raise ProcessingError("Resource read failed", data={"uri": uri}) from exc
        return {"contents": contents}

    async def _handle_ping(self, params: Any, context: SecurityContext) -> dict[str, Any]:
        return {
            "status": "pong",
            "timestamp": datetime.now(UTC).isoformat(),
            "uptime": round(self.uptime, 3),
            "version": self._server_info.version,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(raw_request: Any) -> JsonRpcRequest:
        if not isinstance(raw_request, Mapping):
            raise InvalidRequestError("request must be a JSON object")
        if raw_request.get("jsonrpc") != JSONRPC_VERSION:
            raise InvalidRequestError("Invalid JSON-RPC version")
        method = raw_request.get("method")
        if not isinstance(method, str) or not method:
            raise InvalidRequestError("Invalid or missing method")
        try:
            return JsonRpcRequest.model_validate(dict(raw_request))
        except ValidationError as exc:
            fields = ", ".join(".".join(map(str, err["loc"])) for err in exc.errors())
            raise InvalidRequestError(f"invalid field(s): {fields}") from exc

    @staticmethod
    def _cache_scope(request: JsonRpcRequest, context: SecurityContext) -> dict[str, Any]:
        """Cache key material: params plus what permission filtering depends on."""
        return {
            "params": request.params,
            "authenticated": context.user_id is not None,
            "permissions": sorted(context.permissions),
        }

    @staticmethod
    def _error_response(request_id: RequestId, exc: RpcError) -> JsonRpcResponse:
        return JsonRpcResponse.failure(request_id, int(exc.code), exc.message, exc.data)

    def _record(
        self,
        method: str,
        response: JsonRpcResponse,
        context: SecurityContext,
        started: float,
    ) -> None:
        self._metrics.record(
            RequestMetric(
                method=method,
                success=response.error is None,
                duration=time.perf_counter() - started,
                caller_id=context.caller_id,
                error_code=response.error.code if response.error else None,
            )
        )


def _optional_mapping(params: Any, method: str) -> Mapping[str, Any]:
    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise InvalidParamsError(f"{method} params must be an object")
    return params


def _to_wire(result: Any) -> Any:
    to_wire = getattr(result, "to_wire", None)
    if callable(to_wire):
        return to_wire()
    if isinstance(result, BaseModel):
        return result.model_dump(by_alias=True)
    return result


def _raw_id(raw_request: Any) -> RequestId:
    if isinstance(raw_request, Mapping):
        value = raw_request.get("id")
        if isinstance(value, (int, float, str)) and not isinstance(value, bool):
            return value
    return None


def _raw_method(raw_request: Any) -> str:
    if isinstance(raw_request, Mapping):
        method = raw_request.get("method")
        if isinstance(method, str) and method:
            return method
    return "unknown"

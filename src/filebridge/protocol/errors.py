"""JSON-RPC error codes and the exceptions that carry them.

Every error surfaced to a caller is an :class:`RpcError`.  Handlers may raise
any subclass to pick the code that ends up in the response envelope.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Standard JSON-RPC codes plus the gateway's custom range."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    TOOL_NOT_FOUND = -32001
    RESOURCE_NOT_FOUND = -32002
    PERMISSION_DENIED = -32003
    RATE_LIMITED = -32004
    VALIDATION_ERROR = -32005
    PROCESSING_ERROR = -32006


class RpcError(Exception):
    """Base error for everything that maps onto a JSON-RPC error object."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, data: dict[str, Any] | None = None) -> None:
        self.message = message
        self.data = data
        super().__init__(message)


class ParseError(RpcError):
    code = ErrorCode.PARSE_ERROR

    def __init__(self, detail: str = "") -> None:
        super().__init__("Parse error" + (f": {detail}" if detail else ""))


class InvalidRequestError(RpcError):
    code = ErrorCode.INVALID_REQUEST

    def __init__(self, detail: str = "") -> None:
        super().__init__("Invalid Request" + (f": {detail}" if detail else ""))


class MethodNotFoundError(RpcError):
    code = ErrorCode.METHOD_NOT_FOUND

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"Method not found: {method}")


class InvalidParamsError(RpcError):
    code = ErrorCode.INVALID_PARAMS


class InternalError(RpcError):
    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str = "Internal error") -> None:
        super().__init__(message)


class ToolNotFoundError(RpcError):
    """Requested tool does not exist in the catalog."""

    code = ErrorCode.TOOL_NOT_FOUND

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool not found: {name}", data={"tool": name})


class ResourceNotFoundError(RpcError):
    code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, uri: str) -> None:
        self.uri = uri
        super().__init__(f"Resource not found: {uri}", data={"uri": uri})


class PermissionDeniedError(RpcError):
    """The caller's security context does not satisfy the target's policy."""

    code = ErrorCode.PERMISSION_DENIED

    def __init__(self, target: str, *, kind: str = "tool") -> None:
        self.target = target
        self.kind = kind
        super().__init__(f"Access denied for {kind}: {target}", data={kind: target})


class RateLimitedError(RpcError):
    code = ErrorCode.RATE_LIMITED


class ToolValidationError(RpcError):
    """Tool arguments failed validation."""

    code = ErrorCode.VALIDATION_ERROR


class ProcessingError(RpcError):
    """A tool or resource handler failed while doing its work."""

    code = ErrorCode.PROCESSING_ERROR

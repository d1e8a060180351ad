"""Protocol layer: JSON-RPC 2.0 models, error codes and the stdio transport."""

from filebridge.protocol.errors import (
    ErrorCode,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    ParseError,
    PermissionDeniedError,
    ProcessingError,
    RateLimitedError,
    ResourceNotFoundError,
    RpcError,
    ToolNotFoundError,
    ToolValidationError,
)
from filebridge.protocol.models import (
    ImageContent,
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    RequestId,
    TextContent,
    ToolCallResult,
    ToolDescriptor,
)
from filebridge.protocol.transport import StdioServer, open_stdio_streams

__all__ = [
    "ErrorCode",
    "ImageContent",
    "InternalError",
    "InvalidParamsError",
    "InvalidRequestError",
    "JsonRpcError",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "MethodNotFoundError",
    "ParseError",
    "PermissionDeniedError",
    "ProcessingError",
    "RateLimitedError",
    "RequestId",
    "ResourceNotFoundError",
    "RpcError",
    "StdioServer",
    "TextContent",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolNotFoundError",
    "ToolValidationError",
    "open_stdio_streams",
]

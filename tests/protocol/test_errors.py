"""Tests for JSON-RPC error types."""

from __future__ import annotations

import pytest

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
from filebridge.runtime.errors import ToolTimeoutError


class TestErrorCodes:
    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (ParseError(), -32700),
            (InvalidRequestError("x"), -32600),
            (MethodNotFoundError("x"), -32601),
            (InvalidParamsError("x"), -32602),
            (InternalError(), -32603),
            (ToolNotFoundError("x"), -32001),
            (ResourceNotFoundError("x"), -32002),
            (PermissionDeniedError("x"), -32003),
            (RateLimitedError("x"), -32004),
            (ToolValidationError("x"), -32005),
            (ProcessingError("x"), -32006),
        ],
    )
    def test_codes(self, error: RpcError, code: int) -> None:
        assert error.code == code
        assert isinstance(error, RpcError)

    def test_messages(self) -> None:
        assert MethodNotFoundError("a/b").message == "Method not found: a/b"
        assert PermissionDeniedError("x", kind="resource").message == "Access denied for resource: x"
        assert InternalError().message == "Internal error"

    def test_timeout_is_processing_error(self) -> None:
        error = ToolTimeoutError("slow", 0.5)
        assert error.code == ErrorCode.PROCESSING_ERROR
        assert error.message == "Tool execution timed out after 0.5s: slow"

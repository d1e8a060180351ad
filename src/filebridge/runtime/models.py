"""Data models for the execution runtime: policies, caller identity, registry entries."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from filebridge.protocol.models import ToolDescriptor

    ToolHandler = Callable[[dict[str, Any], "SecurityContext"], Awaitable[Any] | Any]


@runtime_checkable
class AccessPolicy(Protocol):
    """Anything the :class:`~filebridge.runtime.permissions.PermissionGate` can judge."""

    @property
    def requires_auth(self) -> bool: ...

    @property
    def required_permissions(self) -> frozenset[str]: ...


class ExecutionPolicy(BaseModel):
    """Per-tool authorization, timeout and retry configuration."""

    model_config = ConfigDict(frozen=True)

    requires_auth: bool = False
    required_permissions: frozenset[str] = frozenset()
    timeout: float = Field(default=30.0, gt=0, description="Seconds per attempt.")
    max_retries: int = Field(default=0, ge=0, description="Additional attempts after the first.")


class SecurityContext(BaseModel):
    """Caller identity attached to a request by the transport.  Read-only for the core."""

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    roles: frozenset[str] = frozenset()
    permissions: frozenset[str] = frozenset()
    session_id: str = Field(default_factory=lambda: f"sess_{uuid4().hex[:12]}")
    ip_address: str = "unknown"
    user_agent: str | None = None

    @property
    def caller_id(self) -> str:
        return self.user_id or "anonymous"


@dataclass
class RegisteredTool:
    """A catalog entry: descriptor, policy, handler binding and execution counters.

    Counters are only changed through :meth:`mark_executed`, which serializes
    concurrent callers.
    """

    descriptor: ToolDescriptor
    handler: ToolHandler
    policy: ExecutionPolicy = field(default_factory=ExecutionPolicy)
    registered_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    execution_count: int = 0
    last_executed_at: datetime | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def name(self) -> str:
        return self.descriptor.name

    def mark_executed(self) -> int:
        """Bump the execution counter and timestamp; return the new count."""
        with self._lock:
            self.execution_count += 1
            self.last_executed_at = datetime.now(UTC)
            return self.execution_count

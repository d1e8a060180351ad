"""ExtensionRegistry: the fallback for methods outside the built-in table.

Plugins claim extra JSON-RPC method names here.  Built-in method names are
reserved and can never be shadowed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from filebridge.runtime.models import SecurityContext

    MethodHandler = Callable[[Any, SecurityContext], Awaitable[Any]]

logger = logging.getLogger(__name__)


class ExtensionRegistry:
    """Method-name map for plugin handlers.

    Handlers share the built-in signature ``async (params, context) -> result``
    and may raise any :class:`~filebridge.protocol.errors.RpcError`.
    """

    def __init__(self, reserved: Iterable[str] = ()) -> None:
        self._reserved = frozenset(reserved)
        self._handlers: dict[str, MethodHandler] = {}

    def reserve(self, methods: Iterable[str]) -> None:
        """Mark *methods* as unavailable to extensions."""
        names = frozenset(methods)
        clashes = names & set(self._handlers)
        if clashes:
            msg = f"Extension methods clash with reserved names: {sorted(clashes)}"
            raise ValueError(msg)
        self._reserved = self._reserved | names

    def register(self, method: str, handler: MethodHandler) -> None:
        if method in self._reserved:
            msg = f"Method {method!r} is reserved by the dispatcher"
            raise ValueError(msg)
        if method in self._handlers:
            msg = f"Method {method!r} already has an extension handler"
            raise ValueError(msg)
        self._handlers[method] = handler
        logger.debug("Extension method registered: %s", method)

    def unregister(self, method: str) -> bool:
        return self._handlers.pop(method, None) is not None

    def resolve(self, method: str) -> MethodHandler | None:
        return self._handlers.get(method)

    def methods(self) -> list[str]:
        return list(self._handlers)

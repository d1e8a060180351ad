"""Response caching for idempotent, side-effect-free methods.

:class:`CacheStore` is the storage protocol; :class:`InMemoryCacheStore` keeps
entries in a ``cachetools`` TLRU cache.  :class:`CacheGateway` sits in
front of a store, refuses error responses, records hit/miss metrics and can
coalesce concurrent identical requests into one computation.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from cachetools import TLRUCache

from filebridge.utils.metrics import CacheMetric

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from filebridge.protocol.models import JsonRpcResponse
    from filebridge.utils.metrics import MetricsSink

logger = logging.getLogger(__name__)

DEFAULT_TTL: float = 300.0
_KEY_PREFIX = "mcp"


def make_cache_key(method: str, params: Any) -> str:
    """Deterministic key for ``(method, params)``.

    Params are serialized as canonical JSON (sorted keys, compact separators)
    and hashed with SHA-256, so field order never changes the key.
    """
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]
    return f"{_KEY_PREFIX}:{method}:{digest}"


@runtime_checkable
class CacheStore(Protocol):
    """Async key/value storage with per-entry TTL.  Must tolerate concurrent use."""

    async def get(self, key: str) -> Any | None: ...
    async def set(self, key: str, value: Any, ttl: float) -> None: ...
    async def delete(self, key: str) -> bool: ...
    async def clear(self) -> None: ...


class InMemoryCacheStore:
    """:class:`CacheStore` backed by a :class:`cachetools.TLRUCache`.

    Each entry carries its own TTL.  When ``max_entries`` is reached, expired
    entries go first, then the least recently used one.
    """

    def __init__(self, *, max_entries: int = 1000) -> None:
        self._entries: TLRUCache[str, tuple[Any, float]] = TLRUCache(
            maxsize=max_entries, ttu=_time_to_use
        )
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    async def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return entry[0]

    async def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, ttl)

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _time_to_use(key: str, entry: tuple[Any, float], now: float) -> float:
    return now + entry[1]


class CacheGateway:
    """Front for a :class:`CacheStore` holding whole JSON-RPC responses.

    Parameters
    ----------
    store:
        Backing storage.
    metrics:
        Receives one :class:`CacheMetric` per lookup made through :meth:`fetch`.
    default_ttl:
        TTL in seconds when :meth:`set` is called without one.
    enabled:
        When ``False`` nothing is ever stored or served.
    coalesce:
        When ``True``, concurrent :meth:`fetch` calls for the same key share a
        single computation instead of all running it.
    """

    def __init__(
        self,
        store: CacheStore,
        metrics: MetricsSink,
        *,
        default_ttl: float = DEFAULT_TTL,
        enabled: bool = True,
        coalesce: bool = True,
    ) -> None:
        self._store = store
        self._metrics = metrics
        self._default_ttl = default_ttl
        self._enabled = enabled
        self._coalesce = coalesce
        self._inflight: dict[str, asyncio.Future[JsonRpcResponse]] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def get(self, key: str) -> JsonRpcResponse | None:
        if not self._enabled:
            return None
        try:
            return await self._store.get(key)  # type: ignore[no-any-return]
        except Exception:
            logger.exception("Cache get failed for key %s", key)
            return None

    async def set(self, key: str, response: JsonRpcResponse, ttl: float | None = None) -> bool:
        """Store *response*; error responses are never stored."""
        if not self._enabled or response.is_error:
            return False
        try:
            await self._store.set(key, response, ttl if ttl is not None else self._default_ttl)
        except Exception:
            logger.exception("Cache set failed for key %s", key)
            return False
        return True

    async def fetch(
        self,
        method: str,
        key: str,
        compute: Callable[[], Awaitable[JsonRpcResponse]],
    ) -> tuple[JsonRpcResponse, bool]:
        """Return ``(response, served_from_cache)`` for *key*.

        On a miss *compute* runs and its error-free response is stored.
        Callers that join an in-flight computation count as hits unless it
        produced an error response, which is never cached.
        """
        cached = await self.get(key)
        if cached is not None:
            self._metrics.record(CacheMetric(method=method, hit=True))
            return cached, True

        if self._coalesce and self._enabled:
            pending = self._inflight.get(key)
            if pending is not None:
                try:
                    response = await asyncio.shield(pending)
                except asyncio.CancelledError:
                    # Only recompute when the leader was cancelled, not us.
                    if not pending.cancelled():
                        raise
                else:
                    shared = not response.is_error
                    self._metrics.record(CacheMetric(method=method, hit=shared))
                    return response, shared

        self._metrics.record(CacheMetric(method=method, hit=False))

        if not (self._coalesce and self._enabled):
            response = await compute()
            await self.set(key, response)
            return response, False

        future: asyncio.Future[JsonRpcResponse] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            response = await compute()
            await self.set(key, response)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            future.exception()
            raise
        else:
            future.set_result(response)
        finally:
            self._inflight.pop(key, None)
        return response, False

    async def clear(self) -> None:
        await self._store.clear()

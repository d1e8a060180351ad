"""ExecutionSupervisor: runs tool handlers under a timeout with retry and backoff.

Timeouts are *best-effort abandonment*: when the timer wins, the handler task
is cancelled but not awaited, so a handler that ignores cancellation (or a
sync handler running in a worker thread) keeps going in the background.
Handlers that must stop promptly should do their blocking work in
cancellable ``await`` points.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import TYPE_CHECKING, Any

from filebridge.runtime.errors import ToolTimeoutError
from filebridge.utils.metrics import ToolMetric
from filebridge.utils.telemetry import (
    ATTR_CALLER_ID,
    ATTR_TOOL_ATTEMPT,
    ATTR_TOOL_MAX_RETRIES,
    ATTR_TOOL_NAME,
    ATTR_TOOL_TIMEOUT,
    get_tracer,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from filebridge.runtime.models import RegisteredTool, SecurityContext
    from filebridge.utils.metrics import MetricsSink

logger = logging.getLogger(__name__)

_tracer = get_tracer(__name__)


def backoff_delay(retry_index: int, *, base: float = 1.0, cap: float | None = None) -> float:
    """Seconds to wait before retry number *retry_index* (0-based).

    The first retry runs immediately; later ones double: 0, 1, 2, 4, ... times
    *base*, never exceeding *cap* when one is given.
    """
    if retry_index <= 0:
        return 0.0
    delay = base * 2 ** (retry_index - 1)
    if cap is not None:
        delay = min(delay, cap)
    return delay


class ExecutionSupervisor:
    """Governs a single tool invocation: counters, timeout race, retries, metrics.

    Parameters
    ----------
    metrics:
        Receives one :class:`ToolMetric` per terminal outcome.
    backoff_base:
        Multiplier for :func:`backoff_delay` (seconds).
    max_backoff:
        Ceiling for a single backoff wait; ``None`` disables the cap.
    sleep:
        Awaitable sleep used between attempts (injectable for tests).
    """

    def __init__(
        self,
        metrics: MetricsSink,
        *,
        backoff_base: float = 1.0,
        max_backoff: float | None = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._metrics = metrics
        self._backoff_base = backoff_base
        self._max_backoff = max_backoff
        self._sleep = sleep

    async def execute(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: SecurityContext,
    ) -> Any:
        """Invoke *tool* and return the handler's result unchanged.

        Raises the last attempt's error once ``policy.max_retries`` extra
        attempts are exhausted.
        """
        policy = tool.policy
        tool.mark_executed()
        started = time.perf_counter()

        with _tracer.start_as_current_span("tool.execute") as span:
            span.set_attribute(ATTR_TOOL_NAME, tool.name)
            span.set_attribute(ATTR_TOOL_MAX_RETRIES, policy.max_retries)
            span.set_attribute(ATTR_TOOL_TIMEOUT, policy.timeout)
            span.set_attribute(ATTR_CALLER_ID, context.caller_id)

            attempt = 0
            while True:
                if attempt > 0:
                    delay = backoff_delay(
                        attempt - 1, base=self._backoff_base, cap=self._max_backoff
                    )
                    if delay > 0:
                        await self._sleep(delay)

                attempts = attempt + 1
                span.set_attribute(ATTR_TOOL_ATTEMPT, attempt)
                try:
                    result = await self._attempt(tool, dict(arguments), context)
                except Exception as exc:
                    span.add_event(
                        "tool.attempt_failed",
                        {"attempt": attempt, "error": type(exc).__name__},
                    )
                    if attempt >= policy.max_retries:
                        self._record(tool, context, started, success=False, attempts=attempts)
                        span.add_event("tool.exhausted", {"attempts": attempts})
                        logger.error(
                            "Tool %s failed after %d attempt(s): %s", tool.name, attempts, exc
                        )
                        raise
                    logger.warning(
                        "Tool %s failed on attempt %d/%d, retrying: %s",
                        tool.name,
                        attempts,
                        policy.max_retries + 1,
                        exc,
                    )
                    attempt += 1
                    continue

                self._record(tool, context, started, success=True, attempts=attempts)
                return result

    async def _attempt(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: SecurityContext,
    ) -> Any:
        """Race one handler invocation against ``policy.timeout``."""
        timeout = tool.policy.timeout
        task = asyncio.ensure_future(_invoke(tool, arguments, context))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(_discard_outcome)
        raise ToolTimeoutError(tool.name, timeout)

    def _record(
        self,
        tool: RegisteredTool,
        context: SecurityContext,
        started: float,
        *,
        success: bool,
        attempts: int,
    ) -> None:
        self._metrics.record(
            ToolMetric(
                tool_name=tool.name,
                success=success,
                duration=time.perf_counter() - started,
                attempts=attempts,
                caller_id=context.caller_id,
            )
        )


async def _invoke(
    tool: RegisteredTool,
    arguments: dict[str, Any],
    context: SecurityContext,
) -> Any:
    handler = tool.handler
    if inspect.iscoroutinefunction(handler):
        return await handler(arguments, context)
    result = await asyncio.to_thread(handler, arguments, context)
    if inspect.isawaitable(result):
        return await result
    return result


def _discard_outcome(task: asyncio.Future[Any]) -> None:
    """Retrieve an abandoned attempt's outcome so asyncio does not log it as lost."""
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Abandoned attempt finished with: %r", task.exception())

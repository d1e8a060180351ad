"""Stdio transport: newline-delimited JSON-RPC over stdin/stdout.

One JSON message per line in each direction.  Requests are handled
concurrently; responses are written as they complete, so their order may
differ from the order of the requests.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from filebridge.protocol.errors import ParseError
from filebridge.protocol.models import JsonRpcResponse

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    RequestHandler = Callable[[Any], Awaitable[JsonRpcResponse | None]]

logger = logging.getLogger(__name__)


@runtime_checkable
class LineWriter(Protocol):
    """The subset of :class:`asyncio.StreamWriter` the server writes through."""

    def write(self, data: bytes) -> None: ...
    async def drain(self) -> None: ...


class StdioServer:
    """Read requests line by line and write one response line per reply.

    *handler* receives each decoded message and returns the response, or
    ``None`` for notifications.  Lines that are not valid JSON are answered
    with a ``-32700`` error carrying a null id.

    Usage::

        reader, writer = await open_stdio_streams()
        await StdioServer(gateway.handle, reader, writer).serve()
    """

    def __init__(
        self,
        handler: RequestHandler,
        reader: asyncio.StreamReader,
        writer: LineWriter,
    ) -> None:
        self._handler = handler
        self._reader = reader
        self._writer = writer
        self._write_lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    async def serve(self) -> None:
        """Process lines until EOF, then wait for in-flight requests."""
        logger.info("Serving JSON-RPC on stdio")
        while True:
            line = await self._reader.readline()
            if not line:
                break
            if not line.strip():
                continue
            task = asyncio.create_task(self._handle_line(line))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        if self._pending:
            await asyncio.gather(*self._pending)
        logger.info("Input closed, stdio server stopped")

    async def _handle_line(self, line: bytes) -> None:
        try:
            message = json.loads(line)
        except ValueError as exc:
            logger.warning("Undecodable request line: %s", exc)
            error = ParseError(str(exc))
            await self._send(JsonRpcResponse.failure(None, int(error.code), error.message))
            return

        response = await self._handler(message)
        if response is not None:
            await self._send(response)

    async def _send(self, response: JsonRpcResponse) -> None:
        payload = json.dumps(response.to_wire(), default=str) + "\n"
        async with self._write_lock:
            self._writer.write(payload.encode("utf-8"))
            await self._writer.drain()


async def open_stdio_streams() -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Wrap the process's stdin/stdout in asyncio streams."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=2**24)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout
    )
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer

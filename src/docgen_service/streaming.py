"""
Server-Sent Events framing and the per-request event channel.

Events: `status`, `token`, `done`, `error`. A `: hb <ts>` comment keeps idle
connections open. Once the consumer is gone the channel goes quiet instead of raising,
so a producer that outlives the response simply stops emitting.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable

import anyio
from anyio.abc import ObjectSendStream

logger = logging.getLogger(__name__)


STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "X-Content-Type-Options": "nosniff",
}


def sse(event: str, data: Any) -> str:
    # SSE format reminder:
    #   event: <name>\n
    #   data: <json>\n\n
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def sse_comment(text: str) -> str:
    # SSE "comment" lines start with ":" and are ignored by EventSource clients.
    t = str(text or "").replace("\n", " ").replace("\r", " ")
    return f": {t}\n\n"


def sse_padding(bytes_hint: int = 2048) -> str:
    n = max(0, int(bytes_hint))
    return f": {' ' * n}\n\n"


class EventChannel:
    def __init__(self, send: ObjectSendStream[str]) -> None:
        self._send = send
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def _push(self, chunk: str) -> None:
        if self.closed:
            return
        try:
            await self._send.send(chunk)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            self.closed = True

    async def emit(self, event: str, data: Any) -> None:
        await self._push(sse(event, data))

    async def comment(self, text: str) -> None:
        await self._push(sse_comment(text))

    async def heartbeat(self, interval: float) -> None:
        while not self.closed:
            await anyio.sleep(interval)
            await self.comment(f"hb {int(time.time() * 1000)}")

    async def finish(self) -> None:
        """Producer is done; the consumer drains what is buffered and stops."""
        await self._send.aclose()


async def open_event_stream(
    produce: Callable[[EventChannel], Awaitable[None]],
    *,
    spawn: Callable[[Awaitable[None]], Any],
    heartbeat_interval: float = 15.0,
    buffer_size: int = 200,
) -> AsyncIterator[str]:
    """
    Yield SSE chunks written by `produce`.

    `produce` runs as a detached task started through `spawn`, so a client disconnect
    closes the channel without cancelling the run itself.
    """
    send, recv = anyio.create_memory_object_stream[str](max_buffer_size=buffer_size)
    channel = EventChannel(send)

    async def _producer() -> None:
        try:
            await produce(channel)
        except Exception as e:
            logger.exception("Stream producer failed: %s", e)
            await channel.emit("error", {"code": "internal_error", "message": "Internal error"})
        finally:
            await channel.finish()

    yield sse_padding(2048)
    spawn(_producer())
    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(channel.heartbeat, heartbeat_interval)
            async with recv:
                async for chunk in recv:
                    yield chunk
            tg.cancel_scope.cancel()
    finally:
        channel.close()


__all__ = ["EventChannel", "STREAM_HEADERS", "open_event_stream", "sse", "sse_comment", "sse_padding"]

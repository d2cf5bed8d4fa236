from __future__ import annotations

import asyncio
import json

import anyio

from docgen_service.streaming import EventChannel, open_event_stream, sse, sse_comment


def test_sse_framing():
    assert sse("token", {"text": "hé"}) == 'event: token\ndata: {"text": "hé"}\n\n'
    assert sse_comment("hb\n1") == ": hb 1\n\n"


def test_channel_goes_quiet_after_consumer_closes():
    async def main():
        send, recv = anyio.create_memory_object_stream[str](max_buffer_size=10)
        channel = EventChannel(send)
        await channel.emit("status", {"phase": "x"})
        first = recv.receive_nowait()
        await recv.aclose()
        await channel.emit("token", {"text": "lost"})
        await channel.finish()
        return first, channel.closed

    first, closed = asyncio.run(main())
    assert first.startswith("event: status\n")
    assert closed is True


def test_closed_flag_suppresses_emission():
    async def main():
        send, recv = anyio.create_memory_object_stream[str](max_buffer_size=10)
        channel = EventChannel(send)
        channel.close()
        await channel.emit("token", {"text": "x"})
        await channel.finish()
        return [c async for c in recv]

    assert asyncio.run(main()) == []


def _spawner(tasks):
    def spawn(coro):
        task = asyncio.get_running_loop().create_task(coro)
        tasks.append(task)
        return task

    return spawn


def test_open_event_stream_relays_events_in_order():
    async def produce(channel):
        await channel.emit("status", {"phase": "node_started"})
        await channel.emit("token", {"text": "ab"})
        await channel.emit("done", {"title": "t"})

    async def main():
        tasks = []
        chunks = [c async for c in open_event_stream(produce, spawn=_spawner(tasks), heartbeat_interval=60)]
        await asyncio.gather(*tasks)
        return chunks

    chunks = asyncio.run(main())
    events = [c for c in chunks if c.startswith("event:")]
    assert [e.split("\n", 1)[0] for e in events] == ["event: status", "event: token", "event: done"]
    assert json.loads(events[-1].split("data: ", 1)[1]) == {"title": "t"}


def test_open_event_stream_emits_heartbeats_while_idle():
    async def produce(channel):
        await anyio.sleep(0.05)
        await channel.emit("done", {})

    async def main():
        tasks = []
        chunks = [c async for c in open_event_stream(produce, spawn=_spawner(tasks), heartbeat_interval=0.01)]
        await asyncio.gather(*tasks)
        return chunks

    chunks = asyncio.run(main())
    assert any(c.startswith(": hb ") for c in chunks)
    assert chunks[-1].startswith("event: done")


def test_producer_crash_becomes_error_event():
    async def produce(channel):
        raise RuntimeError("secret detail")

    async def main():
        tasks = []
        chunks = [c async for c in open_event_stream(produce, spawn=_spawner(tasks), heartbeat_interval=60)]
        await asyncio.gather(*tasks)
        return chunks

    chunks = asyncio.run(main())
    assert chunks[-1] == sse("error", {"code": "internal_error", "message": "Internal error"})

"""Tests for progress events, the session registry and SSE framing."""

from __future__ import annotations

import asyncio
import json

import pytest

from imgbatch.api.streaming import HEARTBEAT_FRAME, sse_events
from imgbatch.errors import SessionChannelUnavailable
from imgbatch.services.progress import NullNotifier, ProgressEvent, SessionRegistry
from imgbatch.services.stages import ProgressEventType


def test_event_payload_is_flat() -> None:
    event = ProgressEvent.create(ProgressEventType.FILE_COMPLETED, "Completed: a.png", current=1, total=2)

    assert event.to_payload() == {"type": "file_completed", "message": "Completed: a.png", "current": 1, "total": 2}
    frame = event.to_sse()
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):])["type"] == "file_completed"


def test_null_notifier_accepts_events() -> None:
    assert NullNotifier().notify(ProgressEvent.create(ProgressEventType.COMPLETE, "done")) is None


@pytest.mark.asyncio
async def test_registry_lifecycle() -> None:
    registry = SessionRegistry()

    channel = registry.register("s1")

    assert "s1" in registry
    assert registry.get("s1") is channel
    assert registry.remove("s1")
    assert channel.closed
    assert "s1" not in registry
    with pytest.raises(SessionChannelUnavailable):
        registry.get("s1")


@pytest.mark.asyncio
async def test_sessions_do_not_interfere() -> None:
    registry = SessionRegistry()
    first = registry.register("a")
    second = registry.register("b")

    registry.notifier("a").notify(ProgressEvent.create(ProgressEventType.PROCESSING_STARTED, "go"))
    registry.remove("a")

    assert (await first.get(timeout=1)).type is ProgressEventType.PROCESSING_STARTED
    assert await first.get(timeout=1) is None
    with pytest.raises(asyncio.TimeoutError):
        await second.get(timeout=0.01)


@pytest.mark.asyncio
async def test_notifier_drops_events_without_client() -> None:
    registry = SessionRegistry()
    notifier = registry.notifier("ghost")

    notifier.notify(ProgressEvent.create(ProgressEventType.PROCESSING_STARTED, "go"))

    channel = registry.register("ghost")
    with pytest.raises(asyncio.TimeoutError):
        await channel.get(timeout=0.01)


@pytest.mark.asyncio
async def test_reconnect_replaces_channel_and_stale_removal_is_ignored() -> None:
    registry = SessionRegistry()
    old = registry.register("s")
    new = registry.register("s")

    assert old.closed
    assert not registry.remove("s", old)
    assert registry.get("s") is new


@pytest.mark.asyncio
async def test_scheduled_removal_waits_for_grace_delay() -> None:
    registry = SessionRegistry()
    channel = registry.register("s")

    task = registry.schedule_removal("s", 0.05)
    await asyncio.sleep(0)
    assert "s" in registry

    assert await task
    assert "s" not in registry
    assert channel.closed


@pytest.mark.asyncio
async def test_scheduled_removal_without_client_is_noop() -> None:
    registry = SessionRegistry()

    assert not await registry.schedule_removal("nobody", 10)


@pytest.mark.asyncio
async def test_registry_close_cancels_pending_removals() -> None:
    registry = SessionRegistry()
    registry.register("s")
    task = registry.schedule_removal("s", 60)

    await registry.close()

    assert task.cancelled()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_sse_stream_yields_events_until_channel_closes() -> None:
    registry = SessionRegistry()
    channel = registry.register("s")
    channel.notify(ProgressEvent.create(ProgressEventType.CONNECTED, "Progress tracking connected"))
    channel.notify(ProgressEvent.create(ProgressEventType.COMPLETE, "done", processedCount=1))
    channel.close()

    frames = [frame async for frame in sse_events(registry, channel, heartbeat=1)]

    assert [json.loads(frame[6:])["type"] for frame in frames] == ["connected", "complete"]
    assert "s" not in registry


@pytest.mark.asyncio
async def test_sse_stream_sends_heartbeats_when_idle() -> None:
    registry = SessionRegistry()
    channel = registry.register("s")
    stream = sse_events(registry, channel, heartbeat=0.01)

    assert await stream.__anext__() == HEARTBEAT_FRAME
    await stream.aclose()

    assert "s" not in registry

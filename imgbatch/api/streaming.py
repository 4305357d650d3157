"""Async generators backing the archive download and the SSE progress stream."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Sequence

from imgbatch.imgproc import SourceImage
from imgbatch.services.archive import ZipArchiveEmitter
from imgbatch.services.batch import BatchOrchestrator, BatchSummary
from imgbatch.services.progress import ProgressChannel, ProgressNotifier, SessionRegistry

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME = ": heartbeat\n\n"


class QueueSink:
    """
    File-like sink that hands every written chunk to an asyncio queue.

    The archive is written from worker threads, so chunks are queued through
    the event loop rather than touching the queue directly.
    """

    def __init__(self, queue: asyncio.Queue[bytes | None], loop: asyncio.AbstractEventLoop) -> None:
        self._queue = queue
        self._loop = loop

    def write(self, data: bytes) -> int:
        if data:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, bytes(data))
        return len(data)

    def flush(self) -> None:
        return None


async def stream_batch(
    orchestrator: BatchOrchestrator,
    images: Sequence[SourceImage],
    notifier: ProgressNotifier,
    *,
    compression_level: int = 9,
    on_finish: Callable[[], object] | None = None,
) -> AsyncIterator[bytes]:
    """
    Run the batch in a task and yield archive bytes as soon as they are written.

    If the client goes away the generator is closed; the batch is then told to
    stop and its task cancelled. A fatal batch error is re-raised after the
    bytes written so far have been yielded, which aborts the HTTP response.
    """

    queue: asyncio.Queue[bytes | None] = asyncio.Queue()
    loop = asyncio.get_running_loop()
    sink = QueueSink(queue, loop)
    archive = ZipArchiveEmitter(sink, compression_level=compression_level)
    cancel_event = asyncio.Event()

    async def _run() -> BatchSummary:
        try:
            return await orchestrator.run(images, archive, notifier, cancel_event=cancel_event)
        finally:
            loop.call_soon(queue.put_nowait, None)

    task = asyncio.create_task(_run())
    try:
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield chunk
        summary = await task
        logger.info(
            "[%s] Archive stream finished: %d/%d files, %d bytes",
            orchestrator.session_id,
            summary.processed_count,
            summary.total_files,
            summary.zip_size,
        )
    finally:
        if not task.done():
            logger.warning("[%s] Client disconnected, cancelling batch", orchestrator.session_id)
            cancel_event.set()
            task.cancel()
        if on_finish is not None:
            on_finish()


async def sse_events(
    registry: SessionRegistry,
    channel: ProgressChannel,
    *,
    heartbeat: float = 15.0,
) -> AsyncIterator[str]:
    """Yield SSE frames for ``channel`` with periodic heartbeat comments."""

    try:
        while True:
            try:
                event = await channel.get(timeout=heartbeat)
            except asyncio.TimeoutError:
                yield HEARTBEAT_FRAME
                continue
            if event is None:
                break
            yield event.to_sse()
    finally:
        registry.remove(channel.session_id, channel)
        logger.info("[%s] SSE connection closed", channel.session_id)

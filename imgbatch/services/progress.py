"""Progress events, notifiers and the per-session channel registry."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from imgbatch.errors import SessionChannelUnavailable
from imgbatch.metrics.prometheus_exporter import progress_sessions
from imgbatch.services.stages import ProgressEventType
from imgbatch.workers.cleanup import remove_session_later

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """A single notification; serialised as a flat JSON object."""

    type: ProgressEventType
    message: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, event_type: ProgressEventType, message: str, **fields: Any) -> ProgressEvent:
        return cls(type=event_type, message=message, fields=fields)

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "message": self.message, **self.fields}

    def to_sse(self) -> str:
        """Render as a server-sent event frame."""

        return f"data: {json.dumps(self.to_payload(), ensure_ascii=False)}\n\n"


class ProgressNotifier(Protocol):
    """Anything that accepts progress events; delivery is best-effort."""

    def notify(self, event: ProgressEvent) -> None:
        ...


class NullNotifier:
    """Notifier for batches nobody is watching."""

    def notify(self, event: ProgressEvent) -> None:
        return None


class ProgressChannel:
    """Queue of events for one connected client."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Next event, ``None`` once closed; raises ``TimeoutError`` on timeout."""

        return await asyncio.wait_for(self._queue.get(), timeout)


class SessionRegistry:
    """Tracks the progress channel of every connected session."""

    def __init__(self) -> None:
        self._channels: dict[str, ProgressChannel] = {}
        self._pending: set[asyncio.Task[bool]] = set()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)

    def register(self, session_id: str) -> ProgressChannel:
        """Create a channel for ``session_id``, replacing any previous one."""

        previous = self._channels.pop(session_id, None)
        if previous is not None:
            previous.close()
        channel = ProgressChannel(session_id)
        self._channels[session_id] = channel
        progress_sessions.set(len(self._channels))
        logger.info("[%s] Progress channel registered", session_id)
        return channel

    def get(self, session_id: str) -> ProgressChannel:
        try:
            return self._channels[session_id]
        except KeyError:
            raise SessionChannelUnavailable(session_id) from None

    def remove(self, session_id: str, channel: ProgressChannel | None = None) -> bool:
        """
        Close and forget the session's channel.

        When ``channel`` is given, only that exact registration is removed, so
        a client that reconnected in the meantime keeps its new channel.
        """

        current = self._channels.get(session_id)
        if current is None or (channel is not None and current is not channel):
            return False
        del self._channels[session_id]
        current.close()
        progress_sessions.set(len(self._channels))
        logger.info("[%s] Progress channel removed", session_id)
        return True

    def schedule_removal(self, session_id: str, delay: float) -> asyncio.Task[bool]:
        """Remove the session after ``delay`` seconds so trailing events can drain."""

        channel = self._channels.get(session_id)
        task = asyncio.get_running_loop().create_task(
            remove_session_later(self, session_id, delay, channel),
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def notifier(self, session_id: str) -> SessionNotifier:
        return SessionNotifier(self, session_id)

    async def close(self) -> None:
        """Cancel pending removals and close every channel."""

        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        for session_id in list(self._channels):
            self.remove(session_id)


class SessionNotifier:
    """Delivers events to whichever channel is registered for a session at send time."""

    def __init__(self, registry: SessionRegistry, session_id: str) -> None:
        self._registry = registry
        self.session_id = session_id

    def notify(self, event: ProgressEvent) -> None:
        try:
            channel = self._registry.get(self.session_id)
        except SessionChannelUnavailable:
            logger.debug("[%s] No progress client, dropped %s", self.session_id, event.type.value)
            return
        channel.notify(event)
        logger.debug("[%s] Progress sent: %s", self.session_id, event.type.value)

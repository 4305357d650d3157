"""Cleanup tasks for finished progress sessions."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from imgbatch.services.progress import ProgressChannel, SessionRegistry


async def remove_session_later(
    registry: SessionRegistry,
    session_id: str,
    delay: float,
    channel: ProgressChannel | None = None,
) -> bool:
    """
    Wait for the grace delay, then tear the session's channel down.

    Returns True when a channel was removed. A channel registered after the
    removal was scheduled is left alone.
    """

    if channel is None:
        return False
    await asyncio.sleep(delay)
    return registry.remove(session_id, channel)

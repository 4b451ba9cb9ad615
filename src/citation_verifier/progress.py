"""Per-session progress channels for SSE streaming.

A channel keeps every event it has published, so a subscriber that connects
late first receives the full history and then live events until the session
reaches a terminal status.
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

from .schemas import ProgressEvent

logger = logging.getLogger(__name__)


class ProgressChannel:
    """Event history plus live subscriber queues for one session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.history: List[ProgressEvent] = []
        self._subscribers: List[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def latest(self) -> Optional[ProgressEvent]:
        return self.history[-1] if self.history else None

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.warning("Dropping event for closed session %s", self.session_id)
            return
        self.history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)
        if event.terminal:
            self.close()

    def close(self) -> None:
        """Signal end of events to all subscribers."""
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)

    def subscribe(self) -> asyncio.Queue:
        """Return a queue pre-filled with the history; ``None`` marks the end."""
        queue: asyncio.Queue = asyncio.Queue()
        for event in self.history:
            queue.put_nowait(event)
        if self._closed:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        queue = self.subscribe()
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self.unsubscribe(queue)


class ProgressRegistry:
    """Channels by session id."""

    def __init__(self) -> None:
        self._channels: Dict[str, ProgressChannel] = {}

    def create(self, session_id: str) -> ProgressChannel:
        channel = ProgressChannel(session_id)
        self._channels[session_id] = channel
        return channel

    def get(self, session_id: str) -> Optional[ProgressChannel]:
        return self._channels.get(session_id)

    def discard(self, session_id: str) -> None:
        self._channels.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._channels


__all__ = ["ProgressChannel", "ProgressRegistry"]

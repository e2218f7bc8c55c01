"""
Per-session UI event fan-out.

WHAT: Delivers every event a session publishes to each connected SSE client
WHY: The agent publishes fire-and-forget; clients come and go independently
HOW: One bounded asyncio.Queue per subscriber; a full queue drops its oldest event
"""

import asyncio
from typing import Callable, List, Set

from .models.events import AgentEvent
from .utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 256


class EventBroadcaster:
    """Fan-out sink for one session. `publish` never raises and never blocks."""

    def __init__(self, session_id: str, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.session_id = session_id
        self.queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()
        self._listeners: List[Callable[[AgentEvent], None]] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: Callable[[AgentEvent], None]) -> None:
        """In-process listener (e.g. auto-save), called synchronously on publish."""
        self._listeners.append(listener)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        logger.debug(f"[{self.session_id}] subscriber added ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        logger.debug(f"[{self.session_id}] subscriber removed ({len(self._subscribers)} total)")

    def publish(self, event: AgentEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"[{self.session_id}] event listener failed: {e}", exc_info=True)

        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                logger.warning(f"[{self.session_id}] slow subscriber, dropped oldest event")
            queue.put_nowait(event)

    def close(self) -> None:
        """Wake every subscriber with a None sentinel; later publishes still reach listeners."""
        self._closed = True
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)
        self._subscribers.clear()

"""
Snapshot observer.

WHAT: Polls the page snapshot and reports when its content changes
WHY: The agent reacts to the chat instead of calling the model on a fixed clock
HOW: call_later ticker; a poll in flight makes later ticks no-op; blake2b fingerprint
"""

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ..browser.action_surface import ActionSurface
from ..utils.logger import get_logger

logger = get_logger(__name__)

ChangeCallback = Callable[[str], Optional[Awaitable[None]]]
ErrorCallback = Callable[[Exception], None]


def fingerprint(snapshot: str) -> str:
    return hashlib.blake2b(snapshot.encode("utf-8"), digest_size=8).hexdigest()


@dataclass(eq=False)
class Subscription:
    on_changed: ChangeCallback
    on_error: ErrorCallback | None = None
    _observer: "SnapshotObserver | None" = field(default=None, repr=False)

    def unsubscribe(self) -> None:
        if self._observer is not None:
            self._observer._subscriptions.discard(self)
            self._observer = None


class SnapshotObserver:
    """
    Emits `changed(snapshot)` to subscribers when the snapshot fingerprint changes.

    Errors go to the subscribers' error callbacks and never stop polling.
    """

    def __init__(self, surface: ActionSurface, poll_interval: float = 5.0):
        self.surface = surface
        self.poll_interval = poll_interval
        self._subscriptions: set[Subscription] = set()
        self._handle: asyncio.TimerHandle | None = None
        self._poll_task: asyncio.Task | None = None
        self._running = False
        self._generation = 0
        self._last_fingerprint: str | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, on_changed: ChangeCallback, on_error: ErrorCallback | None = None) -> Subscription:
        subscription = Subscription(on_changed=on_changed, on_error=on_error, _observer=self)
        self._subscriptions.add(subscription)
        return subscription

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info(f"Observer started (interval={self.poll_interval}s)")
        self._tick()

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        logger.info("Observer stopped")

    def _tick(self) -> None:
        if not self._running:
            return
        if not self.polling:
            self._poll_task = asyncio.ensure_future(self._poll(self._generation))
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.poll_interval, self._tick)

    async def poll_once(self) -> bool:
        """Fetch one snapshot; notify subscribers if it changed. Returns True on change."""
        return await self._poll(self._generation)

    async def _poll(self, generation: int) -> bool:
        # `generation` is captured when the poll is scheduled, not when it runs
        try:
            snapshot = await self.surface.snapshot()
        except Exception as e:
            if self._generation != generation:
                return False
            logger.warning(f"Snapshot poll failed: {e}")
            for subscription in list(self._subscriptions):
                if subscription.on_error is not None:
                    self._safe_call(subscription.on_error, e)
            return False

        # A poll that completes after stop() must not emit
        if self._generation != generation:
            return False

        digest = fingerprint(snapshot)
        if digest == self._last_fingerprint:
            return False
        self._last_fingerprint = digest

        logger.debug(f"Snapshot changed ({len(snapshot)} chars)")
        for subscription in list(self._subscriptions):
            self._safe_call(subscription.on_changed, snapshot)
        return True

    def _safe_call(self, callback, arg) -> None:
        try:
            result = callback(arg)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                task.add_done_callback(self._callback_done)
        except Exception as e:
            logger.error(f"Observer subscriber failed: {e}", exc_info=True)

    @staticmethod
    def _callback_done(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Observer subscriber failed: {task.exception()}")

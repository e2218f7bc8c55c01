"""
Purpose-keyed timer table.

WHAT: Named one-shot timers on the running event loop
WHY: Every timer a session owns lives in one table, so a phase transition can
     clear all of them in a single call
HOW: loop.call_later handles keyed by TimerPurpose; async callbacks run as tracked tasks
"""

import asyncio
import inspect
from enum import Enum
from typing import Awaitable, Callable, Dict, Set, Union

from .logger import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[None]]]


class TimerPurpose(str, Enum):
    DEBOUNCE = "debounce"
    INACTIVITY = "inactivity"
    USER_TYPING = "user_typing"
    OVERRIDE_FOLLOWUP = "override_followup"
    STALL = "stall"
    AUTO_SAVE = "auto_save"


class TimerTable:
    """
    At most one armed timer per purpose.

    Arming a purpose that is already armed replaces the old timer. Callbacks
    may be plain functions or coroutine functions; coroutines run as tasks
    that are tracked until they finish but are never cancelled by the table.
    """

    def __init__(self, name: str = "timers"):
        self.name = name
        self._handles: Dict[TimerPurpose, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def arm(self, purpose: TimerPurpose, delay: float, callback: TimerCallback) -> None:
        """(Re)arm the timer for `purpose` to fire after `delay` seconds."""
        self.cancel(purpose)
        loop = asyncio.get_running_loop()
        self._handles[purpose] = loop.call_later(max(delay, 0.0), self._fire, purpose, callback)
        logger.debug(f"[{self.name}] armed {purpose.value} ({delay:.2f}s)")

    def cancel(self, purpose: TimerPurpose) -> bool:
        handle = self._handles.pop(purpose, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug(f"[{self.name}] cancelled {purpose.value}")
        return True

    def cancel_all(self) -> None:
        for purpose in list(self._handles):
            self.cancel(purpose)

    def is_armed(self, purpose: TimerPurpose) -> bool:
        return purpose in self._handles

    def armed(self) -> list[TimerPurpose]:
        return list(self._handles)

    def deadline(self, purpose: TimerPurpose) -> float | None:
        """Loop time at which the timer fires, or None if not armed."""
        handle = self._handles.get(purpose)
        return handle.when() if handle else None

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def _fire(self, purpose: TimerPurpose, callback: TimerCallback) -> None:
        self._handles.pop(purpose, None)
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[{self.name}] timer callback failed: {exc}", exc_info=exc)

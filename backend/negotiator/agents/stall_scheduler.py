"""
Stall scheduler.

WHAT: Sends filler messages while the human decides on an offer
WHY: A live rep who hears nothing for minutes tends to close the chat
HOW: One STALL timer; first send after a fixed delay, then min interval plus random jitter,
     each measured from the end of the previous send
"""

import random
from typing import Awaitable, Callable, Sequence

from ..core.config import settings
from ..utils.logger import get_logger
from ..utils.timers import TimerPurpose, TimerTable

logger = get_logger(__name__)

STALL_MESSAGES = (
    "Let me review the details of that, one moment please",
    "I want to make sure I understand the offer correctly, give me just a sec",
    "Hmm let me think about that for a moment",
    "I'm looking over the terms, bear with me",
    "Just reviewing this with my partner, one moment",
    "Hold on, I want to double check something before I decide",
    "Give me a minute to consider this",
    "Still reviewing, thanks for your patience",
    "I want to make sure this works for me, almost done thinking it over",
    "Appreciate your patience, still considering",
)


class StallScheduler:
    """Round-robin filler sends until stopped. Send failures never break the schedule."""

    def __init__(
        self,
        send: Callable[[str], Awaitable[object]],
        *,
        first_delay: float | None = None,
        min_interval: float | None = None,
        max_jitter: float | None = None,
        messages: Sequence[str] = STALL_MESSAGES,
        rng: random.Random | None = None,
    ):
        self._send = send
        self.first_delay = first_delay if first_delay is not None else settings.STALL_FIRST_DELAY_SECONDS
        self.min_interval = min_interval if min_interval is not None else settings.STALL_MIN_INTERVAL_SECONDS
        self.max_jitter = max_jitter if max_jitter is not None else settings.STALL_MAX_JITTER_SECONDS
        self.messages = tuple(messages)
        self._rng = rng or random.Random()
        self._timers = TimerTable("stall")
        self._count = 0
        self._active = False
        self._generation = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def sent_count(self) -> int:
        return self._count

    @property
    def next_send_at(self) -> float | None:
        """Loop time of the next scheduled send."""
        return self._timers.deadline(TimerPurpose.STALL)

    def next_delay(self) -> float:
        if self._count == 0:
            return self.first_delay
        return self.min_interval + self._rng.uniform(0, self.max_jitter)

    def start(self) -> None:
        self.stop()
        self._active = True
        logger.info(f"Stall scheduler started (first send in {self.first_delay:.0f}s)")
        self._schedule()

    def stop(self) -> None:
        self._generation += 1
        self._timers.cancel_all()
        if self._active:
            logger.info(f"Stall scheduler stopped after {self._count} message(s)")
        self._active = False
        self._count = 0

    def _schedule(self) -> None:
        self._timers.arm(TimerPurpose.STALL, self.next_delay(), self._fire)

    async def _fire(self) -> None:
        generation = self._generation
        message = self.messages[self._count % len(self.messages)]
        self._count += 1

        try:
            await self._send(message)
            logger.info(f"Stall message {self._count} sent")
        except Exception as e:
            logger.warning(f"Stall message failed (schedule continues): {e}")

        # stop() or a restart during the send owns the schedule now
        if self._active and generation == self._generation:
            self._schedule()

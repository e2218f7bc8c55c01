"""
One-shot approval rendezvous.

WHAT: Pairs the human's approve/reject with the suspended commitment turn
WHY: The wait has no timeout, so the only exits are a resolution or an explicit cancel
HOW: asyncio.Future resolved exactly once; later resolutions are rejected
"""

import asyncio
from dataclasses import dataclass


@dataclass(frozen=True)
class ApprovalResolution:
    approved: bool
    directive: str | None = None
    cancelled: bool = False


class ApprovalRendezvous:
    """Resolves exactly once. Must be created inside the running loop."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self._future: asyncio.Future[ApprovalResolution] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, approved: bool, directive: str | None = None) -> bool:
        """Resolve with the human's decision. Returns False if already resolved."""
        if self._future.done():
            return False
        self._future.set_result(ApprovalResolution(approved=approved, directive=directive))
        return True

    def cancel(self) -> bool:
        """Force-resolve as rejected, e.g. when the session stops."""
        if self._future.done():
            return False
        self._future.set_result(ApprovalResolution(approved=False, cancelled=True))
        return True

    async def wait(self) -> ApprovalResolution:
        # shield: cancelling a waiter must not consume the one-shot result
        return await asyncio.shield(self._future)

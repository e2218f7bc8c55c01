"""
Action surface protocol.

WHAT: The browser operations the negotiation agent relies on
WHY: The agent stays testable against an in-memory page; Playwright is one implementation
HOW: typing.Protocol with async methods; every failure surfaces as BrowserActionError
"""

from typing import Protocol

from ..models.api_schemas import BrowserConfig


class BrowserActionError(Exception):
    """A browser action failed (including 'not connected')."""
    pass


class ActionSurface(Protocol):
    """Browser automation surface addressed by snapshot element refs."""

    async def connect(self, config: BrowserConfig, session_id: str) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    async def navigate(self, url: str) -> None:
        ...

    async def snapshot(self) -> str:
        """Line-oriented text rendering of the page with [ref=...] markers."""
        ...

    async def click(self, ref: str) -> None:
        ...

    async def type(self, ref: str, text: str) -> None:
        ...

    async def press_key(self, key: str) -> None:
        ...

"""
Unit tests for the Playwright action surface that need no browser.

WHAT: Not-connected errors and ref parsing
WHY: Every failure must surface as BrowserActionError so the agent can report it
HOW: Call the surface before connect()
"""

import pytest

from negotiator.browser.action_surface import BrowserActionError
from negotiator.browser.playwright_surface import PlaywrightActionSurface, _REF_FORMAT


@pytest.mark.unit
class TestPlaywrightSurfaceOffline:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("call", [
        lambda s: s.navigate("https://example.com"),
        lambda s: s.snapshot(),
        lambda s: s.click("e1"),
        lambda s: s.type("e1", "hi"),
        lambda s: s.press_key("Enter"),
    ])
    async def test_actions_before_connect_raise(self, call, tmp_path):
        surface = PlaywrightActionSurface(data_dir=str(tmp_path))
        with pytest.raises(BrowserActionError, match="not connected"):
            await call(surface)

    @pytest.mark.asyncio
    async def test_disconnect_without_connect_is_noop(self, tmp_path):
        surface = PlaywrightActionSurface(data_dir=str(tmp_path))
        await surface.disconnect()
        assert not surface.connected

    @pytest.mark.parametrize("ref, frame", [("e12", None), ("f2e7", "2")])
    def test_ref_format(self, ref, frame):
        match = _REF_FORMAT.match(ref)
        assert match is not None
        assert match.group(1) == frame

    @pytest.mark.parametrize("ref", ["12", "button", "e", "f2", "e5; drop"])
    def test_malformed_refs(self, ref):
        assert _REF_FORMAT.match(ref) is None

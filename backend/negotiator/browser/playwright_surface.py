"""
Playwright implementation of the action surface.

WHAT: Drives a Chromium page for the negotiation agent
WHY: The agent reads the chat as text and acts on elements by ref
HOW: Async Playwright; a page script tags interactive elements with a data attribute
     and renders visible content as indented lines, one pass per frame
"""

import re
from pathlib import Path

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Frame,
    Page,
    Playwright,
    async_playwright,
)

from .action_surface import BrowserActionError
from ..core.config import settings
from ..models.api_schemas import BrowserConfig
from ..utils.logger import get_logger

logger = get_logger(__name__)

REF_ATTRIBUTE = "data-negotiator-ref"

# Main frame refs look like "e12"; child frame refs carry the frame index, "f2e7"
_REF_FORMAT = re.compile(r"^(?:f(\d+))?e\d+$")

_SNAPSHOT_SCRIPT = """
([prefix, attr]) => {
  const INTERACTIVE = 'a[href], button, input:not([type="hidden"]), textarea, select, ' +
    '[role="button"], [role="link"], [role="textbox"], [role="menuitem"], [role="option"], ' +
    '[contenteditable=""], [contenteditable="true"]';
  const counterKey = '__negotiatorRefCounter';
  window[counterKey] = window[counterKey] || 0;

  const isVisible = (el) => {
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 || rect.height > 0;
  };
  const clean = (s) => (s || '').replace(/\\s+/g, ' ').trim().slice(0, 200);
  const roleOf = (el) => {
    const role = el.getAttribute('role');
    if (role) return role;
    const tag = el.tagName.toLowerCase();
    if (tag === 'a') return 'link';
    if (tag === 'button') return 'button';
    if (tag === 'select') return 'combobox';
    if (tag === 'textarea') return 'textbox';
    if (tag === 'input') {
      const type = (el.getAttribute('type') || 'text').toLowerCase();
      if (['button', 'submit', 'reset'].includes(type)) return 'button';
      if (type === 'checkbox' || type === 'radio') return type;
      if (type === 'search') return 'searchbox';
      return 'textbox';
    }
    if (el.isContentEditable) return 'textbox';
    return tag;
  };
  const nameOf = (el) => clean(
    el.getAttribute('aria-label') || el.getAttribute('placeholder') || el.getAttribute('title') ||
    (el.tagName.toLowerCase() === 'input' ? el.value : el.innerText) || ''
  );
  const ownText = (el) => clean(Array.from(el.childNodes)
    .filter((n) => n.nodeType === Node.TEXT_NODE)
    .map((n) => n.textContent).join(' '));

  const lines = [];
  const walk = (el, depth) => {
    if (!isVisible(el)) return;
    const indent = '  '.repeat(depth);
    if (el.matches(INTERACTIVE)) {
      let ref = el.getAttribute(attr);
      if (!ref) {
        window[counterKey] += 1;
        ref = prefix + window[counterKey];
        el.setAttribute(attr, ref);
      }
      const extras = [];
      const tag = el.tagName.toLowerCase();
      if (tag === 'textarea') extras.push('textarea');
      if (el.isContentEditable) extras.push('contenteditable');
      if (el.disabled) extras.push('disabled');
      const suffix = extras.length ? ' (' + extras.join(', ') + ')' : '';
      lines.push(`${indent}- ${roleOf(el)} "${nameOf(el)}" [ref=${ref}]${suffix}`);
      return;
    }
    const text = ownText(el);
    if (text) lines.push(`${indent}- text: ${text}`);
    for (const child of el.children) walk(child, text ? depth + 1 : depth);
  };
  if (document.body) walk(document.body, 0);
  return lines.join('\\n');
}
"""


class PlaywrightActionSurface:
    """Action surface backed by one Playwright page."""

    def __init__(self, action_timeout_ms: int | None = None, data_dir: str | None = None):
        self.action_timeout_ms = action_timeout_ms or settings.BROWSER_ACTION_TIMEOUT_MS
        self.data_dir = Path(data_dir or settings.BROWSER_DATA_DIR)
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._frames: dict[str, Frame] = {}
        self._owns_context = False

    @property
    def connected(self) -> bool:
        return self._page is not None

    async def connect(self, config: BrowserConfig, session_id: str) -> None:
        """
        Open the page the negotiation runs in.

        Launch mode uses a persistent per-session profile so chat logins and
        cookies survive a continued session; cdp mode attaches to a running browser.
        """
        try:
            self._playwright = await async_playwright().start()
            chromium = self._playwright.chromium

            if config.mode == "cdp":
                endpoint = config.cdp_endpoint or settings.BROWSER_CDP_ENDPOINT
                logger.info(f"Attaching to browser over CDP at {endpoint}")
                self._browser = await chromium.connect_over_cdp(endpoint)
                if self._browser.contexts:
                    self._context = self._browser.contexts[0]
                else:
                    self._context = await self._browser.new_context()
                    self._owns_context = True
                self._page = await self._context.new_page()
            else:
                profile_dir = self.data_dir / session_id
                profile_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Launching browser (headless={config.headless}, profile={profile_dir})")
                self._context = await chromium.launch_persistent_context(
                    str(profile_dir),
                    headless=config.headless,
                    viewport={"width": 1280, "height": 900},
                )
                self._owns_context = True
                self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()

            self._page.set_default_timeout(self.action_timeout_ms)
        except PlaywrightError as e:
            await self.disconnect()
            raise BrowserActionError(f"Browser connection failed: {e}") from e

    async def disconnect(self) -> None:
        """Close what this surface opened. An attached CDP browser is left running."""
        page, context, browser, playwright = self._page, self._context, self._browser, self._playwright
        self._page = self._context = self._browser = self._playwright = None
        self._frames = {}

        try:
            if browser is not None:
                # Closing the tab we opened; the user's browser stays up
                if page is not None:
                    await page.close()
                if context is not None and self._owns_context:
                    await context.close()
            elif context is not None:
                await context.close()
        finally:
            self._owns_context = False
            if playwright is not None:
                await playwright.stop()

    def _require_page(self) -> Page:
        if self._page is None:
            raise BrowserActionError("Browser is not connected")
        return self._page

    async def navigate(self, url: str) -> None:
        page = self._require_page()
        try:
            await page.goto(url, wait_until="domcontentloaded")
        except PlaywrightError as e:
            raise BrowserActionError(f"Navigation to {url} failed: {e}") from e

    async def snapshot(self) -> str:
        page = self._require_page()
        sections: list[str] = []
        frames: dict[str, Frame] = {}

        try:
            title = await page.title()
        except PlaywrightError as e:
            raise BrowserActionError(f"Snapshot failed: {e}") from e

        sections.append(f"- page: {title} ({page.url})")

        for index, frame in enumerate(page.frames):
            prefix = "e" if frame is page.main_frame else f"f{index}e"
            try:
                rendered = await frame.evaluate(_SNAPSHOT_SCRIPT, [prefix, REF_ATTRIBUTE])
            except PlaywrightError as e:
                if frame is page.main_frame:
                    raise BrowserActionError(f"Snapshot failed: {e}") from e
                # Detached or cross-process frames come and go with chat widgets
                logger.debug(f"Skipping frame {index} ({frame.url}): {e}")
                continue

            frames[prefix] = frame
            if not rendered:
                continue
            if frame is page.main_frame:
                sections.append(rendered)
            else:
                sections.append(f"- iframe {frame.url}")
                sections.append("\n".join(f"  {line}" for line in rendered.splitlines()))

        self._frames = frames
        return "\n".join(sections)

    def _locate(self, ref: str):
        page = self._require_page()
        match = _REF_FORMAT.match(ref)
        if not match:
            raise BrowserActionError(f"Malformed element ref: {ref}")

        prefix = f"f{match.group(1)}e" if match.group(1) else "e"
        frame = self._frames.get(prefix, page.main_frame if prefix == "e" else None)
        if frame is None:
            raise BrowserActionError(f"Frame for ref {ref} is gone; take a new snapshot")
        return frame.locator(f'[{REF_ATTRIBUTE}="{ref}"]').first

    async def click(self, ref: str) -> None:
        locator = self._locate(ref)
        try:
            await locator.click()
        except PlaywrightError as e:
            raise BrowserActionError(f"Click on {ref} failed: {e}") from e

    async def type(self, ref: str, text: str) -> None:
        locator = self._locate(ref)
        try:
            await locator.fill(text)
        except PlaywrightError as e:
            raise BrowserActionError(f"Typing into {ref} failed: {e}") from e

    async def press_key(self, key: str) -> None:
        page = self._require_page()
        try:
            await page.keyboard.press(key)
        except PlaywrightError as e:
            raise BrowserActionError(f"Key press {key} failed: {e}") from e

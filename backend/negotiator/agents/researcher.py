"""
Competitor pricing research.

WHAT: Pulls pricing-looking lines from a web search for the rep's service
WHY: Gives the human concrete numbers when the rep falls back to stock pricing lines
HOW: HTTPX GET against an HTML search endpoint (the chat tab is never touched),
     tags stripped, keyword-matched lines kept
"""

import html
import re

import httpx

from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

PRICING_KEYWORDS = (
    "$", "per month", "/mo", "plan", "pricing", "offer", "deal",
    "promotion", "discount", "rate", "package", "bundle",
)
MAX_FINDINGS = 10

_DROP_BLOCKS = re.compile(r"<(script|style|noscript)[^>]*>.*?</\1>", re.DOTALL | re.IGNORECASE)
_BLOCK_BREAKS = re.compile(r"<\s*(br|/p|/div|/li|/tr|/h\d|/a|/td)[^>]*>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]+>")


def html_to_lines(markup: str) -> list[str]:
    """Visible text of an HTML page, one stripped line per block."""
    text = _DROP_BLOCKS.sub(" ", markup)
    text = _BLOCK_BREAKS.sub("\n", text)
    text = html.unescape(_TAGS.sub(" ", text))
    lines = (re.sub(r"[ \t\r\f\v]+", " ", line).strip() for line in text.split("\n"))
    return [line for line in lines if line]


def extract_findings(lines: list[str], query: str) -> str:
    relevant: list[str] = []
    for line in lines:
        lower = line.lower()
        if 10 < len(line) < 300 and any(keyword in lower for keyword in PRICING_KEYWORDS):
            if line not in relevant:
                relevant.append(line)

    if not relevant:
        return f'Search for "{query}" did not yield clear pricing information.'

    return f'Research findings for "{query}":\n' + "\n".join(relevant[:MAX_FINDINGS])


class WebResearcher:
    """Best-effort search; any failure yields None."""

    def __init__(
        self,
        search_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.search_url = search_url or settings.RESEARCH_SEARCH_URL
        self.timeout = timeout if timeout is not None else settings.RESEARCH_TIMEOUT
        self._client = client

    async def research(self, query: str) -> str | None:
        logger.info(f"Researching: {query}")
        try:
            if self._client is not None:
                response = await self._client.get(self.search_url, params={"q": query}, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(
                    timeout=self.timeout,
                    headers={"User-Agent": f"{settings.APP_NAME}/{settings.APP_VERSION}"},
                    follow_redirects=True,
                ) as client:
                    response = await client.get(self.search_url, params={"q": query})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Research request failed: {e}")
            return None

        findings = extract_findings(html_to_lines(response.text), query)
        logger.debug(f"Research findings: {findings[:200]}")
        return findings

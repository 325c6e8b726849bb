"""Fetch recipe pages: plain HTTP first, headless Chromium when that fails."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from app.config import Settings
from app.core.exceptions import FetchError

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"
MAX_REDIRECTS = 5


@dataclass(frozen=True)
class FetchedPage:
  """HTML of one page plus the URL it resolved to and the strategy that fetched it."""

  url: str
  final_url: str
  html: str
  strategy: str


class PageFetcher(Protocol):
  async def fetch(self, url: str) -> FetchedPage:
    """Return the page HTML or raise FetchError."""

  async def aclose(self) -> None:
    """Release network resources."""


class HttpPageFetcher:
  """httpx fetch that follows redirects and insists on a 2xx response."""

  def __init__(self, *, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
    self._client = client or httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, timeout=httpx.Timeout(timeout), follow_redirects=True, max_redirects=MAX_REDIRECTS)

  async def fetch(self, url: str) -> FetchedPage:
    try:
      response = await self._client.get(url)
    except httpx.TooManyRedirects as exc:
      raise FetchError(f"Too many redirects fetching {url}") from exc
    except httpx.TimeoutException as exc:
      raise FetchError(f"Timed out fetching {url}") from exc
    except httpx.HTTPError as exc:
      raise FetchError(f"HTTP fetch failed for {url}: {exc}") from exc

    if not response.is_success:
      raise FetchError(f"HTTP {response.status_code} fetching {url}")
    return FetchedPage(url=url, final_url=str(response.url), html=response.text, strategy="http")

  async def aclose(self) -> None:
    await self._client.aclose()


class BrowserPageFetcher:
  """Playwright Chromium renderer, started lazily on first use."""

  def __init__(self, *, timeout: float = 60.0) -> None:
    self._timeout_ms = int(timeout * 1000)
    self._playwright: Playwright | None = None
    self._browser: Browser | None = None
    self._lock = asyncio.Lock()

  async def _ensure_browser(self) -> Browser:
    """Launch Chromium once and reuse it for later fetches."""
    async with self._lock:
      if self._browser is None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=True, args=["--no-sandbox", "--disable-dev-shm-usage"])
      return self._browser

  async def fetch(self, url: str) -> FetchedPage:
    try:
      browser = await self._ensure_browser()
      context = await browser.new_context(user_agent=USER_AGENT)
      try:
        page = await context.new_page()
        response = await page.goto(url, wait_until="networkidle", timeout=self._timeout_ms)
        if response is not None and not response.ok:
          raise FetchError(f"Browser got HTTP {response.status} for {url}")
        html = await page.content()
        final_url = page.url
      finally:
        await context.close()
    except PlaywrightError as exc:
      raise FetchError(f"Browser fetch failed for {url}: {exc}") from exc
    return FetchedPage(url=url, final_url=final_url, html=html, strategy="browser")

  async def aclose(self) -> None:
    async with self._lock:
      if self._browser is not None:
        await self._browser.close()
        self._browser = None
      if self._playwright is not None:
        await self._playwright.stop()
        self._playwright = None


class FallbackPageFetcher:
  """Try the primary fetcher, then the secondary one, before declaring failure."""

  def __init__(self, primary: PageFetcher, secondary: PageFetcher | None = None) -> None:
    self._primary = primary
    self._secondary = secondary

  async def fetch(self, url: str) -> FetchedPage:
    try:
      return await self._primary.fetch(url)
    except FetchError as primary_error:
      if self._secondary is None:
        raise
      logger.info("Primary fetch failed for %s (%s); trying headless browser", url, primary_error)
      try:
        return await self._secondary.fetch(url)
      except FetchError as secondary_error:
        raise FetchError(f"{primary_error}; fallback failed: {secondary_error}") from secondary_error

  async def aclose(self) -> None:
    await self._primary.aclose()
    if self._secondary is not None:
      await self._secondary.aclose()


def build_page_fetcher(settings: Settings) -> FallbackPageFetcher:
  """httpx first, with the browser as a fallback when enabled."""
  secondary = BrowserPageFetcher(timeout=settings.browser_timeout_seconds) if settings.browser_fallback_enabled else None
  return FallbackPageFetcher(HttpPageFetcher(timeout=settings.scrape_timeout_seconds), secondary)

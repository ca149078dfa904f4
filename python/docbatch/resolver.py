"""
ContentResolver - Layered fallback chain that turns a URL into content.

Layers run strictly in order and the first success wins:
    1. DirectFetchLayer   - plain HTTP GET (httpx)
    2. BrowserLayer       - headless Chromium (Playwright), opt-in
    3. RemoteRenderLayer  - remote rendering API (browserless), opt-in

A disabled layer counts as failed without being attempted. A direct
fetch whose body needs client-side rendering also counts as failed so
the chain falls through to a rendering layer. When every layer fails the
caller gets a single generic failure; per-layer detail goes to the log.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence

import httpx
from playwright.async_api import async_playwright, BrowserContext

from .config import get_config, BatchConfig
from .errors import FetchError, JavaScriptRequiredError
from .models import FetchLayer, FetchOutcome


logger = logging.getLogger(__name__)

ALL_LAYERS_FAILED = "All fetch methods failed"

# Heuristics for bodies that only render in a browser
JS_NOTICES = (
    "please enable javascript",
    "you need to enable javascript",
    "javascript is required",
    "this app works best with javascript enabled",
)
HYDRATION_MARKERS = ("__NEXT_DATA__", "window.__NUXT__", "data-reactroot=\"\"")
EMPTY_SHELL_THRESHOLD = 5000


def requires_javascript(html: str) -> bool:
    """
    Heuristic check for pages that need client-side rendering.

    True for explicit "enable JavaScript" notices, tiny documents that
    are mostly a <noscript> shell, or framework hydration payloads with
    no rendered <main> content.
    """
    lowered = html.lower()

    if any(notice in lowered for notice in JS_NOTICES):
        return True

    if "<noscript" in lowered and len(html) < EMPTY_SHELL_THRESHOLD:
        return True

    if any(marker in html for marker in HYDRATION_MARKERS) and "<main" not in lowered:
        return True

    return False


class RetrievalLayer:
    """
    One backend in the fallback chain.

    Subclasses implement `_retrieve`, which returns the body or raises.
    `fetch` turns every outcome into a FetchOutcome and never raises.
    """

    layer: FetchLayer = FetchLayer.DIRECT

    def __init__(self, config: BatchConfig | None = None):
        self.config = config or get_config()

    @property
    def enabled(self) -> bool:
        return True

    async def fetch(self, url: str) -> FetchOutcome:
        if not self.enabled:
            return FetchOutcome.failed(url, self.layer, f"{self.layer.value} disabled")

        logger.debug(f"[{self.layer.value}] Fetching {url}")
        try:
            content = await self._retrieve(url)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.debug(f"[{self.layer.value}] Failed for {url}: {message}")
            return FetchOutcome.failed(url, self.layer, message)

        logger.info(f"[{self.layer.value}] Successfully fetched: {url}")
        return FetchOutcome.ok(url, self.layer, content)

    async def _retrieve(self, url: str) -> str:
        raise NotImplementedError


class DirectFetchLayer(RetrievalLayer):
    """Layer 1: direct HTTP GET with the configured timeout and user agent."""

    layer = FetchLayer.DIRECT

    def __init__(
        self,
        config: BatchConfig | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport

    async def _retrieve(self, url: str) -> str:
        headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }
        async with httpx.AsyncClient(
            timeout=self.config.fetch_timeout,
            headers=headers,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.get(url)

        if not response.is_success:
            raise FetchError(f"HTTP {response.status_code}: {response.reason_phrase}")

        html = response.text
        if requires_javascript(html):
            raise JavaScriptRequiredError("Page requires JavaScript rendering")

        return html


class BrowserLayer(RetrievalLayer):
    """
    Layer 2: headless Chromium via Playwright.

    Each request gets its own browser and context. Both are closed on
    every exit path, including navigation errors and timeouts.
    """

    layer = FetchLayer.BROWSER

    @property
    def enabled(self) -> bool:
        return self.config.playwright_enabled

    @asynccontextmanager
    async def _browser_context(self) -> AsyncIterator[BrowserContext]:
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                context = await browser.new_context(user_agent=self.config.user_agent)
                try:
                    yield context
                finally:
                    await context.close()
            finally:
                await browser.close()

    async def _retrieve(self, url: str) -> str:
        async with self._browser_context() as context:
            page = await context.new_page()
            await page.goto(
                url,
                wait_until="networkidle",
                timeout=self.config.playwright_timeout * 1000,
            )
            # Let client-side rendering settle
            await page.wait_for_timeout(self.config.playwright_wait * 1000)
            return await page.content()


class RemoteRenderLayer(RetrievalLayer):
    """Layer 3: POST the URL to a remote rendering endpoint (browserless /content)."""

    layer = FetchLayer.REMOTE

    def __init__(
        self,
        config: BatchConfig | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.config.browserless_enabled and bool(self.config.browserless_url)

    @property
    def endpoint(self) -> str:
        return f"{self.config.browserless_url.rstrip('/')}/content"

    async def _retrieve(self, url: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.config.browserless_token:
            headers["Authorization"] = f"Bearer {self.config.browserless_token}"

        payload = {
            "url": url,
            "gotoOptions": {
                "waitUntil": "networkidle2",
                "timeout": int(self.config.playwright_timeout * 1000),
            },
            "waitForTimeout": int(self.config.playwright_wait * 1000),
        }

        # Allow the remote browser its navigation timeout plus settle delay
        timeout = self.config.playwright_timeout + self.config.playwright_wait + self.config.fetch_timeout
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            response = await client.post(self.endpoint, json=payload, headers=headers)

        if not response.is_success:
            raise FetchError(f"Remote render HTTP {response.status_code}: {response.reason_phrase}")

        return response.text


class ContentResolver:
    """
    Runs the retrieval layers in order until one succeeds.

    The resolver holds no state between calls; give it different layers
    (e.g. fakes in tests) to change how URLs are retrieved.
    """

    def __init__(
        self,
        config: BatchConfig | None = None,
        layers: Optional[Sequence[RetrievalLayer]] = None,
    ):
        self.config = config or get_config()
        if layers is None:
            layers = [
                DirectFetchLayer(self.config),
                BrowserLayer(self.config),
                RemoteRenderLayer(self.config),
            ]
        self.layers: List[RetrievalLayer] = list(layers)

    async def resolve(self, url: str) -> FetchOutcome:
        """
        Produce content for `url`.

        Returns:
            The winning layer's FetchOutcome, or a failed outcome carrying
            ALL_LAYERS_FAILED when every layer failed or was disabled.
        """
        last_layer = self.layers[-1].layer if self.layers else FetchLayer.DIRECT

        for layer in self.layers:
            if not layer.enabled:
                logger.debug(f"[{layer.layer.value}] Skipped (disabled): {url}")
                continue

            outcome = await layer.fetch(url)
            if outcome.success:
                return outcome

            last_layer = layer.layer

        logger.error(f"All fetch layers failed for: {url}")
        return FetchOutcome.failed(url, last_layer, ALL_LAYERS_FAILED)

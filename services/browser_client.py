"""
Headless browser client for Sophia website monitoring.
A small Playwright (Chromium) wrapper exposing the handful of actions the
monitoring scripts need: navigate, evaluate, click, screenshot.
"""

import logging
import os
from typing import Any, Optional

from playwright.async_api import async_playwright

from services.config import BROWSER_TIMEOUT_MS, SCREENSHOT_DIR

logger = logging.getLogger(__name__)


class BrowserClient:
    """One headless Chromium page. Use as an async context manager."""

    def __init__(self, viewport_width: int = 1280, viewport_height: int = 720, timeout_ms: int = BROWSER_TIMEOUT_MS):
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self.timeout_ms = timeout_ms
        self._playwright = None
        self._browser = None
        self._page = None

    async def start(self):
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(headless=True)
        except Exception as e:
            await self._playwright.stop()
            self._playwright = None
            raise RuntimeError(f"Failed to launch browser: {e}")
        try:
            context = await self._browser.new_context(viewport=self.viewport)
            self._page = await context.new_page()
        except Exception:
            await self.close()
            raise
        return self

    async def close(self):
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._page = None

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def navigate(self, url: str) -> int:
        """Load url and return the HTTP status of the main document (0 if unknown)."""
        response = await self._page.goto(url, wait_until="load", timeout=self.timeout_ms)
        return response.status if response is not None else 0

    async def evaluate(self, expression: str) -> Any:
        return await self._page.evaluate(expression)

    async def click(self, selector: str):
        await self._page.locator(selector).first.click(timeout=self.timeout_ms)

    async def count(self, selector: str) -> int:
        return await self._page.locator(selector).count()

    async def screenshot(
        self,
        name: str,
        output_dir: str = SCREENSHOT_DIR,
        width: Optional[int] = None,
        height: Optional[int] = None
    ) -> str:
        """Save a PNG screenshot and return its file name."""
        if width and height:
            await self._page.set_viewport_size({"width": width, "height": height})
        os.makedirs(output_dir, exist_ok=True)
        file_name = f"{name}.png"
        await self._page.screenshot(path=os.path.join(output_dir, file_name), full_page=False)
        logger.debug("Screenshot saved to %s/%s", output_dir, file_name)
        return file_name

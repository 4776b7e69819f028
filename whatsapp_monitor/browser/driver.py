"""Browser driver adapter.

The monitor only talks to the page through ``BrowserDriver``. The Playwright
implementation keeps a persistent profile directory so WhatsApp's own session
cookies survive restarts, which is why no credential store is needed.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from whatsapp_monitor.monitor.errors import (
    BrowserInitError,
    ElementNotFoundError,
    NavigationError,
    ScriptError,
)

logger = logging.getLogger(__name__)

# Real Chrome user-agent; WhatsApp Web refuses obvious automation agents
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-default-apps",
    "--disable-popup-blocking",
    "--disable-translate",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-backgrounding-occluded-windows",
    "--disable-blink-features=AutomationControlled",
]

CANVAS_TO_DATA_URL_JS = """
(el) => {
    if (el.tagName === 'IMG') {
        const src = el.getAttribute('src') || '';
        return src.startsWith('data:') ? src : null;
    }
    if (!el.toDataURL || el.width === 0 || el.height === 0) {
        return null;
    }
    return el.toDataURL('image/png');
}
"""


class BrowserDriver(ABC):
    """Minimal page-control surface used by the monitor.

    Implementations raise the monitor's error types:
        - launch() -> BrowserInitError
        - navigate() -> NavigationError
        - wait_for() / find() -> ElementNotFoundError
        - evaluate() -> ScriptError
    """

    @abstractmethod
    async def launch(self) -> None:
        """Start the browser and open a page."""

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Load ``url`` in the page."""

    @abstractmethod
    async def wait_for(self, selector: str, timeout: float) -> None:
        """Wait up to ``timeout`` seconds for ``selector`` to be attached."""

    @abstractmethod
    async def find(self, selector: str) -> Any:
        """Return the first element matching ``selector``."""

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run ``script`` in the page and return its JSON result."""

    @abstractmethod
    async def extract_canvas_data(self, element: Any) -> str | None:
        """Render a canvas (or data-URL image) element to a data URL."""

    @abstractmethod
    async def reload(self) -> None:
        """Reload the current page."""

    @abstractmethod
    async def screenshot(self, path: str | Path) -> Path:
        """Save a screenshot of the page to ``path``."""

    @abstractmethod
    async def close(self) -> None:
        """Release the browser process and page."""

    async def exists(self, selector: str) -> bool:
        try:
            await self.find(selector)
        except ElementNotFoundError:
            return False
        return True


class PlaywrightDriver(BrowserDriver):
    """Chromium via Playwright with a persistent user-data directory."""

    def __init__(
        self,
        profile_path: str | Path,
        headless: bool = True,
        viewport: tuple[int, int] = (1280, 720),
        launch_timeout: float = 30.0,
        navigation_timeout: float = 60.0,
    ) -> None:
        self.profile_path = Path(profile_path)
        self.headless = headless
        self.viewport = viewport
        self.launch_timeout = launch_timeout
        self.navigation_timeout = navigation_timeout
        self._playwright: Any = None
        self._context: Any = None
        self._page: Any = None

    @property
    def is_open(self) -> bool:
        return self._page is not None

    @property
    def page(self) -> Any:
        if self._page is None:
            raise BrowserInitError("browser is not running")
        return self._page

    # ── Lifecycle ───────────────────────────────────────────────────

    async def launch(self) -> None:
        logger.info(
            "Launching Chromium (headless=%s, profile=%s)", self.headless, self.profile_path
        )
        try:
            await asyncio.wait_for(self._start(), timeout=self.launch_timeout)
        except asyncio.TimeoutError as exc:
            await self.close()
            raise BrowserInitError("Browser launch timeout") from exc
        except PlaywrightError as exc:
            await self.close()
            raise BrowserInitError(str(exc)) from exc
        logger.info("Browser launched")

    async def _start(self) -> None:
        self.profile_path.mkdir(parents=True, exist_ok=True)
        self._playwright = await async_playwright().start()
        width, height = self.viewport
        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.profile_path),
            headless=self.headless,
            user_agent=USER_AGENT,
            viewport={"width": width, "height": height},
            args=CHROMIUM_ARGS,
        )
        self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()

    async def close(self) -> None:
        context, playwright = self._context, self._playwright
        self._context = None
        self._page = None
        self._playwright = None
        if context is not None:
            try:
                await context.close()
            except PlaywrightError:
                logger.warning("Browser context did not close cleanly", exc_info=True)
        if playwright is not None:
            await playwright.stop()

    # ── Page operations ─────────────────────────────────────────────

    async def navigate(self, url: str) -> None:
        logger.debug("Navigating to %s", url)
        try:
            await self.page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout * 1000,
            )
        except PlaywrightError as exc:
            raise NavigationError(str(exc)) from exc

    async def wait_for(self, selector: str, timeout: float) -> None:
        try:
            await self.page.wait_for_selector(selector, timeout=timeout * 1000, state="attached")
        except PlaywrightTimeoutError as exc:
            raise ElementNotFoundError(f"{selector} (waited {timeout:.0f}s)") from exc
        except PlaywrightError as exc:
            raise ElementNotFoundError(f"{selector}: {exc}") from exc

    async def find(self, selector: str) -> Any:
        try:
            element = await self.page.query_selector(selector)
        except PlaywrightError as exc:
            raise ElementNotFoundError(f"{selector}: {exc}") from exc
        if element is None:
            raise ElementNotFoundError(selector)
        return element

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return await self.page.evaluate(script, arg)
        except PlaywrightError as exc:
            raise ScriptError(str(exc)) from exc

    async def extract_canvas_data(self, element: Any) -> str | None:
        try:
            data_url = await element.evaluate(CANVAS_TO_DATA_URL_JS)
        except PlaywrightError:
            logger.debug("Canvas extraction failed", exc_info=True)
            return None
        return data_url if isinstance(data_url, str) else None

    async def reload(self) -> None:
        try:
            await self.page.reload(
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout * 1000,
            )
        except PlaywrightError as exc:
            raise NavigationError(f"reload: {exc}") from exc

    async def screenshot(self, path: str | Path) -> Path:
        """Save a full-page screenshot, for diagnosing unexpected page states."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self.page.screenshot(path=str(target), full_page=True)
        except PlaywrightError as exc:
            raise ScriptError(f"screenshot: {exc}") from exc
        return target

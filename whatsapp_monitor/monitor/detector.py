"""Session state detection for WhatsApp Web.

Decides from the live page whether the session is logged in, waiting for a
QR scan, or neither yet. A bare "element is present" check is not enough:
the app shell renders some logged-in markers even on the QR landing page,
and headless Chromium can produce blank canvases. Hence the separate
validation pass and the size guards on QR data.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from whatsapp_monitor.browser.driver import BrowserDriver
from whatsapp_monitor.config import SelectorConfig
from whatsapp_monitor.monitor.errors import ElementNotFoundError, ScriptError
from whatsapp_monitor.monitor.models import is_valid_qr_data_url

logger = logging.getLogger(__name__)

# Fallback canvases must hold real image data, not a blank placeholder
SUBSTANTIAL_CANVAS_LENGTH = 1000

SESSION_CHECK_JS = """
(chatListSelector) => {
    try {
        const hasStore = window.Store !== undefined;
        const hasRequire = window.require !== undefined;
        const chatList = document.querySelector(chatListSelector);
        const hasChats = !!chatList && chatList.children.length > 0;
        return hasStore || hasRequire || hasChats;
    } catch (e) {
        return false;
    }
}
"""

ALL_CANVASES_JS = """
(minLength) => {
    const canvases = document.querySelectorAll('canvas');
    for (const canvas of canvases) {
        if (canvas.width === 0 || canvas.height === 0) continue;
        try {
            const dataUrl = canvas.toDataURL('image/png');
            if (dataUrl.length > minLength) return dataUrl;
        } catch (e) {
            // tainted or detached canvas, try the next one
        }
    }
    return null;
}
"""


class SessionKind(str, Enum):
    LOGGED_IN = "logged_in"
    QR_PENDING = "qr_pending"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class Classification:
    kind: SessionKind
    qr_code: str | None = None

    @classmethod
    def logged_in(cls) -> Classification:
        return cls(SessionKind.LOGGED_IN)

    @classmethod
    def qr_pending(cls, qr_code: str) -> Classification:
        return cls(SessionKind.QR_PENDING, qr_code)

    @classmethod
    def indeterminate(cls) -> Classification:
        return cls(SessionKind.INDETERMINATE)


class SessionStateDetector:
    """Classifies the page as logged in, QR pending or indeterminate."""

    def __init__(self, selectors: SelectorConfig, validation_delay: float = 5.0) -> None:
        self.selectors = selectors
        self.validation_delay = validation_delay
        self.logger = logging.getLogger(self.__class__.__name__)

    async def classify(self, driver: BrowserDriver) -> Classification:
        if await self.is_logged_in(driver):
            self.logger.info("DOM suggests a logged-in session, validating...")
            if self.validation_delay > 0:
                await asyncio.sleep(self.validation_delay)
            if await self.validate_active_session(driver):
                return Classification.logged_in()
            self.logger.warning("Session validation failed, looking for a QR code instead")

        qr_code = await self.extract_qr_code(driver)
        if qr_code is not None:
            return Classification.qr_pending(qr_code)
        return Classification.indeterminate()

    async def is_logged_in(self, driver: BrowserDriver) -> bool:
        """Cheap first-pass signal; must be confirmed by ``validate_active_session``."""
        for selector in self.selectors.logged_in:
            if await driver.exists(selector):
                self.logger.debug("Logged-in marker present: %s", selector)
                return True

        for selector in self.selectors.qr_markers:
            if await driver.exists(selector):
                self.logger.debug("QR marker present: %s", selector)
                return False

        # Some app variants expose none of the primary markers
        self.logger.debug("No QR markers on page, treating as logged in")
        return True

    async def validate_active_session(self, driver: BrowserDriver) -> bool:
        """Confirm a session is genuinely active.

        All three checks must pass:
            1. no QR or landing-page marker is present,
            2. at least ``min_critical`` critical markers are present,
            3. the in-page check finds app globals or a non-empty chat list.
        """
        for selector in self.selectors.session_errors:
            if await driver.exists(selector):
                self.logger.warning("Session error marker present: %s", selector)
                return False

        found = 0
        for selector in self.selectors.critical:
            if await driver.exists(selector):
                found += 1
            else:
                self.logger.debug("Critical marker missing: %s", selector)
        if found < self.selectors.min_critical:
            self.logger.warning(
                "Only %d/%d critical markers present (need %d)",
                found,
                len(self.selectors.critical),
                self.selectors.min_critical,
            )
            return False

        try:
            result = await driver.evaluate(SESSION_CHECK_JS, self.selectors.critical[0])
        except ScriptError as exc:
            self.logger.warning("Session check script failed: %s", exc)
            return False
        if result is not True:
            self.logger.warning("Session check script returned %r", result)
            return False

        self.logger.info("Session validated (%d critical markers)", found)
        return True

    async def extract_qr_code(self, driver: BrowserDriver) -> str | None:
        """Return the QR image as a data URL, or None if none is rendered."""
        for selector in self.selectors.qr_canvas:
            try:
                element = await driver.find(selector)
            except ElementNotFoundError:
                continue
            data_url = await driver.extract_canvas_data(element)
            if is_valid_qr_data_url(data_url):
                self.logger.debug("QR extracted via %s (%d chars)", selector, len(data_url))
                return data_url

        try:
            data_url = await driver.evaluate(ALL_CANVASES_JS, SUBSTANTIAL_CANVAS_LENGTH)
        except ScriptError as exc:
            self.logger.debug("Canvas sweep failed: %s", exc)
            return None
        if is_valid_qr_data_url(data_url) and len(data_url) > SUBSTANTIAL_CANVAS_LENGTH:
            self.logger.debug("QR extracted via canvas sweep (%d chars)", len(data_url))
            return data_url
        return None

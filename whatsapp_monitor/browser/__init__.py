"""Browser automation adapter for WhatsApp Web."""

from whatsapp_monitor.browser.driver import BrowserDriver, PlaywrightDriver

__all__ = ["BrowserDriver", "PlaywrightDriver"]

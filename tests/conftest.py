"""Shared fixtures: a scripted in-memory browser driver and test configs."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from whatsapp_monitor.browser.driver import BrowserDriver
from whatsapp_monitor.config import MonitorConfig, SelectorConfig
from whatsapp_monitor.monitor.errors import ElementNotFoundError

QR_PAYLOAD = "data:image/png;base64," + "A" * 1200
LOGGED_IN_MARKERS = [
    ".app-wrapper-web",
    "[data-testid='chat-list']",
    "[data-testid='search']",
    "[data-testid='side']",
    "#main",
]
QR_CANVAS = "[data-testid='qr-code'] canvas"


class FakeDriver(BrowserDriver):
    """Browser stand-in driven by sets of present selectors and script results.

    ``scripts`` maps a script source to a value, an exception instance to
    raise, or a callable taking the script argument.
    """

    def __init__(
        self,
        present: set[str] | None = None,
        canvases: dict[str, str | None] | None = None,
        scripts: dict[str, Any] | None = None,
    ):
        self.present = set(present or ())
        self.canvases = dict(canvases or {})
        self.scripts = dict(scripts or {})
        self.launched = False
        self.closed = False
        self.navigated_to: list[str] = []
        self.evaluations: list[tuple[str, Any]] = []
        self.reloads = 0
        self.screenshots: list[Path] = []
        self.launch_error: Exception | None = None

    async def launch(self) -> None:
        if self.launch_error is not None:
            raise self.launch_error
        self.launched = True

    async def navigate(self, url: str) -> None:
        self.navigated_to.append(url)

    async def wait_for(self, selector: str, timeout: float) -> None:
        if selector not in self.present:
            raise ElementNotFoundError(selector)

    async def find(self, selector: str) -> Any:
        if selector in self.present or selector in self.canvases:
            return selector
        raise ElementNotFoundError(selector)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluations.append((script, arg))
        result = self.scripts.get(script)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(arg)
        return result

    async def extract_canvas_data(self, element: Any) -> str | None:
        return self.canvases.get(element)

    async def reload(self) -> None:
        self.reloads += 1

    async def screenshot(self, path: str | Path) -> Path:
        self.screenshots.append(Path(path))
        return Path(path)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def selectors() -> SelectorConfig:
    return SelectorConfig.load()


@pytest.fixture
def config(tmp_path: Path, selectors: SelectorConfig) -> MonitorConfig:
    """Config with every delay zeroed and tiny loop intervals."""
    return MonitorConfig(
        profile_path=str(tmp_path / "profile"),
        settle_seconds=0,
        validation_delay=0,
        scan_interval=0.01,
        health_interval=0.01,
        gap_interval=0.01,
        store_path=str(tmp_path / "messages.json"),
        vault_path=str(tmp_path / "vault"),
        selectors=selectors,
    )

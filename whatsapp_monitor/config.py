"""Runtime configuration for the WhatsApp monitor.

Values come from environment variables (optionally loaded from
``config/.env``); DOM selectors come from ``selectors.yaml``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_SELECTORS_PATH = Path(__file__).with_name("selectors.yaml")
DEFAULT_ENV_PATH = Path("config") / ".env"

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"


@dataclass
class SelectorConfig:
    """Selector sets used by the detector and the message scan."""

    page_ready: str
    logged_in: list[str]
    qr_markers: list[str]
    session_errors: list[str]
    critical: list[str]
    min_critical: int
    qr_canvas: list[str]
    message_container: str
    message_time: str
    message_text: str
    message_outgoing: str
    chat_title: str

    @classmethod
    def load(cls, path: str | Path | None = None) -> SelectorConfig:
        """Load the packaged selectors, overlaid with ``path`` if given.

        Keys missing from the override keep their packaged values.

        Raises:
            FileNotFoundError: If ``path`` is given but does not exist.
            ValueError: If the merged file lacks a required key.
        """
        data = _read_yaml(DEFAULT_SELECTORS_PATH)
        if path is not None:
            override_path = Path(path)
            if not override_path.exists():
                raise FileNotFoundError(f"Selectors file not found: {path}")
            data.update(_read_yaml(override_path))
            logger.info("Loaded selector overrides from %s", override_path)

        try:
            return cls(
                page_ready=str(data["page_ready"]),
                logged_in=list(data["logged_in"]),
                qr_markers=list(data["qr_markers"]),
                session_errors=list(data["session_errors"]),
                critical=list(data["critical"]),
                min_critical=int(data.get("min_critical", 2)),
                qr_canvas=list(data["qr_canvas"]),
                message_container=str(data["message_container"]),
                message_time=str(data["message_time"]),
                message_text=str(data["message_text"]),
                message_outgoing=str(data["message_outgoing"]),
                chat_title=str(data["chat_title"]),
            )
        except KeyError as exc:
            raise ValueError(f"Selectors file missing key: {exc.args[0]}") from exc


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid selectors file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Selectors file {path} must contain a mapping")
    return data


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


@dataclass
class MonitorConfig:
    """Tunables for the browser, the background loops and storage."""

    url: str = WHATSAPP_WEB_URL
    profile_path: str = "./whatsapp_profile"
    headless: bool = True
    viewport: tuple[int, int] = (1280, 720)
    launch_timeout: float = 30.0
    navigation_timeout: float = 60.0
    page_ready_timeout: float = 30.0
    settle_seconds: float = 3.0
    validation_delay: float = 5.0
    scan_interval: float = 0.5
    health_interval: float = 30.0
    stall_seconds: int = 120
    gap_interval: float = 60.0
    max_scan_failures: int = 5
    auto_start_monitoring: bool = True
    auto_recover: bool = False
    store_backend: str = "json"
    store_path: str = "./data/whatsapp_messages.json"
    database_service_url: str = "http://localhost:3002"
    vault_path: str = "./vault"
    selectors: SelectorConfig = field(default_factory=SelectorConfig.load)

    @property
    def actions_log_dir(self) -> Path:
        return Path(self.vault_path) / "Logs" / "actions"

    @property
    def errors_log_dir(self) -> Path:
        return Path(self.vault_path) / "Logs" / "errors"

    @classmethod
    def from_env(cls, env_path: str | Path | None = DEFAULT_ENV_PATH) -> MonitorConfig:
        """Build a config from environment variables.

        Args:
            env_path: Optional ``.env`` file loaded first; existing
                environment variables win over its values.
        """
        if env_path is not None:
            load_dotenv(env_path)

        return cls(
            url=os.getenv("WHATSAPP_URL", WHATSAPP_WEB_URL),
            profile_path=os.getenv("WHATSAPP_PROFILE_PATH", "./whatsapp_profile"),
            headless=_env_bool("WHATSAPP_HEADLESS", True),
            launch_timeout=float(os.getenv("WHATSAPP_LAUNCH_TIMEOUT", "30")),
            scan_interval=float(os.getenv("WHATSAPP_SCAN_INTERVAL", "0.5")),
            health_interval=float(os.getenv("WHATSAPP_HEALTH_INTERVAL", "30")),
            stall_seconds=int(os.getenv("WHATSAPP_STALL_SECONDS", "120")),
            gap_interval=float(os.getenv("WHATSAPP_GAP_INTERVAL", "60")),
            max_scan_failures=int(os.getenv("WHATSAPP_MAX_SCAN_FAILURES", "5")),
            auto_start_monitoring=_env_bool("WHATSAPP_AUTO_MONITOR", True),
            auto_recover=_env_bool("WHATSAPP_AUTO_RECOVER", False),
            store_backend=os.getenv("WHATSAPP_STORE", "json").lower(),
            store_path=os.getenv("WHATSAPP_STORE_PATH", "./data/whatsapp_messages.json"),
            database_service_url=os.getenv("DATABASE_SERVICE_URL", "http://localhost:3002"),
            vault_path=os.getenv("VAULT_PATH", "./vault"),
            selectors=SelectorConfig.load(os.getenv("WHATSAPP_SELECTORS_PATH") or None),
        )

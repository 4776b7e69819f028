"""Tests for configuration loading (whatsapp_monitor.config)."""

from __future__ import annotations

from pathlib import Path

import pytest

from whatsapp_monitor.config import WHATSAPP_WEB_URL, MonitorConfig, SelectorConfig


class TestSelectorConfig:
    def test_packaged_defaults(self) -> None:
        selectors = SelectorConfig.load()
        assert selectors.page_ready == "body"
        assert len(selectors.critical) == 4
        assert selectors.min_critical == 2
        assert "[data-testid='chat-list']" in selectors.logged_in
        assert selectors.qr_canvas[-1] == "canvas"

    def test_override_replaces_only_given_keys(self, tmp_path: Path) -> None:
        override = tmp_path / "selectors.yaml"
        override.write_text("page_ready: '#app'\nmin_critical: 3\n", encoding="utf-8")
        selectors = SelectorConfig.load(override)
        assert selectors.page_ready == "#app"
        assert selectors.min_critical == 3
        assert selectors.critical == SelectorConfig.load().critical

    def test_missing_override_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            SelectorConfig.load(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        override = tmp_path / "selectors.yaml"
        override.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ValueError):
            SelectorConfig.load(override)


class TestMonitorConfig:
    def test_defaults(self) -> None:
        config = MonitorConfig()
        assert config.url == WHATSAPP_WEB_URL
        assert config.headless is True
        assert config.viewport == (1280, 720)
        assert config.launch_timeout == 30.0
        assert config.scan_interval == 0.5
        assert config.health_interval == 30.0
        assert config.stall_seconds == 120
        assert config.gap_interval == 60.0
        assert config.max_scan_failures == 5
        assert config.auto_start_monitoring is True
        assert config.auto_recover is False

    def test_log_dirs_live_under_vault(self) -> None:
        config = MonitorConfig(vault_path="/tmp/vault")
        assert config.actions_log_dir == Path("/tmp/vault/Logs/actions")
        assert config.errors_log_dir == Path("/tmp/vault/Logs/errors")

    def test_from_env(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setenv("WHATSAPP_HEADLESS", "false")
        monkeypatch.setenv("WHATSAPP_SCAN_INTERVAL", "2")
        monkeypatch.setenv("WHATSAPP_MAX_SCAN_FAILURES", "9")
        monkeypatch.setenv("WHATSAPP_AUTO_RECOVER", "true")
        monkeypatch.setenv("WHATSAPP_STORE", "HTTP")
        monkeypatch.setenv("VAULT_PATH", str(tmp_path))
        config = MonitorConfig.from_env(env_path=None)
        assert config.headless is False
        assert config.scan_interval == 2.0
        assert config.max_scan_failures == 9
        assert config.auto_recover is True
        assert config.store_backend == "http"
        assert config.vault_path == str(tmp_path)

    def test_from_env_reads_dotenv_file(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setenv("WHATSAPP_PROFILE_PATH", "unset")
        monkeypatch.delenv("WHATSAPP_PROFILE_PATH")
        env_file = tmp_path / ".env"
        env_file.write_text("WHATSAPP_PROFILE_PATH=/data/profile\n", encoding="utf-8")
        config = MonitorConfig.from_env(env_path=env_file)
        assert config.profile_path == "/data/profile"

    def test_from_env_selector_override(self, monkeypatch, tmp_path: Path) -> None:
        override = tmp_path / "selectors.yaml"
        override.write_text("page_ready: '#app'\n", encoding="utf-8")
        monkeypatch.setenv("WHATSAPP_SELECTORS_PATH", str(override))
        config = MonitorConfig.from_env(env_path=None)
        assert config.selectors.page_ready == "#app"

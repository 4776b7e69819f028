"""Tests for the WhatsApp MCP server tools (whatsapp_monitor.mcp_servers.monitor_server)."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import QR_PAYLOAD
from whatsapp_monitor.mcp_servers import monitor_server
from whatsapp_monitor.monitor.errors import (
    AlreadyConnectedError,
    DatabaseError,
    NotConnectedError,
)
from whatsapp_monitor.monitor.models import WhatsAppMessage
from whatsapp_monitor.monitor.state import ConnectionState, ConnectionStatus
from whatsapp_monitor.utils.logging_utils import read_logs_for_date
from whatsapp_monitor.utils.timestamps import today_iso

MODULE = "whatsapp_monitor.mcp_servers.monitor_server"


@pytest.fixture()
def mock_monitor():
    monitor = MagicMock()
    monitor.connect = AsyncMock()
    monitor.disconnect = AsyncMock()
    monitor.get_status = AsyncMock(return_value=ConnectionState())
    monitor.start_monitoring = AsyncMock()
    monitor.get_unprocessed_messages = AsyncMock(return_value=[])
    monitor.mark_processed = AsyncMock()
    monitor.check_login = AsyncMock()
    return monitor


@pytest.fixture()
def mock_context(mock_monitor):
    """Set up mocked MCP context."""
    ctx = MagicMock()
    ctx.request_context.lifespan_context = monitor_server.AppContext(monitor=mock_monitor)
    return ctx


@pytest.fixture()
def mocked_server(mock_context):
    with (
        patch(f"{MODULE}.mcp") as mock_mcp,
        patch(f"{MODULE}._log_tool_action") as mock_log,
    ):
        mock_mcp.get_context.return_value = mock_context
        yield mock_log


# ── Tool: whatsapp_connect ──────────────────────────────────────────


class TestConnectTool:
    async def test_returns_state_json(self, mock_monitor, mocked_server) -> None:
        state = ConnectionState(status=ConnectionStatus.qr_code_ready(QR_PAYLOAD), qr_code=QR_PAYLOAD)
        mock_monitor.connect.return_value = state

        result = json.loads(await monitor_server.whatsapp_connect())

        assert result["status"] == {"kind": "qr_code_ready"}
        assert result["qr_code"] == QR_PAYLOAD
        assert mocked_server.call_args.args[:2] == ("whatsapp_connect", "success")

    async def test_error_is_reported_as_text(self, mock_monitor, mocked_server) -> None:
        mock_monitor.connect.side_effect = AlreadyConnectedError()

        result = await monitor_server.whatsapp_connect()

        assert result == "Error connecting to WhatsApp: Already connected"
        assert mocked_server.call_args.args[:2] == ("whatsapp_connect", "error")


# ── Tools: status, disconnect, monitoring, check_login ──────────────


class TestSessionTools:
    async def test_get_status(self, mocked_server) -> None:
        result = json.loads(await monitor_server.whatsapp_get_status())
        assert result["status"] == {"kind": "disconnected"}
        assert result["health"]["monitoring_active"] is False

    async def test_disconnect(self, mock_monitor, mocked_server) -> None:
        result = await monitor_server.whatsapp_disconnect()
        assert result == "Disconnected from WhatsApp Web."
        mock_monitor.disconnect.assert_awaited_once()

    async def test_start_monitoring_not_connected(self, mock_monitor, mocked_server) -> None:
        mock_monitor.start_monitoring.side_effect = NotConnectedError()
        result = await monitor_server.whatsapp_start_monitoring()
        assert result == "Error starting monitoring: Not connected"

    async def test_start_monitoring(self, mocked_server) -> None:
        assert await monitor_server.whatsapp_start_monitoring() == "Monitoring started."

    async def test_check_login(self, mock_monitor, mocked_server) -> None:
        mock_monitor.check_login.return_value = ConnectionState(status=ConnectionStatus.monitoring())
        result = json.loads(await monitor_server.whatsapp_check_login())
        assert result["status"] == {"kind": "monitoring"}


# ── Tools: messages ─────────────────────────────────────────────────


class TestMessageTools:
    async def test_unprocessed_messages_json(self, mock_monitor, mocked_server) -> None:
        message = WhatsAppMessage.create("meeting at 3", 1000, "contact", created_at=1001)
        mock_monitor.get_unprocessed_messages.return_value = [message]

        result = json.loads(await monitor_server.whatsapp_get_unprocessed_messages(10))

        assert result[0]["id"] == message.id
        mock_monitor.get_unprocessed_messages.assert_awaited_once_with(10)

    async def test_unprocessed_limit_is_clamped(self, mock_monitor, mocked_server) -> None:
        await monitor_server.whatsapp_get_unprocessed_messages(10_000)
        mock_monitor.get_unprocessed_messages.assert_awaited_once_with(500)

    async def test_unprocessed_storage_error(self, mock_monitor, mocked_server) -> None:
        mock_monitor.get_unprocessed_messages.side_effect = DatabaseError("down")
        result = await monitor_server.whatsapp_get_unprocessed_messages()
        assert result.startswith("Error fetching messages")

    async def test_mark_processed(self, mock_monitor, mocked_server) -> None:
        result = await monitor_server.whatsapp_mark_processed("m1", True, "high")
        assert result == "Message m1 marked as processed."
        mock_monitor.mark_processed.assert_awaited_once_with("m1", True, "high")

    async def test_mark_processed_rejects_unknown_priority(self, mock_monitor, mocked_server) -> None:
        result = await monitor_server.whatsapp_mark_processed("m1", True, "whenever")
        assert result.startswith("Error: Invalid task_priority")
        mock_monitor.mark_processed.assert_not_awaited()


# ── Audit log ───────────────────────────────────────────────────────


class TestLogToolAction:
    def test_success_goes_to_actions_only(self, tmp_path: Path) -> None:
        with patch(f"{MODULE}.VAULT_PATH", str(tmp_path)):
            monitor_server._log_tool_action("whatsapp_connect", "success", "cid-1", 12)
        actions = read_logs_for_date(tmp_path / "Logs" / "actions", today_iso())
        assert actions[0]["correlation_id"] == "cid-1"
        assert actions[0]["actor"] == "whatsapp_mcp"
        assert read_logs_for_date(tmp_path / "Logs" / "errors", today_iso()) == []

    def test_error_is_mirrored_to_errors(self, tmp_path: Path) -> None:
        with patch(f"{MODULE}.VAULT_PATH", str(tmp_path)):
            monitor_server._log_tool_action("whatsapp_connect", "error", "cid-2", error="boom")
        errors = read_logs_for_date(tmp_path / "Logs" / "errors", today_iso())
        assert errors[0]["error"] == "boom"

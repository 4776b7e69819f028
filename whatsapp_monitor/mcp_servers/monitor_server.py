"""WhatsApp MCP Server: exposes the monitor's commands via Model Context Protocol.

Registers seven tools (whatsapp_connect, whatsapp_disconnect,
whatsapp_get_status, whatsapp_start_monitoring,
whatsapp_get_unprocessed_messages, whatsapp_mark_processed,
whatsapp_check_login) over stdio transport. One ``WhatsAppMonitor`` lives
for the lifetime of the server.

Usage:
    python -m whatsapp_monitor.mcp_servers.monitor_server
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from whatsapp_monitor.config import MonitorConfig
from whatsapp_monitor.monitor.errors import WhatsAppError
from whatsapp_monitor.monitor.service import WhatsAppMonitor
from whatsapp_monitor.storage import create_store
from whatsapp_monitor.utils.ids import correlation_id
from whatsapp_monitor.utils.logging_utils import log_action
from whatsapp_monitor.utils.timestamps import now_iso

# ── Configuration ───────────────────────────────────────────────────

load_dotenv(Path("config") / ".env")

VAULT_PATH = os.getenv("VAULT_PATH", "./vault")

# Logging MUST go to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

VALID_PRIORITIES = {"low", "medium", "high", "urgent"}


# ── Helpers ─────────────────────────────────────────────────────────


def _log_tool_action(
    action_type: str,
    result: str,
    cid: str,
    duration_ms: int = 0,
    parameters: dict[str, Any] | None = None,
    error: str | None = None,
) -> None:
    """Write an audit log entry to vault/Logs/actions/ (and Logs/errors/ on failure)."""
    entry: dict[str, Any] = {
        "timestamp": now_iso(),
        "correlation_id": cid,
        "actor": "whatsapp_mcp",
        "action_type": action_type,
        "target": "web.whatsapp.com",
        "result": result,
        "duration_ms": duration_ms,
        "parameters": parameters or {},
    }
    if error:
        entry["error"] = error
    try:
        log_action(Path(VAULT_PATH) / "Logs" / "actions", entry)
        if result == "error":
            log_action(Path(VAULT_PATH) / "Logs" / "errors", entry)
    except OSError:
        logger.exception("Failed to write audit log")


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


# ── Lifespan ────────────────────────────────────────────────────────


@dataclass
class AppContext:
    """Shared state injected into MCP tool handlers."""

    monitor: WhatsAppMonitor


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Create the monitor on startup; disconnect it on shutdown."""
    config = MonitorConfig.from_env(env_path=None)
    store = create_store(config)
    monitor = WhatsAppMonitor(config, store)
    logger.info(
        "WhatsApp MCP server started (store=%s, vault=%s)",
        config.store_backend,
        VAULT_PATH,
    )
    try:
        yield AppContext(monitor=monitor)
    finally:
        logger.info("WhatsApp MCP server shutting down")
        await monitor.disconnect()
        await store.close()


# ── Server ──────────────────────────────────────────────────────────

mcp = FastMCP(
    "whatsapp-monitor",
    instructions=(
        "WhatsApp Web session tools. Call whatsapp_connect first; if the status "
        "is qr_code_ready, show the qr_code to the user and poll "
        "whatsapp_check_login until the status is connected or monitoring. "
        "whatsapp_get_status never fails and never waits on other commands."
    ),
    lifespan=app_lifespan,
)


def _monitor() -> WhatsAppMonitor:
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    return app.monitor


# ── Tool: whatsapp_connect ──────────────────────────────────────────


@mcp.tool()
async def whatsapp_connect() -> str:
    """Open WhatsApp Web and detect the session.

    Returns the connection state as JSON. When the status is
    ``qr_code_ready`` the ``qr_code`` field holds a PNG data URL to scan.
    """
    monitor = _monitor()
    cid = correlation_id()
    start = time.time()
    try:
        state = await monitor.connect()
    except WhatsAppError as exc:
        _log_tool_action("whatsapp_connect", "error", cid, _elapsed_ms(start), error=str(exc))
        return f"Error connecting to WhatsApp: {exc}"

    _log_tool_action(
        "whatsapp_connect",
        "success",
        cid,
        _elapsed_ms(start),
        {"status": state.status.kind.value},
    )
    return _to_json(state.to_dict())


# ── Tool: whatsapp_disconnect ───────────────────────────────────────


@mcp.tool()
async def whatsapp_disconnect() -> str:
    """Stop monitoring and close the browser."""
    monitor = _monitor()
    cid = correlation_id()
    start = time.time()
    try:
        await monitor.disconnect()
    except WhatsAppError as exc:
        _log_tool_action("whatsapp_disconnect", "error", cid, _elapsed_ms(start), error=str(exc))
        return f"Error disconnecting: {exc}"

    _log_tool_action("whatsapp_disconnect", "success", cid, _elapsed_ms(start))
    return "Disconnected from WhatsApp Web."


# ── Tool: whatsapp_get_status ───────────────────────────────────────


@mcp.tool()
async def whatsapp_get_status() -> str:
    """Return the current connection state as JSON."""
    state = await _monitor().get_status()
    return _to_json(state.to_dict())


# ── Tool: whatsapp_start_monitoring ─────────────────────────────────


@mcp.tool()
async def whatsapp_start_monitoring() -> str:
    """Start real-time message monitoring on a connected session."""
    monitor = _monitor()
    cid = correlation_id()
    start = time.time()
    try:
        await monitor.start_monitoring()
    except WhatsAppError as exc:
        _log_tool_action(
            "whatsapp_start_monitoring", "error", cid, _elapsed_ms(start), error=str(exc)
        )
        return f"Error starting monitoring: {exc}"

    _log_tool_action("whatsapp_start_monitoring", "success", cid, _elapsed_ms(start))
    return "Monitoring started."


# ── Tool: whatsapp_get_unprocessed_messages ─────────────────────────


@mcp.tool()
async def whatsapp_get_unprocessed_messages(limit: int = 50) -> str:
    """List stored messages not yet analysed, newest first.

    Args:
        limit: Maximum number of messages (1-500, default 50).
    """
    monitor = _monitor()
    limit = max(1, min(500, limit))
    try:
        messages = await monitor.get_unprocessed_messages(limit)
    except WhatsAppError as exc:
        return f"Error fetching messages: {exc}"
    return _to_json([message.to_dict() for message in messages])


# ── Tool: whatsapp_mark_processed ───────────────────────────────────


@mcp.tool()
async def whatsapp_mark_processed(
    message_id: str,
    work_related: bool,
    task_priority: str | None = None,
) -> str:
    """Record the analysis result for a message.

    Args:
        message_id: Id returned by whatsapp_get_unprocessed_messages.
        work_related: Whether the message concerns work.
        task_priority: Optional priority: low, medium, high or urgent.
    """
    monitor = _monitor()
    cid = correlation_id()
    start = time.time()
    params = {"message_id": message_id, "work_related": work_related, "task_priority": task_priority}

    if task_priority is not None and task_priority not in VALID_PRIORITIES:
        _log_tool_action("whatsapp_mark_processed", "error", cid, parameters=params, error="invalid_priority")
        return (
            f"Error: Invalid task_priority {task_priority!r}. "
            f"Use one of: {', '.join(sorted(VALID_PRIORITIES))}"
        )

    try:
        await monitor.mark_processed(message_id, work_related, task_priority)
    except WhatsAppError as exc:
        _log_tool_action(
            "whatsapp_mark_processed", "error", cid, _elapsed_ms(start), params, str(exc)
        )
        return f"Error marking message processed: {exc}"

    _log_tool_action("whatsapp_mark_processed", "success", cid, _elapsed_ms(start), params)
    return f"Message {message_id} marked as processed."


# ── Tool: whatsapp_check_login ──────────────────────────────────────


@mcp.tool()
async def whatsapp_check_login() -> str:
    """Re-check the session after a QR scan, without reconnecting.

    Returns the connection state as JSON.
    """
    state = await _monitor().check_login()
    return _to_json(state.to_dict())


# ── Entry Point ─────────────────────────────────────────────────────


def main() -> None:
    """CLI entry point for the WhatsApp MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()

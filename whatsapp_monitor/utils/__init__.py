"""Shared utilities for the WhatsApp monitor."""

from whatsapp_monitor.utils.ids import correlation_id, message_id
from whatsapp_monitor.utils.logging_utils import log_action, read_logs_for_date
from whatsapp_monitor.utils.timestamps import now_iso, now_ts, today_iso, ts_to_iso

__all__ = [
    "correlation_id",
    "message_id",
    "log_action",
    "read_logs_for_date",
    "now_iso",
    "now_ts",
    "today_iso",
    "ts_to_iso",
]

"""Audit logging utilities for the WhatsApp monitor.

Command outcomes are written as JSON to daily files in the configured log
directory (``<vault>/Logs/actions`` and ``<vault>/Logs/errors``).
"""

import json
from pathlib import Path
from typing import Any

from whatsapp_monitor.utils.timestamps import today_iso


def log_action(log_dir: str | Path, entry: dict[str, Any]) -> None:
    """Append an entry to today's log file.

    Creates the log file if it doesn't exist. Each log file contains
    a JSON object with a "date" field and an "entries" array.

    Args:
        log_dir: Path to the log directory (e.g., vault/Logs/actions).
        entry: Dictionary containing the log entry fields.
            Required: timestamp, correlation_id, actor, action_type, target, result
            Optional: parameters, duration_ms, error

    Examples:
        >>> log_action("vault/Logs/actions", {
        ...     "timestamp": "2026-10-17T14:30:22Z",
        ...     "correlation_id": "abc-123",
        ...     "actor": "whatsapp_monitor",
        ...     "action_type": "whatsapp_connect",
        ...     "target": "web.whatsapp.com",
        ...     "result": "success"
        ... })
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    date = today_iso()
    log_file = log_path / f"{date}.json"

    if log_file.exists():
        try:
            data = json.loads(log_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            data = {"date": date, "entries": []}
    else:
        data = {"date": date, "entries": []}

    data["entries"].append(entry)

    log_file.write_text(
        json.dumps(data, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )


def read_logs_for_date(log_dir: str | Path, date: str) -> list[dict[str, Any]]:
    """Read all log entries for a specific date, oldest first.

    Args:
        log_dir: Path to the log directory.
        date: Date string in ISO format (YYYY-MM-DD).
    """
    log_file = Path(log_dir) / f"{date}.json"
    if not log_file.exists():
        return []

    try:
        data = json.loads(log_file.read_text(encoding="utf-8"))
        return data.get("entries", [])
    except (json.JSONDecodeError, KeyError):
        return []

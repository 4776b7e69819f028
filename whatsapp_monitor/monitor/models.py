"""Value types shared by the monitor and its storage collaborators."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from whatsapp_monitor.monitor.errors import ScriptError
from whatsapp_monitor.utils.ids import message_id

logger = logging.getLogger(__name__)

QR_DATA_URL_PREFIX = "data:image/"
QR_MIN_LENGTH = 100

VALID_SENDERS = {"me", "contact"}


def is_valid_qr_data_url(value: Any) -> bool:
    """Return True if ``value`` looks like a rendered QR canvas.

    Headless rendering can produce blank or zero-sized canvases whose data
    URLs are tiny, so a length floor is applied on top of the prefix check.
    """
    return (
        isinstance(value, str)
        and len(value) > QR_MIN_LENGTH
        and value.startswith(QR_DATA_URL_PREFIX)
    )


@dataclass
class WhatsAppMessage:
    """A message scanned from WhatsApp Web."""

    id: str
    chat_id: str
    sender: str
    text: str
    timestamp: int
    created_at: int
    message_type: str = "text"
    contact_name: str | None = None
    processed_by_llm: bool = False
    work_related: bool | None = None
    task_priority: str | None = None

    @classmethod
    def create(
        cls,
        text: str,
        timestamp: int,
        sender: str,
        created_at: int,
        chat_id: str = "current_chat",
        message_type: str = "text",
    ) -> WhatsAppMessage:
        """Build a message, deriving its id from (text, timestamp, sender)."""
        return cls(
            id=message_id(text, timestamp, sender),
            chat_id=chat_id,
            sender=sender,
            text=text,
            timestamp=timestamp,
            created_at=created_at,
            message_type=message_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WhatsAppMessage:
        return cls(
            id=str(data["id"]),
            chat_id=str(data.get("chat_id", "unknown")),
            sender=str(data.get("sender", "unknown")),
            text=str(data.get("text", "")),
            timestamp=int(data.get("timestamp", 0)),
            created_at=int(data.get("created_at", 0)),
            message_type=data.get("message_type") or "text",
            contact_name=data.get("contact_name"),
            processed_by_llm=bool(data.get("processed_by_llm", False)),
            work_related=data.get("work_related"),
            task_priority=data.get("task_priority"),
        )


@dataclass
class MessageGap:
    """A stretch of message history the storage side never received."""

    id: str
    gap_start: str
    gap_end: str
    recovery_attempts: int = 0
    recovered: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageGap:
        return cls(
            id=str(data["id"]),
            gap_start=str(data["gap_start"]),
            gap_end=str(data["gap_end"]),
            recovery_attempts=int(data.get("recovery_attempts", 0)),
            recovered=bool(data.get("recovered", False)),
        )


def parse_scan_result(raw: Any, created_at: int) -> list[WhatsAppMessage]:
    """Turn the scan script's return value into messages.

    Args:
        raw: Value returned by the DOM scan script.
        created_at: Ingestion time stamped on every message.

    Returns:
        Messages in the order the script returned them. Rows with missing
        or mistyped fields are skipped.

    Raises:
        ScriptError: If the result is not a list.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ScriptError(f"scan returned {type(raw).__name__}, expected list")

    messages: list[WhatsAppMessage] = []
    for row in raw:
        if not isinstance(row, dict):
            logger.debug("Skipping non-object scan row: %r", row)
            continue
        text = row.get("content")
        timestamp = row.get("timestamp")
        sender = row.get("sender")
        if not isinstance(text, str) or not text:
            logger.debug("Skipping scan row without text")
            continue
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            logger.debug("Skipping scan row with bad timestamp: %r", timestamp)
            continue
        if sender not in VALID_SENDERS:
            logger.debug("Skipping scan row with unknown sender: %r", sender)
            continue
        messages.append(
            WhatsAppMessage.create(
                text=text,
                timestamp=int(timestamp),
                sender=sender,
                created_at=created_at,
                chat_id=str(row.get("chat_id") or "current_chat"),
                message_type=str(row.get("message_type") or "text"),
            )
        )
    return messages

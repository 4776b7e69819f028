"""Local JSON-file message store.

Keeps messages and gap records in a single JSON document. Suitable for a
single monitor process; the file is rewritten after every change, and the
in-memory copy only changes once that write has succeeded.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from whatsapp_monitor.monitor.errors import DatabaseError
from whatsapp_monitor.monitor.models import MessageGap, WhatsAppMessage
from whatsapp_monitor.storage.base import MessageStore
from whatsapp_monitor.utils.ids import correlation_id
from whatsapp_monitor.utils.timestamps import now_iso

logger = logging.getLogger(__name__)


class JsonMessageStore(MessageStore):
    """File-backed store, deduplicating messages by id."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._loaded = False
        self._messages: dict[str, dict[str, Any]] = {}
        self._gaps: dict[str, dict[str, Any]] = {}

    # ── Persistence ─────────────────────────────────────────────────

    def _load(self) -> None:
        """Read the file once.

        Raises:
            DatabaseError: If the file exists but cannot be read.
        """
        if self._loaded:
            return
        if not self.path.exists():
            self._loaded = True
            return
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DatabaseError(f"cannot read {self.path}: {exc}") from exc
        try:
            data = json.loads(raw)
            self._messages = dict(data.get("messages", {}))
            self._gaps = dict(data.get("gaps", {}))
        except (ValueError, TypeError, AttributeError):
            logger.warning("Corrupted message store at %s, starting fresh", self.path)
            self._messages = {}
            self._gaps = {}
        self._loaded = True

    def _write(
        self,
        messages: dict[str, dict[str, Any]],
        gaps: dict[str, dict[str, Any]],
    ) -> None:
        """Persist ``messages`` and ``gaps``, then adopt them as the current state."""
        data = {
            "messages": messages,
            "gaps": gaps,
            "updated_at": now_iso(),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            raise DatabaseError(f"cannot write {self.path}: {exc}") from exc
        self._messages = messages
        self._gaps = gaps

    def _with_gap(self, gap_id: str, **changes: Any) -> dict[str, dict[str, Any]]:
        row = self._gaps.get(gap_id)
        if row is None:
            raise DatabaseError(f"gap {gap_id} not found")
        return {**self._gaps, gap_id: {**row, **changes}}

    # ── Messages ────────────────────────────────────────────────────

    async def store_message(self, message: WhatsAppMessage) -> None:
        async with self._lock:
            self._load()
            if message.id in self._messages:
                logger.debug("Duplicate message %s ignored", message.id)
                return
            self._write({**self._messages, message.id: message.to_dict()}, self._gaps)

    async def get_unprocessed_messages(self, limit: int | None = None) -> list[WhatsAppMessage]:
        async with self._lock:
            self._load()
            rows = [row for row in self._messages.values() if not row.get("processed_by_llm")]
        rows.sort(key=lambda row: row.get("timestamp", 0), reverse=True)
        if limit is not None:
            rows = rows[: max(limit, 0)]
        return [WhatsAppMessage.from_dict(row) for row in rows]

    async def mark_as_processed(
        self,
        message_id: str,
        work_related: bool | None,
        task_priority: str | None,
    ) -> None:
        async with self._lock:
            self._load()
            row = self._messages.get(message_id)
            if row is None:
                raise DatabaseError(f"message {message_id} not found")
            updated = {
                **row,
                "processed_by_llm": True,
                "work_related": work_related,
                "task_priority": task_priority,
            }
            self._write({**self._messages, message_id: updated}, self._gaps)

    # ── Gaps ────────────────────────────────────────────────────────

    async def add_gap(self, gap_start: str, gap_end: str) -> MessageGap:
        """Record a stretch of missing history."""
        gap = MessageGap(id=correlation_id(), gap_start=gap_start, gap_end=gap_end)
        async with self._lock:
            self._load()
            self._write(self._messages, {**self._gaps, gap.id: gap.to_dict()})
        logger.info("Recorded message gap %s (%s to %s)", gap.id, gap_start, gap_end)
        return gap

    async def get_unrecovered_gaps(self) -> list[MessageGap]:
        async with self._lock:
            self._load()
            return [
                MessageGap.from_dict(row) for row in self._gaps.values() if not row.get("recovered")
            ]

    async def mark_gap_recovery_attempted(self, gap_id: str) -> None:
        async with self._lock:
            self._load()
            attempts = int(self._gaps.get(gap_id, {}).get("recovery_attempts", 0)) + 1
            gaps = self._with_gap(gap_id, recovery_attempts=attempts, last_attempt_at=now_iso())
            self._write(self._messages, gaps)

    async def mark_gap_recovered(self, gap_id: str) -> None:
        async with self._lock:
            self._load()
            self._write(self._messages, self._with_gap(gap_id, recovered=True))

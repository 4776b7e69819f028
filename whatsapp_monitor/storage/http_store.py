"""Message store backed by the database service's HTTP API.

Endpoints (relative to ``{base_url}/api/whatsapp``):
    POST  /messages                        store a message (409 = duplicate)
    GET   /messages?unprocessed=true       unprocessed messages, newest first
    PATCH /messages/{id}/processed         record analysis result
    GET   /gaps?unrecovered=true           open gap records
    POST  /gaps/{id}/recovery-attempts     count a recovery attempt
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from whatsapp_monitor.monitor.errors import DatabaseError
from whatsapp_monitor.monitor.models import MessageGap, WhatsAppMessage
from whatsapp_monitor.storage.base import MessageStore

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0
RETRYABLE_STATUS_CODES = {429, 500, 502, 503}


class HttpMessageStore(MessageStore):
    """Async client for the database service with retry on transient errors."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        initial_backoff: float = INITIAL_BACKOFF,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.initial_backoff = initial_backoff
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying 429/5xx and network errors with backoff.

        Raises:
            DatabaseError: On a non-retryable status or when retries run out.
        """
        url = f"/api/whatsapp{path}"
        last_error = ""

        for attempt in range(MAX_RETRIES):
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning("Network error on %s %s (attempt %d): %s", method, url, attempt + 1, exc)
            else:
                if response.status_code in RETRYABLE_STATUS_CODES:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        "Retryable error %d on %s %s (attempt %d)",
                        response.status_code,
                        method,
                        url,
                        attempt + 1,
                    )
                else:
                    return response

            if attempt < MAX_RETRIES - 1:
                await asyncio.sleep(self.initial_backoff * (2**attempt))

        raise DatabaseError(f"{method} {url} failed after {MAX_RETRIES} attempts ({last_error})")

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if response.is_error:
            detail = response.text[:200]
            raise DatabaseError(f"HTTP {response.status_code} from {response.request.url.path}: {detail}")

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict[str, Any]]:
        try:
            body = response.json()
        except ValueError as exc:
            raise DatabaseError(f"invalid JSON from database service: {exc}") from exc
        rows = body.get("data", []) if isinstance(body, dict) else body
        if not isinstance(rows, list):
            raise DatabaseError("database service returned no list of rows")
        return rows

    # ── Messages ────────────────────────────────────────────────────

    async def store_message(self, message: WhatsAppMessage) -> None:
        response = await self._request("POST", "/messages", json=message.to_dict())
        if response.status_code == 409:
            logger.debug("Duplicate message %s ignored by database service", message.id)
            return
        self._check(response)

    async def get_unprocessed_messages(self, limit: int | None = None) -> list[WhatsAppMessage]:
        params: dict[str, Any] = {"unprocessed": "true"}
        if limit is not None:
            params["limit"] = limit
        response = await self._request("GET", "/messages", params=params)
        self._check(response)
        try:
            return [WhatsAppMessage.from_dict(row) for row in self._rows(response)]
        except (KeyError, TypeError, ValueError) as exc:
            raise DatabaseError(f"malformed message row: {exc}") from exc

    async def mark_as_processed(
        self,
        message_id: str,
        work_related: bool | None,
        task_priority: str | None,
    ) -> None:
        response = await self._request(
            "PATCH",
            f"/messages/{message_id}/processed",
            json={"work_related": work_related, "task_priority": task_priority},
        )
        self._check(response)

    # ── Gaps ────────────────────────────────────────────────────────

    async def get_unrecovered_gaps(self) -> list[MessageGap]:
        response = await self._request("GET", "/gaps", params={"unrecovered": "true"})
        self._check(response)
        try:
            return [MessageGap.from_dict(row) for row in self._rows(response)]
        except (KeyError, TypeError, ValueError) as exc:
            raise DatabaseError(f"malformed gap row: {exc}") from exc

    async def mark_gap_recovery_attempted(self, gap_id: str) -> None:
        response = await self._request("POST", f"/gaps/{gap_id}/recovery-attempts")
        self._check(response)

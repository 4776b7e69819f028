"""Connection state machine.

Owns the single ``ConnectionState`` record and the lock that guards it.
Every mutation is one short read-modify-write under the lock; callers do
their browser I/O before or after, never while holding it.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from whatsapp_monitor.monitor.errors import AlreadyConnectedError
from whatsapp_monitor.monitor.models import WhatsAppMessage, is_valid_qr_data_url
from whatsapp_monitor.utils.timestamps import now_ts

logger = logging.getLogger(__name__)

SCAN_FAILURE_MESSAGE = "Connection lost - too many scan failures"


class StatusKind(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR_CODE_READY = "qr_code_ready"
    CONNECTED = "connected"
    MONITORING = "monitoring"
    RECONNECTING = "reconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    """Tagged status. ``detail`` holds the QR payload or the error message."""

    kind: StatusKind
    detail: str | None = None

    def __post_init__(self) -> None:
        if self.kind is StatusKind.QR_CODE_READY:
            if not is_valid_qr_data_url(self.detail):
                raise ValueError("QrCodeReady requires a QR image data URL")
        elif self.kind is StatusKind.ERROR:
            if not self.detail:
                raise ValueError("Error status requires a message")
        elif self.detail is not None:
            raise ValueError(f"{self.kind.value} status carries no detail")

    @classmethod
    def disconnected(cls) -> ConnectionStatus:
        return cls(StatusKind.DISCONNECTED)

    @classmethod
    def connecting(cls) -> ConnectionStatus:
        return cls(StatusKind.CONNECTING)

    @classmethod
    def qr_code_ready(cls, qr_payload: str) -> ConnectionStatus:
        return cls(StatusKind.QR_CODE_READY, qr_payload)

    @classmethod
    def connected(cls) -> ConnectionStatus:
        return cls(StatusKind.CONNECTED)

    @classmethod
    def monitoring(cls) -> ConnectionStatus:
        return cls(StatusKind.MONITORING)

    @classmethod
    def reconnecting(cls) -> ConnectionStatus:
        return cls(StatusKind.RECONNECTING)

    @classmethod
    def error(cls, message: str) -> ConnectionStatus:
        return cls(StatusKind.ERROR, message)

    @property
    def is_connected(self) -> bool:
        return self.kind in (StatusKind.CONNECTED, StatusKind.MONITORING)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value}
        if self.kind is StatusKind.ERROR:
            data["message"] = self.detail
        return data


@dataclass
class HealthStatus:
    last_heartbeat: int
    consecutive_failures: int = 0
    last_recovery_attempt: int | None = None
    gap_count: int = 0
    monitoring_active: bool = False


@dataclass
class ConnectionState:
    status: ConnectionStatus = field(default_factory=ConnectionStatus.disconnected)
    qr_code: str | None = None
    connected_since: int | None = None
    last_message_timestamp: int | None = None
    message_count: int = 0
    active_chats: list[str] = field(default_factory=list)
    health: HealthStatus = field(default_factory=lambda: HealthStatus(last_heartbeat=now_ts()))

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view; the QR payload appears once, under ``qr_code``."""
        return {
            "status": self.status.to_dict(),
            "qr_code": self.qr_code,
            "connected_since": self.connected_since,
            "last_message_timestamp": self.last_message_timestamp,
            "message_count": self.message_count,
            "active_chats": list(self.active_chats),
            "health": {
                "last_heartbeat": self.health.last_heartbeat,
                "consecutive_failures": self.health.consecutive_failures,
                "last_recovery_attempt": self.health.last_recovery_attempt,
                "gap_count": self.health.gap_count,
                "monitoring_active": self.health.monitoring_active,
            },
        }


class ConnectionStateMachine:
    """Guards the shared ``ConnectionState`` and applies status transitions."""

    def __init__(self, clock: Callable[[], int] = now_ts) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = ConnectionState(health=HealthStatus(last_heartbeat=clock()))

    # ── Reads ───────────────────────────────────────────────────────

    async def snapshot(self) -> ConnectionState:
        async with self._lock:
            return copy.deepcopy(self._state)

    async def status(self) -> ConnectionStatus:
        async with self._lock:
            return self._state.status

    async def is_monitoring_active(self) -> bool:
        async with self._lock:
            return self._state.health.monitoring_active

    # ── Transitions ─────────────────────────────────────────────────

    def _apply(self, status: ConnectionStatus) -> None:
        previous = self._state.status
        self._state.status = status

        if status.is_connected:
            if self._state.connected_since is None:
                self._state.connected_since = self._clock()
            self._state.qr_code = None
        else:
            self._state.connected_since = None

        if status.kind is StatusKind.QR_CODE_READY:
            self._state.qr_code = status.detail
        elif status.kind is StatusKind.DISCONNECTED:
            self._state.qr_code = None

        if previous.kind is not status.kind:
            logger.info("Status %s -> %s", previous.kind.value, status.kind.value)

    async def set_status(self, status: ConnectionStatus) -> None:
        async with self._lock:
            self._apply(status)

    async def begin_connect(self) -> None:
        """Move to ``Connecting``.

        Raises:
            AlreadyConnectedError: If the session is Connected or Monitoring.
        """
        async with self._lock:
            if self._state.status.is_connected:
                raise AlreadyConnectedError()
            if self._state.status.kind is StatusKind.DISCONNECTED:
                self._state.message_count = 0
                self._state.last_message_timestamp = None
                self._state.active_chats = []
                self._state.health = HealthStatus(last_heartbeat=self._clock())
            self._apply(ConnectionStatus.connecting())

    async def set_qr_code(self, qr_payload: str) -> bool:
        """Enter ``QrCodeReady``. Returns True if the payload changed."""
        async with self._lock:
            changed = self._state.qr_code != qr_payload
            self._apply(ConnectionStatus.qr_code_ready(qr_payload))
            return changed

    async def set_error(self, message: str) -> None:
        async with self._lock:
            self._apply(ConnectionStatus.error(message))

    async def enter_monitoring(self) -> None:
        async with self._lock:
            self._state.health.monitoring_active = True
            self._state.health.consecutive_failures = 0
            self._state.health.last_heartbeat = self._clock()
            self._apply(ConnectionStatus.monitoring())

    async def stop_monitoring(self) -> None:
        async with self._lock:
            self._state.health.monitoring_active = False

    async def mark_disconnected(self) -> None:
        async with self._lock:
            self._state.health.monitoring_active = False
            self._apply(ConnectionStatus.disconnected())

    # ── Scan loop updates ───────────────────────────────────────────

    async def record_scan_success(self) -> None:
        """A scan completed: the failure streak ends and the heartbeat moves."""
        async with self._lock:
            self._state.health.consecutive_failures = 0
            self._state.health.last_heartbeat = self._clock()

    async def record_message(self, message: WhatsAppMessage) -> None:
        async with self._lock:
            self._state.last_message_timestamp = message.timestamp
            self._state.message_count += 1
            self._state.health.last_heartbeat = self._clock()
            if message.chat_id not in self._state.active_chats:
                self._state.active_chats.append(message.chat_id)

    async def record_scan_failure(self, max_failures: int) -> bool:
        """Count a failed scan.

        Returns:
            True if the streak exceeded ``max_failures`` and the connection
            was marked as lost.
        """
        async with self._lock:
            if not self._state.health.monitoring_active:
                return False
            self._state.health.consecutive_failures += 1
            failures = self._state.health.consecutive_failures
            logger.warning("Consecutive scan failures: %d/%d", failures, max_failures)
            if failures > max_failures:
                self._state.health.monitoring_active = False
                self._apply(ConnectionStatus.error(SCAN_FAILURE_MESSAGE))
                return True
            return False

    # ── Supervisor updates ──────────────────────────────────────────

    async def check_stall(self, threshold_seconds: int) -> bool:
        """Flag a stalled connection.

        Returns:
            True if the heartbeat is older than ``threshold_seconds``; the
            status is then ``Reconnecting`` and the attempt is stamped.
        """
        async with self._lock:
            if not self._state.health.monitoring_active:
                return False
            now = self._clock()
            if now - self._state.health.last_heartbeat <= threshold_seconds:
                return False
            self._apply(ConnectionStatus.reconnecting())
            self._state.health.last_recovery_attempt = now
            return True

    async def mark_recovered(self) -> None:
        async with self._lock:
            if self._state.status.kind is not StatusKind.RECONNECTING:
                return
            self._state.health.last_heartbeat = self._clock()
            self._state.health.consecutive_failures = 0
            self._apply(ConnectionStatus.monitoring())

    async def set_gap_count(self, count: int) -> None:
        async with self._lock:
            self._state.health.gap_count = count

"""Health and gap supervision loops, plus the pluggable recovery strategies."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum

from whatsapp_monitor.browser.driver import BrowserDriver
from whatsapp_monitor.monitor.base_loop import PeriodicLoop
from whatsapp_monitor.monitor.detector import SessionKind, SessionStateDetector
from whatsapp_monitor.monitor.errors import DatabaseError, WhatsAppError
from whatsapp_monitor.monitor.models import MessageGap
from whatsapp_monitor.monitor.state import ConnectionState, ConnectionStateMachine

logger = logging.getLogger(__name__)


class RecoveryOutcome(str, Enum):
    RECOVERED = "recovered"
    DEFERRED = "deferred"
    FAILED = "failed"


class RecoveryStrategy(ABC):
    """What to do once the health check finds a stalled connection."""

    @abstractmethod
    async def attempt_recovery(self, state: ConnectionState) -> RecoveryOutcome:
        """Try to revive the session described by ``state``."""


class NoopRecovery(RecoveryStrategy):
    """Leaves the session in ``Reconnecting`` for the host to handle."""

    async def attempt_recovery(self, state: ConnectionState) -> RecoveryOutcome:
        logger.info("Connection stalled; recovery deferred to the host")
        return RecoveryOutcome.DEFERRED


class PageReloadRecovery(RecoveryStrategy):
    """Reloads WhatsApp Web and re-validates the session."""

    def __init__(
        self,
        driver: BrowserDriver,
        detector: SessionStateDetector,
        settle_seconds: float = 3.0,
    ):
        self.driver = driver
        self.detector = detector
        self.settle_seconds = settle_seconds

    async def attempt_recovery(self, state: ConnectionState) -> RecoveryOutcome:
        logger.info("Reloading page to recover stalled session")
        try:
            await self.driver.reload()
            if self.settle_seconds > 0:
                await asyncio.sleep(self.settle_seconds)
            classification = await self.detector.classify(self.driver)
        except WhatsAppError as exc:
            logger.warning("Page reload recovery failed: %s", exc)
            return RecoveryOutcome.FAILED

        if classification.kind is SessionKind.LOGGED_IN:
            return RecoveryOutcome.RECOVERED
        logger.warning("Session not valid after reload (%s)", classification.kind.value)
        return RecoveryOutcome.FAILED


class HealthCheckLoop(PeriodicLoop):
    """Flags the connection as stalled when the heartbeat goes quiet."""

    def __init__(
        self,
        state: ConnectionStateMachine,
        recovery: RecoveryStrategy,
        interval: float = 30.0,
        stall_seconds: int = 120,
    ):
        super().__init__(state, interval)
        self.recovery = recovery
        self.stall_seconds = stall_seconds

    async def tick(self) -> bool:
        if not await self.state.check_stall(self.stall_seconds):
            return True

        self.logger.warning("No heartbeat for over %ds, connection considered lost", self.stall_seconds)
        outcome = await self.recovery.attempt_recovery(await self.state.snapshot())
        self.logger.info("Recovery outcome: %s", outcome.value)
        if outcome is RecoveryOutcome.RECOVERED:
            await self.state.mark_recovered()
        return True


class GapDetectionLoop(PeriodicLoop):
    """Counts unrecovered gaps in stored history and records recovery attempts."""

    def __init__(self, store, state: ConnectionStateMachine, interval: float = 60.0):
        super().__init__(state, interval)
        self.store = store

    async def backfill(self, gap: MessageGap) -> None:
        """Re-read history for ``gap``. Not implemented by default."""

    async def tick(self) -> bool:
        try:
            gaps = await self.store.get_unrecovered_gaps()
        except DatabaseError as exc:
            self.logger.error("Failed to get unrecovered gaps: %s", exc)
            return True

        await self.state.set_gap_count(len(gaps))
        for gap in gaps:
            self.logger.info("Attempting to recover gap: %s to %s", gap.gap_start, gap.gap_end)
            try:
                await self.backfill(gap)
                await self.store.mark_gap_recovery_attempted(gap.id)
            except DatabaseError as exc:
                self.logger.error("Failed to update gap %s: %s", gap.id, exc)
        return True

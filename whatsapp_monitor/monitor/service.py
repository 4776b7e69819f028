"""WhatsApp monitor service: the command surface over one browser session.

Commands (``connect``, ``disconnect``, ``start_monitoring``, ``check_login``,
``wait_for_login``) are serialised by an operation lock. Connection state
lives in a ``ConnectionStateMachine`` whose own lock is only held for field
updates, so ``get_status`` answers immediately even while a command is busy
in the browser.

Usage:
    monitor = WhatsAppMonitor(MonitorConfig.from_env(), JsonMessageStore(path))
    state = await monitor.connect()
    ...
    await monitor.disconnect()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from whatsapp_monitor.browser.driver import BrowserDriver, PlaywrightDriver
from whatsapp_monitor.config import MonitorConfig
from whatsapp_monitor.monitor.base_loop import PeriodicLoop
from whatsapp_monitor.monitor.detector import Classification, SessionKind, SessionStateDetector
from whatsapp_monitor.monitor.errors import (
    ElementNotFoundError,
    NavigationError,
    NotConnectedError,
    QrCodeGenerationError,
    WhatsAppError,
    WhatsAppTimeoutError,
)
from whatsapp_monitor.monitor.models import WhatsAppMessage
from whatsapp_monitor.monitor.scanner import MessageScanLoop
from whatsapp_monitor.monitor.state import (
    ConnectionState,
    ConnectionStateMachine,
    ConnectionStatus,
    StatusKind,
)
from whatsapp_monitor.monitor.supervisor import (
    GapDetectionLoop,
    HealthCheckLoop,
    NoopRecovery,
    PageReloadRecovery,
    RecoveryStrategy,
)
from whatsapp_monitor.storage.base import MessageStore
from whatsapp_monitor.utils.timestamps import now_ts

logger = logging.getLogger(__name__)

# Upper bound on how long disconnect() waits for the loops to notice the stop flag
LOOP_SHUTDOWN_TIMEOUT = 5.0

MONITORABLE = (StatusKind.CONNECTED, StatusKind.MONITORING, StatusKind.RECONNECTING)


class WhatsAppMonitor:
    """Owns the browser session, the connection state and the background loops."""

    def __init__(
        self,
        config: MonitorConfig,
        store: MessageStore,
        driver_factory: Callable[[], BrowserDriver] | None = None,
        detector: SessionStateDetector | None = None,
        recovery: RecoveryStrategy | None = None,
        clock: Callable[[], int] = now_ts,
    ):
        self.config = config
        self.store = store
        self.driver_factory = driver_factory or self._default_driver
        self.detector = detector or SessionStateDetector(
            config.selectors, validation_delay=config.validation_delay
        )
        self.recovery = recovery
        self.clock = clock
        self.state = ConnectionStateMachine(clock=clock)
        self.driver: BrowserDriver | None = None
        self._op_lock = asyncio.Lock()
        self._loops: list[PeriodicLoop] = []
        self._tasks: list[asyncio.Task] = []

    def _default_driver(self) -> BrowserDriver:
        return PlaywrightDriver(
            profile_path=self.config.profile_path,
            headless=self.config.headless,
            viewport=self.config.viewport,
            launch_timeout=self.config.launch_timeout,
            navigation_timeout=self.config.navigation_timeout,
        )

    # ── Commands ────────────────────────────────────────────────────

    async def connect(self) -> ConnectionState:
        """Open WhatsApp Web and classify the session.

        Returns:
            A fresh state snapshot: ``QrCodeReady`` with the QR payload, or
            ``Connected``/``Monitoring`` for a restored session.

        Raises:
            AlreadyConnectedError: If the session is already Connected or Monitoring.
            BrowserInitError: If the browser fails to start.
            NavigationError: If WhatsApp Web does not load.
            ElementNotFoundError: If the page shows neither a session nor a QR code.
        """
        async with self._op_lock:
            await self.state.begin_connect()
            await self._teardown()

            logger.info("Connecting to WhatsApp Web...")
            self.driver = self.driver_factory()
            await self.driver.launch()
            await self.driver.navigate(self.config.url)
            try:
                await self.driver.wait_for(
                    self.config.selectors.page_ready, self.config.page_ready_timeout
                )
            except ElementNotFoundError as exc:
                raise NavigationError(f"Page load timeout ({exc})") from exc
            if self.config.settle_seconds > 0:
                await asyncio.sleep(self.config.settle_seconds)

            classification = await self.detector.classify(self.driver)
            if classification.kind is SessionKind.LOGGED_IN:
                logger.info("Restored an existing WhatsApp session")
                await self.state.set_status(ConnectionStatus.connected())
                if self.config.auto_start_monitoring:
                    await self._start_monitoring()
            elif classification.kind is SessionKind.QR_PENDING:
                logger.info("QR code ready, waiting for it to be scanned")
                await self._publish_qr(classification.qr_code)
            else:
                await self._save_debug_screenshot("qr_not_found")
                raise ElementNotFoundError("QR code not found")

        return await self.state.snapshot()

    async def disconnect(self) -> None:
        """Stop the loops, release the browser and return to ``Disconnected``."""
        async with self._op_lock:
            await self._teardown()
            await self.state.mark_disconnected()
        logger.info("Disconnected from WhatsApp Web")

    async def get_status(self) -> ConnectionState:
        """Current state snapshot. Never blocks on a running command."""
        return await self.state.snapshot()

    async def start_monitoring(self) -> None:
        """Start (or resume) the scan, health and gap loops.

        Raises:
            NotConnectedError: Without a browser or a connected session.
        """
        async with self._op_lock:
            await self._start_monitoring()

    async def get_unprocessed_messages(self, limit: int | None = None) -> list[WhatsAppMessage]:
        return await self.store.get_unprocessed_messages(limit)

    async def mark_processed(
        self,
        message_id: str,
        work_related: bool | None,
        task_priority: str | None = None,
    ) -> None:
        await self.store.mark_as_processed(message_id, work_related, task_priority)

    async def check_login(self) -> ConnectionState:
        """Re-run session detection on the open page without reconnecting.

        A validated session moves to ``Connected`` and starts monitoring when
        ``auto_start_monitoring`` is set; from ``Reconnecting`` it always
        resumes monitoring. A rotated QR code replaces the published one.
        Detection errors are logged, not raised: the returned snapshot is the
        answer.
        """
        async with self._op_lock:
            await self._check_login()
        return await self.state.snapshot()

    async def wait_for_login(self, timeout: float = 120.0, poll_interval: float = 2.0) -> ConnectionState:
        """Poll ``check_login`` until the session is connected.

        Raises:
            NotConnectedError: If no browser is open.
            WhatsAppTimeoutError: If the QR code is not scanned within ``timeout``.
        """
        if self.driver is None:
            raise NotConnectedError()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            await asyncio.sleep(poll_interval)
            state = await self.check_login()
            if state.status.is_connected:
                logger.info("Successfully connected to WhatsApp Web!")
                return state
            if state.status.kind in (StatusKind.DISCONNECTED, StatusKind.ERROR):
                break
        raise WhatsAppTimeoutError()

    # ── Internals (caller holds the operation lock) ─────────────────

    async def _check_login(self) -> None:
        if self.driver is None:
            logger.debug("check_login without a browser, nothing to do")
            return
        status = await self.state.status()
        if status.kind is StatusKind.MONITORING:
            return

        try:
            if status.kind is StatusKind.QR_CODE_READY:
                classification = await self._classify_quick()
            else:
                classification = await self.detector.classify(self.driver)
        except WhatsAppError as exc:
            logger.warning("Login check error: %s", exc)
            return

        if classification.kind is SessionKind.LOGGED_IN:
            logger.info("Session validated")
            if status.kind is not StatusKind.RECONNECTING:
                await self.state.set_status(ConnectionStatus.connected())
                if not self.config.auto_start_monitoring:
                    return
            try:
                await self._start_monitoring()
            except WhatsAppError as exc:
                logger.error("Failed to start monitoring: %s", exc)
                await self.state.set_error(f"Failed to start monitoring: {exc}")
        elif classification.kind is SessionKind.QR_PENDING and status.kind in (
            StatusKind.CONNECTING,
            StatusKind.QR_CODE_READY,
        ):
            await self._publish_qr(classification.qr_code)

    async def _classify_quick(self) -> Classification:
        """Classify without the validation delay, for polling the QR page."""
        if await self.detector.is_logged_in(self.driver) and await self.detector.validate_active_session(
            self.driver
        ):
            return Classification.logged_in()
        qr_code = await self.detector.extract_qr_code(self.driver)
        if qr_code is not None:
            return Classification.qr_pending(qr_code)
        return Classification.indeterminate()

    async def _publish_qr(self, qr_code: str | None) -> None:
        try:
            changed = await self.state.set_qr_code(qr_code)
        except ValueError as exc:
            raise QrCodeGenerationError(str(exc)) from exc
        if changed:
            logger.info("QR code published (%d chars)", len(qr_code))

    async def _start_monitoring(self) -> None:
        status = await self.state.status()
        if self.driver is None or status.kind not in MONITORABLE:
            logger.error("Cannot start monitoring: no active session (%s)", status.kind.value)
            raise NotConnectedError()

        if self._tasks and all(not task.done() for task in self._tasks):
            await self.state.enter_monitoring()
            return
        # Some loop has ended; stop the rest and start a fresh set
        await self._stop_loops()

        recovery = self.recovery
        if recovery is None:
            recovery = (
                PageReloadRecovery(self.driver, self.detector, self.config.settle_seconds)
                if self.config.auto_recover
                else NoopRecovery()
            )
        self._loops = [
            MessageScanLoop(
                self.driver,
                self.store,
                self.state,
                self.config.selectors,
                interval=self.config.scan_interval,
                max_failures=self.config.max_scan_failures,
                clock=self.clock,
            ),
            HealthCheckLoop(
                self.state,
                recovery,
                interval=self.config.health_interval,
                stall_seconds=self.config.stall_seconds,
            ),
            GapDetectionLoop(self.store, self.state, interval=self.config.gap_interval),
        ]

        await self.state.enter_monitoring()
        self._tasks = [
            asyncio.create_task(loop.run(), name=f"whatsapp-{loop.__class__.__name__}")
            for loop in self._loops
        ]
        logger.info("Real-time message monitoring started")

    async def _teardown(self) -> None:
        """Stop background loops and close the browser, if any."""
        await self._stop_loops()

        if self.driver is not None:
            driver, self.driver = self.driver, None
            await driver.close()

    async def _stop_loops(self) -> None:
        await self.state.stop_monitoring()
        for loop in self._loops:
            loop.stop()

        pending = [task for task in self._tasks if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=LOOP_SHUTDOWN_TIMEOUT)
            for task in still_running:
                logger.warning("Cancelling %s after shutdown timeout", task.get_name())
                task.cancel()
        self._loops = []
        self._tasks = []

    async def _save_debug_screenshot(self, label: str) -> None:
        if self.driver is None:
            return
        path = Path(self.config.errors_log_dir) / f"whatsapp_{label}_{self.clock()}.png"
        try:
            await self.driver.screenshot(path)
        except WhatsAppError as exc:
            logger.warning("Could not save debug screenshot: %s", exc)
            return
        logger.info("Saved debug screenshot to %s", path)

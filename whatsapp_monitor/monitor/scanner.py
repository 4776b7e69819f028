"""Message scan loop: polls the open conversation for new messages."""

from __future__ import annotations

from collections.abc import Callable

from whatsapp_monitor.browser.driver import BrowserDriver
from whatsapp_monitor.config import SelectorConfig
from whatsapp_monitor.monitor.base_loop import PeriodicLoop
from whatsapp_monitor.monitor.errors import DatabaseError, WhatsAppError
from whatsapp_monitor.monitor.models import WhatsAppMessage, parse_scan_result
from whatsapp_monitor.monitor.state import ConnectionStateMachine
from whatsapp_monitor.utils.timestamps import now_ts

# Every 240 ticks, i.e. every two minutes at the default 500ms interval
HEARTBEAT_LOG_EVERY = 240

SCAN_MESSAGES_JS = """
(opts) => {
    const messages = [];
    const titleEl = document.querySelector(opts.chatTitle);
    const chatId = titleEl ? titleEl.getAttribute('title') : null;
    const elements = document.querySelectorAll(opts.container);

    elements.forEach((msgEl) => {
        try {
            const timeEl = msgEl.querySelector(opts.time);
            if (!timeEl) return;
            const msgTime = new Date(timeEl.getAttribute('title')).getTime() / 1000;
            if (!(msgTime > opts.since)) return;

            const textEl = msgEl.querySelector(opts.text);
            const content = textEl ? textEl.innerText : '';
            if (!content) return;

            const outgoing = msgEl.classList.contains('message-out') ||
                !!msgEl.querySelector(opts.outgoing);

            messages.push({
                content: content,
                timestamp: Math.floor(msgTime),
                sender: outgoing ? 'me' : 'contact',
                chat_id: chatId || 'current_chat',
                message_type: 'text',
            });
        } catch (e) {
            // one malformed bubble must not hide the rest
        }
    });
    return messages;
}
"""


class MessageScanLoop(PeriodicLoop):
    """Scans for messages newer than a watermark and forwards them to storage.

    The watermark starts at the loop's creation time, so history already on
    screen when monitoring begins is not re-ingested. It moves only forward
    and only on a successful store.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        store,
        state: ConnectionStateMachine,
        selectors: SelectorConfig,
        interval: float = 0.5,
        max_failures: int = 5,
        clock: Callable[[], int] = now_ts,
    ):
        super().__init__(state, interval)
        self.driver = driver
        self.store = store
        self.selectors = selectors
        self.max_failures = max_failures
        self.clock = clock
        self.watermark = clock()
        self.total_messages = 0

    async def scan(self) -> list[WhatsAppMessage]:
        """Run the DOM scan once.

        Raises:
            ScriptError: If the script fails or returns something other than a list.
        """
        raw = await self.driver.evaluate(
            SCAN_MESSAGES_JS,
            {
                "since": self.watermark,
                "container": self.selectors.message_container,
                "time": self.selectors.message_time,
                "text": self.selectors.message_text,
                "outgoing": self.selectors.message_outgoing,
                "chatTitle": self.selectors.chat_title,
            },
        )
        return parse_scan_result(raw, created_at=self.clock())

    async def tick(self) -> bool:
        if self.iterations % HEARTBEAT_LOG_EVERY == 0:
            self.logger.info(
                "Monitoring heartbeat - iteration %d, total messages: %d",
                self.iterations,
                self.total_messages,
            )

        try:
            messages = await self.scan()
        except WhatsAppError as exc:
            self.logger.error("Error scanning for messages (iteration %d): %s", self.iterations, exc)
            if await self.state.record_scan_failure(self.max_failures):
                self.logger.error("Too many consecutive scan failures, marking connection as lost")
                return False
            return True

        await self.state.record_scan_success()
        if not messages:
            return True

        self.logger.info("Found %d new messages", len(messages))
        for message in messages:
            try:
                await self.store.store_message(message)
            except DatabaseError as exc:
                self.logger.error("Failed to save message %s: %s", message.id, exc)
                continue
            self.watermark = max(self.watermark, message.created_at)
            self.total_messages += 1
            await self.state.record_message(message)
            self.logger.debug("Saved message %s from %s", message.id, message.sender)
        return True

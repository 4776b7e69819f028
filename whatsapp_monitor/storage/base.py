"""Abstract message storage collaborator."""

from abc import ABC, abstractmethod

from whatsapp_monitor.monitor.models import MessageGap, WhatsAppMessage


class MessageStore(ABC):
    """Where scanned messages go and where gap records live.

    Implementations raise ``DatabaseError`` on failure. ``store_message`` must
    be idempotent by message id: the scan loop delivers at least once.
    """

    @abstractmethod
    async def store_message(self, message: WhatsAppMessage) -> None:
        """Persist ``message``; a repeated id is ignored."""

    @abstractmethod
    async def get_unprocessed_messages(self, limit: int | None = None) -> list[WhatsAppMessage]:
        """Return messages not yet handled by the analysis service, newest first."""

    @abstractmethod
    async def mark_as_processed(
        self,
        message_id: str,
        work_related: bool | None,
        task_priority: str | None,
    ) -> None:
        """Record the analysis result for ``message_id``."""

    @abstractmethod
    async def get_unrecovered_gaps(self) -> list[MessageGap]:
        """Return gaps whose history has not been recovered."""

    @abstractmethod
    async def mark_gap_recovery_attempted(self, gap_id: str) -> None:
        """Count a recovery attempt against ``gap_id``."""

    async def close(self) -> None:
        """Release any held resources."""

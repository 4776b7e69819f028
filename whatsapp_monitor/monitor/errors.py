"""Exception hierarchy for the WhatsApp monitor."""

from __future__ import annotations


class WhatsAppError(Exception):
    """Base class for all monitor errors."""


class BrowserInitError(WhatsAppError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Browser initialization failed: {detail}")


class NavigationError(WhatsAppError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Navigation failed: {detail}")


class ElementNotFoundError(WhatsAppError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Element not found: {detail}")


class WhatsAppTimeoutError(WhatsAppError):
    def __init__(self, detail: str = "Connection timeout") -> None:
        super().__init__(detail)


class QrCodeGenerationError(WhatsAppError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"QR code generation failed: {detail}")


class ScriptError(WhatsAppError):
    """Page script raised, or returned a value of the wrong shape."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Script evaluation failed: {detail}")


class DatabaseError(WhatsAppError):
    """The storage collaborator rejected or failed an operation."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Database error: {detail}")


class AlreadyConnectedError(WhatsAppError):
    def __init__(self) -> None:
        super().__init__("Already connected")


class NotConnectedError(WhatsAppError):
    def __init__(self) -> None:
        super().__init__("Not connected")

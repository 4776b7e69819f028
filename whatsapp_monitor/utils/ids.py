"""Identifier utilities: correlation ids and stable message ids."""

import hashlib
import uuid


def correlation_id() -> str:
    """Generate a new UUID v4 correlation ID.

    Correlation IDs link a command invocation to its audit log entry.

    Examples:
        >>> len(correlation_id())
        36
    """
    return str(uuid.uuid4())


def message_id(text: str, timestamp: int, sender: str) -> str:
    """Derive a message id from its content, timestamp and sender.

    The result is a pure function of its inputs, so scanning the same DOM
    region twice yields the same id and the store can drop duplicates.

    Args:
        text: Message body as rendered on the page.
        timestamp: Message time in Unix seconds.
        sender: ``"me"`` or ``"contact"``.

    Returns:
        32-character lowercase hex digest.

    Examples:
        >>> message_id("hi", 1000, "me") == message_id("hi", 1000, "me")
        True
    """
    # Unit separator keeps ("ab", 1) and ("a", "b1") apart
    payload = f"{text}\x1f{timestamp}\x1f{sender}".encode()
    return hashlib.sha256(payload).hexdigest()[:32]

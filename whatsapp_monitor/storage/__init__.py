"""Storage collaborators for scanned messages and gap records."""

from whatsapp_monitor.config import MonitorConfig
from whatsapp_monitor.storage.base import MessageStore
from whatsapp_monitor.storage.http_store import HttpMessageStore
from whatsapp_monitor.storage.json_store import JsonMessageStore


def create_store(config: MonitorConfig) -> MessageStore:
    """Build the store selected by ``config.store_backend`` (``json`` or ``http``)."""
    if config.store_backend == "http":
        return HttpMessageStore(config.database_service_url)
    if config.store_backend == "json":
        return JsonMessageStore(config.store_path)
    raise ValueError(f"Unknown store backend: {config.store_backend!r}")


__all__ = ["MessageStore", "HttpMessageStore", "JsonMessageStore", "create_store"]

"""WhatsApp Web session monitor.

Drives a headless browser against WhatsApp Web, detects whether the session
is logged in or waiting for a QR scan, and keeps a polled connection alive
with health tracking, gap detection and recovery hooks.
"""

__version__ = "0.1.0"

"""Command-line entry point for the WhatsApp monitor.

Usage:
    python -m whatsapp_monitor.monitor.cli            # monitor until interrupted
    python -m whatsapp_monitor.monitor.cli --setup    # headed browser, scan the QR code
    python -m whatsapp_monitor.monitor.cli --once     # connect, report status, disconnect
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from whatsapp_monitor.config import MonitorConfig
from whatsapp_monitor.monitor.errors import WhatsAppError
from whatsapp_monitor.monitor.service import WhatsAppMonitor
from whatsapp_monitor.monitor.state import StatusKind
from whatsapp_monitor.storage import create_store
from whatsapp_monitor.utils.timestamps import ts_to_iso

logger = logging.getLogger(__name__)

LOGIN_TIMEOUT = 120.0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="WhatsApp Monitor - session and message monitoring for WhatsApp Web"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Connect, print the connection status as JSON and exit",
    )
    parser.add_argument(
        "--setup",
        action="store_true",
        help="First-time setup: open headed browser for QR code scan",
    )
    return parser.parse_args(argv)


async def run_setup(monitor: WhatsAppMonitor) -> bool:
    """Link the browser profile to a phone. Returns True once logged in."""
    try:
        state = await monitor.connect()
        if state.status.kind is StatusKind.QR_CODE_READY:
            logger.info("Scan the QR code in the browser window (timeout: %ds)", LOGIN_TIMEOUT)
            await monitor.wait_for_login(timeout=LOGIN_TIMEOUT)
        return True
    except WhatsAppError as exc:
        logger.error("Setup failed: %s", exc)
        return False
    finally:
        await monitor.disconnect()
        await monitor.store.close()


async def run_once(monitor: WhatsAppMonitor) -> dict:
    """Connect, snapshot the state and disconnect."""
    try:
        state = await monitor.connect()
        return state.to_dict()
    finally:
        await monitor.disconnect()
        await monitor.store.close()


async def run_forever(monitor: WhatsAppMonitor, poll_seconds: float) -> None:
    """Monitor until interrupted or until the connection is lost."""
    try:
        state = await monitor.connect()
        if state.status.kind is StatusKind.QR_CODE_READY:
            logger.info("Session not linked, waiting for QR scan (run with --setup to scan headed)")
            state = await monitor.wait_for_login(timeout=LOGIN_TIMEOUT)
        if state.status.kind is StatusKind.CONNECTED:
            await monitor.start_monitoring()
            state = await monitor.get_status()
        logger.info(
            "Session %s since %s", state.status.kind.value, ts_to_iso(state.connected_since)
        )
        while True:
            state = await monitor.get_status()
            if state.status.kind in (StatusKind.ERROR, StatusKind.DISCONNECTED):
                logger.error("Monitoring ended: %s", state.status.to_dict())
                return
            await asyncio.sleep(poll_seconds)
    finally:
        await monitor.disconnect()
        await monitor.store.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the WhatsApp monitor."""
    args = _parse_args(argv)
    config = MonitorConfig.from_env()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    if args.setup:
        config.headless = False
        config.auto_start_monitoring = False

    monitor = WhatsAppMonitor(config, create_store(config))

    if args.setup:
        logger.info("Starting WhatsApp Web setup...")
        if asyncio.run(run_setup(monitor)):
            logger.info("Setup complete! You can now run the monitor normally.")
        else:
            sys.exit(1)
        return

    if args.once:
        try:
            status = asyncio.run(run_once(monitor))
        except WhatsAppError as exc:
            logger.error("Connect failed: %s", exc)
            sys.exit(1)
        print(json.dumps(status, indent=2))
        return

    logger.info(
        "Starting WhatsApp monitor (scan interval: %.1fs, headless: %s, store: %s)",
        config.scan_interval,
        config.headless,
        config.store_backend,
    )
    try:
        asyncio.run(run_forever(monitor, config.health_interval))
    except WhatsAppError as exc:
        logger.error("Monitor stopped: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()

"""Base class for the monitor's background loops."""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod

from whatsapp_monitor.monitor.state import ConnectionStateMachine


class PeriodicLoop(ABC):
    """Runs ``tick()`` every ``interval`` seconds while monitoring is active.

    The ``monitoring_active`` flag in the shared state is the only
    cancellation signal. ``stop()`` merely wakes a sleeping loop early so it
    re-reads the flag.

    Subclasses must implement:
        - tick() -> False to end the loop, True to keep going
    """

    def __init__(self, state: ConnectionStateMachine, interval: float):
        self.state = state
        self.interval = interval
        self.iterations = 0
        self.logger = logging.getLogger(self.__class__.__name__)
        self._wake = asyncio.Event()

    @abstractmethod
    async def tick(self) -> bool:
        """Run one iteration."""

    def stop(self) -> None:
        self._wake.set()

    async def _sleep(self) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=self.interval)

    async def run(self) -> None:
        """Main polling loop."""
        self.logger.info("Starting %s (interval: %.1fs)", self.__class__.__name__, self.interval)
        while await self.state.is_monitoring_active():
            self.iterations += 1
            try:
                if not await self.tick():
                    break
            except Exception:
                self.logger.exception("Error in %s", self.__class__.__name__)
            await self._sleep()
        self.logger.info(
            "%s stopped after %d iterations", self.__class__.__name__, self.iterations
        )

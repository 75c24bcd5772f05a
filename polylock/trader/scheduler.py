"""
Fixed-cadence tick driver.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional

from ..utils.logger import get_logger

logger = get_logger("scheduler")


class TickScheduler:
    """
    Runs one unit of work every `interval` seconds until shutdown.

    The wait between ticks is interval minus the time the tick took. An
    exception in one tick is logged and the next tick still runs.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[object]],
        shutdown_event: Optional[asyncio.Event] = None,
    ):
        self.name = name
        self.interval = interval
        self.tick = tick
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.tick_count = 0
        self.error_count = 0

    async def run(self) -> None:
        logger.info(f"{self.name} loop started", extra={"interval": self.interval})

        while not self.shutdown_event.is_set():
            started = time.monotonic()
            try:
                await self.tick()
            except Exception as e:
                self.error_count += 1
                logger.error(f"{self.name} tick error: {e}", exc_info=True)
            self.tick_count += 1

            delay = max(0.0, self.interval - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info(f"{self.name} loop stopped", extra={"ticks": self.tick_count})

    def stop(self) -> None:
        self.shutdown_event.set()

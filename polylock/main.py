"""
Main entry point for the dual-lock trader.
Wires the collaborators together and runs the worker and foreman loops.
"""

import asyncio
import signal
import sys
from typing import Optional

from .clients.clob_client import ClobPriceClient
from .clients.gamma_client import GammaClient
from .config import Config, load_config
from .data.binance_fetcher import MarketDataFetcher
from .data.market_resolver import MarketResolver
from .errors import StartupError
from .execution.exchange import ExchangeInterface, create_exchange
from .signals.foreman import SignalForeman
from .storage import SnapshotStore
from .trader.resolution import ResolutionTracker
from .trader.scheduler import TickScheduler
from .trader.worker import MultiAssetWorker
from .utils.logger import setup_logging, get_logger

logger = get_logger("main")


class PolylockBot:
    """
    Main bot orchestrator.

    Coordinates:
    - Signal foreman (upstream START/HOLD/STOP per asset)
    - Multi-asset worker (state machines against the shadow exchange)
    - Resolution tracking and snapshot export
    """

    def __init__(self, config: Config):
        """Initialize bot with configuration."""
        self.config = config
        self._shutdown_event = asyncio.Event()

        timeout = config.trader.call_timeout_seconds
        self.gamma_client = GammaClient(timeout_seconds=timeout)
        self.price_client = ClobPriceClient(timeout_seconds=timeout)
        self.fetcher = MarketDataFetcher(timeout_seconds=timeout)

        self.resolver = MarketResolver(self.gamma_client, timeout_seconds=timeout)
        self.foreman = SignalForeman(
            assets=config.trader.assets,
            fetcher=self.fetcher,
            config=config.score,
            timeout_seconds=timeout,
        )

        self.exchange: Optional[ExchangeInterface] = None
        self.resolution: Optional[ResolutionTracker] = None
        self.snapshot_store = SnapshotStore(config.storage.snapshot_path)
        self.worker: Optional[MultiAssetWorker] = None

    async def initialize(self) -> None:
        """Create the exchange and storage. Any failure here is fatal."""
        logger.info("Initializing dual-lock trader", extra={"assets": list(self.config.trader.assets)})

        self.exchange = create_exchange(self.config.exchange)
        await self.exchange.initialize()

        self.resolution = ResolutionTracker(
            self.config.storage.results_db_path,
            price_source=self.price_client,
            timeout_seconds=self.config.trader.call_timeout_seconds,
        )
        self.resolution.initialize()

        try:
            self.snapshot_store.initialize()
        except OSError as e:
            raise StartupError(f"Snapshot directory unavailable: {e}") from e

        await self.gamma_client.initialize()
        await self.price_client.initialize()
        await self.fetcher.initialize()

        self.worker = MultiAssetWorker(
            config=self.config,
            exchange=self.exchange,
            price_source=self.price_client,
            resolver=self.resolver,
            signals=self.foreman,
            resolution=self.resolution,
            snapshot_store=self.snapshot_store,
        )
        logger.info("Trader initialized successfully")

    async def run(self) -> None:
        """Run the worker and foreman loops until shutdown."""
        if self.worker is None:
            raise StartupError("run() called before initialize()")

        worker_loop = TickScheduler(
            "worker",
            self.config.trader.tick_interval_seconds,
            self.worker.process_tick,
            self._shutdown_event,
        )
        foreman_loop = TickScheduler(
            "foreman",
            self.config.trader.signal_interval_seconds,
            self.foreman.refresh,
            self._shutdown_event,
        )

        logger.info("Starting trading loops")
        await asyncio.gather(
            foreman_loop.run(),
            worker_loop.run(),
            self._wait_for_shutdown(),
        )

    async def _wait_for_shutdown(self) -> None:
        """Wait for shutdown signal."""
        await self._shutdown_event.wait()

    async def shutdown(self) -> None:
        """Gracefully shutdown the bot."""
        logger.info("Shutting down trader")
        self._shutdown_event.set()

        if self.exchange is not None:
            cancelled = await self.exchange.cancel_all()
            if cancelled:
                logger.info(f"Cancelled {cancelled} resting orders")

        await self.gamma_client.close()
        await self.price_client.close()
        await self.fetcher.close()

        if self.resolution is not None:
            logger.info("Final stats", extra={"stats": self.resolution.get_stats()})

        logger.info("Trader shutdown complete")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def setup_signal_handlers(bot: PolylockBot) -> None:
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        bot.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main() -> None:
    """Main entry point."""
    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(
        level=config.logging.log_level,
        json_format=config.logging.json_logging
    )

    logger.info("Starting dual-lock trader")

    bot = PolylockBot(config)
    setup_signal_handlers(bot)

    exit_code = 0
    try:
        await bot.initialize()
        await bot.run()
    except StartupError as e:
        logger.error(f"Startup failed: {e}")
        exit_code = 1
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        await bot.shutdown()

    if exit_code:
        sys.exit(exit_code)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()

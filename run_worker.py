#!/usr/bin/env python
"""
Worker Entry Point.

Runs the agent scheduler and the outbox worker in one process.

Usage:
    python run_worker.py

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    RPC_URL: Monad RPC endpoint
    AGENT_PRIVATE_KEY: signer key for agent trades
    LOG_LEVEL: Logging level (default: INFO)
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import httpx

from anoa.core.config import get_settings
from anoa.db.database import AsyncSessionLocal, close_db
from anoa.services import (
    ExecutionRouter,
    NadFunClient,
    PriceFeed,
    SignalEnhancer,
    SnapshotBuilder,
    StrategyEngine,
    TokenDiscovery,
    TradeExecutionService,
)
from anoa.services.ai import create_enhancer_clients
from anoa.services.outbox import OutboxHandlers
from anoa.traders import ChainClient, NadFunLens, create_venues
from anoa.workers import AgentScheduler, OutboxWorker, build_memory_loader


def setup_logging() -> None:
    """Configure logging for the worker."""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)


class GracefulWorker:
    """
    Runs the scheduler and outbox loops until SIGINT/SIGTERM.
    """

    def __init__(self):
        self._shutdown_event: Optional[asyncio.Event] = None
        self.logger = logging.getLogger(__name__)

    async def start(self) -> None:
        """Wire the pipeline, start both loops and clean up on shutdown."""
        self._shutdown_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_shutdown)

        settings = get_settings()
        chain = ChainClient.from_settings()
        http = httpx.AsyncClient(timeout=settings.price_timeout)
        nadfun = NadFunClient()
        price_feed = PriceFeed(http_client=http)
        router = ExecutionRouter(create_venues(chain))

        builder = SnapshotBuilder(nadfun, NadFunLens(chain), chain)
        clients = create_enhancer_clients(settings)
        enhancer = (
            SignalEnhancer(clients, memory_loader=build_memory_loader(AsyncSessionLocal))
            if clients
            else None
        )
        engine = StrategyEngine(builder, enhancer)
        executor = TradeExecutionService(router, price_feed, AsyncSessionLocal)

        scheduler = AgentScheduler(
            AsyncSessionLocal,
            engine,
            executor,
            chain,
            discovery=TokenDiscovery(chain, builder),
        )
        outbox = OutboxWorker(
            AsyncSessionLocal,
            OutboxHandlers.default(AsyncSessionLocal, http_client=http, chain=chain),
        )

        self.logger.info(f"Network: {settings.network} (chain {settings.chain_id})")
        self.logger.info(f"Enhancer providers: {[c.name for c in clients] or 'none'}")

        try:
            await asyncio.gather(
                scheduler.run_forever(self._shutdown_event),
                outbox.run_forever(self._shutdown_event),
            )
        except asyncio.CancelledError:
            self.logger.info("Worker cancelled, shutting down...")
        finally:
            await router.close()
            await nadfun.close()
            await http.aclose()
            await chain.close()
            await close_db()

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal."""
        self.logger.info("Shutdown signal received")
        if self._shutdown_event:
            self._shutdown_event.set()


def main() -> int:
    """Main entry point."""
    setup_logging()
    logger = logging.getLogger(__name__)

    settings = get_settings()
    logger.info(f"Environment: {settings.environment}")

    worker = GracefulWorker()

    try:
        asyncio.run(worker.start())
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.exception(f"Worker failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

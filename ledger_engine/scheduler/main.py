"""
Main entry point for the scheduler service.
"""

import asyncio
import signal

import structlog

from ledger_engine.core.config import settings
from ledger_engine.core.database import close_database, init_database
from ledger_engine.core.logging import setup_logging
from ledger_engine.services.engine import LedgerEngine
from ledger_engine.services.job_lock import JobLockService
from ledger_engine.services.notifier import LoggingNotifier
from .adapter import LedgerScheduler

logger = structlog.get_logger(__name__)


class SchedulerMain:
    """Main scheduler service coordinator."""

    def __init__(self):
        self.scheduler = None
        self.running = False
        self._stopped = asyncio.Event()

    async def initialize(self):
        """Initialize scheduler components."""
        try:
            logger.info("Initializing scheduler service")

            session_factory = await init_database()
            engine = LedgerEngine(session_factory, notifier=LoggingNotifier(), config=settings)
            locks = JobLockService(session_factory, clock=engine.clock)
            self.scheduler = LedgerScheduler(engine, locks, settings)

            logger.info("Scheduler service initialized successfully")

        except Exception as e:
            logger.error("Failed to initialize scheduler", error=str(e))
            raise

    async def start(self):
        """Start the scheduler and block until stop() is called."""
        logger.info("Starting scheduler service")
        self.running = True
        await self.scheduler.start()
        await self._periodic_health_check()

    async def stop(self):
        """Stop the scheduler service."""
        if not self.running:
            return
        logger.info("Stopping scheduler service")

        self.running = False
        self._stopped.set()

        if self.scheduler:
            await self.scheduler.stop()

        await close_database()
        logger.info("Scheduler service stopped")

    async def _periodic_health_check(self):
        """Log scheduler health every 5 minutes until stopped."""
        while self.running:
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=300)
            except asyncio.TimeoutError:
                pass
            if not self.running:
                break

            try:
                health = await self.scheduler.health_check()
                logger.info("Scheduler health check", scheduler=health)
            except Exception as e:
                logger.error("Health check error", error=str(e))


async def main():
    """Main function to run the scheduler service."""
    setup_logging()

    service = SchedulerMain()
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info("Received signal, shutting down", signal=signum)
        asyncio.ensure_future(service.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        await service.initialize()
        await service.start()
    except Exception as e:
        logger.error("Scheduler service failed", error=str(e))
        raise
    finally:
        await service.stop()


if __name__ == "__main__":
    asyncio.run(main())

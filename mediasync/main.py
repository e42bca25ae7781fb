"""
mediasync Scheduler - Background Scheduler Service

Main entry point for the scheduler service.
Builds the application context, registers the background jobs and runs
APScheduler until SIGINT/SIGTERM.

IMPORTANT: This process MUST run as a single instance because a job's
skip-if-busy guard only holds within one process.
"""

import asyncio
import logging
import signal
import sys

from mediasync.config import Settings, get_settings
from mediasync.context import AppContext, build_context
from mediasync.core.database import close_db, init_db
from mediasync.jobs.token_refresh import JOB_NAME as TOKEN_REFRESH_JOB, refresh_integration_tokens
from mediasync.scheduler.scheduler import JobOptions, JobScheduler

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Suppress noisy third-party loggers
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def register_jobs(scheduler: JobScheduler, settings: Settings) -> None:
    """Register the built-in background jobs."""
    scheduler.register(
        TOKEN_REFRESH_JOB,
        settings.token_refresh_schedule,
        refresh_integration_tokens,
        JobOptions(run_on_start=True, enabled=settings.trakt_oauth_configured),
    )


class SchedulerService:
    """
    Background scheduler service.

    Owns the AppContext and the JobScheduler for the lifetime of the process.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.running = False
        self._shutdown_event = asyncio.Event()
        self.context: AppContext | None = None
        self.scheduler: JobScheduler | None = None

    async def start(self) -> None:
        """Start the scheduler and block until stop() is called."""
        self.running = True
        logger.info("Starting mediasync scheduler...")
        logger.info(f"Environment: {self.settings.environment}")

        session_factory = await init_db(self.settings.database_url)
        logger.info("Database connection established")

        self.context = build_context(self.settings, session_factory)
        self.scheduler = JobScheduler(context=self.context)
        self.context.scheduler = self.scheduler

        register_jobs(self.scheduler, self.settings)
        self.scheduler.start()

        logger.info("mediasync scheduler started")
        logger.info("Running... (Ctrl+C to stop)")

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the scheduler gracefully, letting in-flight jobs finish."""
        logger.info("Stopping mediasync scheduler...")
        self.running = False

        if self.scheduler:
            self.scheduler.stop()
            await self.scheduler.wait_for_active_runs()

        await close_db()

        self._shutdown_event.set()
        logger.info("mediasync scheduler stopped")

    def handle_signal(self, signum: int) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, initiating shutdown...")
        asyncio.create_task(self.stop())


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings)

    service = SchedulerService(settings)

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, service.handle_signal, signal.SIGINT)
    loop.add_signal_handler(signal.SIGTERM, service.handle_signal, signal.SIGTERM)

    try:
        await service.start()
    except Exception as e:
        logger.error(f"Scheduler error: {e}", exc_info=True)
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()

"""APScheduler setup for the auction sweep and the ending-soon reminders."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from auction_engine.conf import SchedulerConf
from auction_engine.engine import AuctionEngine
from auction_engine.utils import log

logger = log.get_logger(__name__)

SWEEP_JOB_ID = "auction_sweep"
ENDING_SOON_JOB_ID = "auction_ending_soon"


class SweepScheduler:
    """Runs the engine's sweeps on fixed intervals until shut down."""

    def __init__(self, engine: AuctionEngine, conf: SchedulerConf):
        self.engine = engine
        self.conf = conf
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def sweep_job(self):
        try:
            await self.engine.run_sweep()
        except Exception as e:
            logger.error(f"Auction sweep failed: {e}", exc_info=True)

    async def ending_soon_job(self):
        logger.info("Ending-soon notification job starting...")
        try:
            notified = await self.engine.run_ending_soon_sweep()
            logger.info(f"Ending-soon notification job finished: {notified} auctions")
        except Exception as e:
            logger.error(f"Ending-soon notification job failed: {e}", exc_info=True)

    def build(self) -> AsyncIOScheduler:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.sweep_job,
            trigger=IntervalTrigger(seconds=self.conf.sweep_interval_seconds),
            id=SWEEP_JOB_ID,
            name="Auction start/end sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.add_job(
            self.ending_soon_job,
            trigger=IntervalTrigger(minutes=self.conf.ending_soon_interval_minutes),
            id=ENDING_SOON_JOB_ID,
            name="Auction ending-soon notifications",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        return scheduler

    def start(self) -> AsyncIOScheduler:
        """Start the scheduler. Must be called with a running event loop."""
        if self._scheduler is None:
            self._scheduler = self.build()
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info(
                f"Auction scheduler started: sweep every {self.conf.sweep_interval_seconds}s, "
                f"ending-soon every {self.conf.ending_soon_interval_minutes}min"
            )
        return self._scheduler

    def shutdown(self):
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Auction scheduler shut down")

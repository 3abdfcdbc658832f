import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from core.exceptions import RunInProgressError
from sync_engine.runner import SyncRunner

logger = logging.getLogger(__name__)

JOB_ID = "order_sync"


class SyncScheduler:
    """
    Periodic runs with a fixed gap between run completions.

    Each tick runs the sync and then re-arms a one-shot job ``interval_minutes``
    after the run finished, whether it succeeded or failed. Slow runs therefore
    never overlap and a failed run never stops the schedule.
    """

    def __init__(
        self,
        runner: SyncRunner,
        interval_minutes: int = 15,
        run_on_start: bool = True,
        shutdown_timeout: float = 30.0,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.runner = runner
        self.interval = timedelta(minutes=interval_minutes)
        self.run_on_start = run_on_start
        self.shutdown_timeout = shutdown_timeout
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.next_run_at: Optional[datetime] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self.scheduler.running and not self._stopping

    def start(self):
        """Start the scheduler and arm the first run"""
        first = datetime.now(timezone.utc)
        if not self.run_on_start:
            first += self.interval
        self._arm(first)
        self.scheduler.start()
        logger.info(f"Sync scheduler started (interval {self.interval}, first run at {first.isoformat()})")

    def _arm(self, when: datetime):
        if self._stopping:
            return
        self.next_run_at = when
        self.scheduler.add_job(
            self._tick,
            trigger=DateTrigger(run_date=when),
            id=JOB_ID,
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug(f"Next sync run armed for {when.isoformat()}")

    async def _tick(self):
        """Job body. Never raises; always re-arms."""
        self.next_run_at = None
        try:
            await self.runner.run()
        except RunInProgressError:
            logger.info("Scheduler: skipping tick, a manually triggered run is in progress")
        except Exception as e:
            logger.error(f"Scheduler: sync run raised unexpectedly - {e}")
        finally:
            self._arm(datetime.now(timezone.utc) + self.interval)

    async def stop(self):
        """Cancel the pending run and wait (bounded) for a running one"""
        self._stopping = True
        if self.scheduler.get_job(JOB_ID):
            self.scheduler.remove_job(JOB_ID)
        self.next_run_at = None

        if self.runner.is_running:
            logger.info(f"Waiting up to {self.shutdown_timeout}s for the running sync to finish")
            deadline = asyncio.get_running_loop().time() + self.shutdown_timeout
            while self.runner.is_running and asyncio.get_running_loop().time() < deadline:
                await asyncio.sleep(0.1)
            if self.runner.is_running:
                logger.warning("Running sync did not finish before the shutdown timeout")

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Sync scheduler stopped")

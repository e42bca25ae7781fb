"""
Trigger Backends

The JobScheduler only needs "call this coroutine on this CRON schedule" plus
pause/resume/remove on the resulting handle. APSchedulerBackend provides that
with APScheduler's AsyncIOScheduler; tests plug in a fake backend and fire
triggers by hand.

Fire times come from croniter (CrontabTrigger), not from APScheduler's own
CronTrigger, whose day-of-week numbering starts at Monday.
"""

import logging
from datetime import datetime, tzinfo
from typing import Awaitable, Callable, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.util import astimezone

from mediasync.scheduler.cron import CronSchedule

logger = logging.getLogger(__name__)

TriggerCallback = Callable[[], Awaitable[None]]


class CrontabTrigger(BaseTrigger):
    """
    APScheduler trigger that fires whenever the crontab schedule does.

    Args:
        schedule: Parsed crontab schedule
        timezone: Timezone the expression is evaluated in
    """

    def __init__(self, schedule: CronSchedule, timezone: str | tzinfo = "UTC"):
        self.schedule = schedule
        self.timezone = astimezone(timezone)

    def get_next_fire_time(
        self,
        previous_fire_time: datetime | None,
        now: datetime,
    ) -> datetime:
        if previous_fire_time is not None:
            return self.schedule.next_after(previous_fire_time.astimezone(self.timezone))
        return self.schedule.next_from(now.astimezone(self.timezone))

    def __str__(self) -> str:
        return f"crontab[{self.schedule}]"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} (schedule='{self.schedule}', timezone='{self.timezone}')>"


class TriggerHandle(Protocol):
    """Live trigger bound to one job."""

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def remove(self) -> None: ...


class TriggerBackend(Protocol):
    """Source of CRON firings."""

    def add(self, name: str, schedule: CronSchedule, callback: TriggerCallback) -> TriggerHandle: ...

    def start(self) -> None: ...

    def shutdown(self) -> None: ...


class APSchedulerBackend:
    """
    TriggerBackend backed by APScheduler.

    Must be started from inside the running event loop.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None, timezone: str = "UTC"):
        self._timezone = timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone)

    def add(self, name: str, schedule: CronSchedule, callback: TriggerCallback) -> TriggerHandle:
        # Overlapping runs are skipped by JobScheduler.run_job, so APScheduler
        # must let a second firing through to reach that check.
        return self._scheduler.add_job(
            callback,
            CrontabTrigger(schedule, self._timezone),
            id=name,
            name=name,
            replace_existing=True,
            max_instances=2,
            coalesce=False,
        )

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("APScheduler started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("APScheduler stopped")

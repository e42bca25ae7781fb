"""
Job Schedules

A job's schedule is a standard 5-field crontab expression (minute hour
day-of-month month day-of-week, Sunday = 0 or 7). croniter is the only
interpreter of these expressions: registration, trigger fire times and the
next_run shown in job status all go through CronSchedule.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from croniter import croniter

from mediasync.core.exceptions import InvalidScheduleError

logger = logging.getLogger(__name__)

CRON_FIELD_COUNT = 5


@dataclass(frozen=True)
class CronSchedule:
    """A validated crontab expression."""
    expression: str

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        """
        Validate a job schedule.

        Seconds-resolution (6-field) and macro (@hourly) forms are rejected so
        every schedule means the same thing to every reader.

        Raises:
            InvalidScheduleError: If the expression is not a valid 5-field crontab
        """
        if not isinstance(expression, str) or len(expression.split()) != CRON_FIELD_COUNT:
            raise InvalidScheduleError(
                f"Invalid CRON expression: {expression!r} "
                f"(expected {CRON_FIELD_COUNT} fields)",
                schedule=expression if isinstance(expression, str) else None,
            )

        if not croniter.is_valid(expression):
            raise InvalidScheduleError(
                f"Invalid CRON expression: {expression!r}",
                schedule=expression,
            )

        return cls(expression)

    def next_after(self, moment: datetime) -> datetime:
        """First firing strictly after `moment`, in moment's timezone."""
        return croniter(self.expression, moment).get_next(datetime)

    def next_from(self, moment: datetime) -> datetime:
        """First firing at or after `moment`."""
        return self.next_after(moment - timedelta(microseconds=1))

    def __str__(self) -> str:
        return self.expression

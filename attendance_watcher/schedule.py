"""Working-hours gate and the cron schedule that drives the long-running watcher."""

import logging
from datetime import datetime, time
from zoneinfo import ZoneInfo

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

log = logging.getLogger(__name__)

JOB_ID = "attendance_poll"

_DAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


class ScheduleGate:
    def __init__(self, tz, start=time(10, 0), end=time(22, 0), weekdays=(0, 1, 2, 3, 4), clock=None):
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz
        self.start = start
        self.end = end
        self.weekdays = frozenset(weekdays)
        self._clock = clock or (lambda: datetime.now(self.tz))

    @classmethod
    def from_settings(cls, settings, **kwargs):
        return cls(settings.timezone, settings.poll_start, settings.poll_end, settings.poll_weekdays, **kwargs)

    def is_open(self, now=None):
        """True on a selected weekday between start and end (both inclusive), local time."""
        local = (now or self._clock()).astimezone(self.tz)
        if local.weekday() not in self.weekdays:
            return False
        current = local.time().replace(second=0, microsecond=0)
        return self.start <= current <= self.end


def poll_trigger(settings, tz):
    """Cron trigger firing at POLL_MINUTES inside the POLL_START..POLL_END hours."""
    return CronTrigger(
        day_of_week=",".join(_DAY_NAMES[day] for day in sorted(settings.poll_weekdays)),
        hour=f"{settings.poll_start.hour}-{settings.poll_end.hour}",
        minute=",".join(str(minute) for minute in settings.poll_minutes),
        timezone=tz,
    )


def run_scheduled_cycle(poller):
    try:
        result = poller.run_cycle()
        log.info("Cycle %s: %d event(s), %d notification(s)", result.status.value, len(result.events), result.notified)
    except Exception:
        log.exception("Unexpected error in poll cycle")


def build_scheduler(poller, settings, tz, scheduler=None):
    """
    Registers the poll job on a BlockingScheduler (or the given scheduler).

    Jobs run on the scheduler's thread pool. ``max_instances=1`` and
    ``coalesce=True`` collapse ticks that land while a cycle is still running;
    the poller's own in-flight guard still applies.
    """
    scheduler = scheduler or BlockingScheduler(timezone=tz)
    scheduler.add_job(
        run_scheduled_cycle,
        trigger=poll_trigger(settings, tz),
        args=[poller],
        id=JOB_ID,
        name="Check attendance",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
        replace_existing=True,
    )
    return scheduler
